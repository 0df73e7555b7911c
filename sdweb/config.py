"""
Configuration loading for sdweb

Configuration is read once at startup and never reloaded; the resulting
``Config`` is passed explicitly to whatever needs it.
"""

import yaml
import logging
from pathlib import Path
from typing import Dict, Any, Optional

from .models import Config, ServerConfig, WebConfig, LoggingConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "sdweb.yaml"

TRUE_STRINGS = {"true", "yes", "on", "1"}
FALSE_STRINGS = {"false", "no", "off", "0"}


def _parse_bool(section: Dict[str, Any], key: str, default: bool) -> bool:
    """Read a boolean setting, accepting the usual spellings of quoted values"""
    value = section.get(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
    raise ValueError(f"{key} must be true or false, got {value!r}")


class ConfigManager:
    """Loads and holds the startup configuration"""

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH):
        self.config_path = Path(config_path).resolve()
        self.config: Optional[Config] = None

    def load_config(self) -> Config:
        """
        Load configuration from YAML file

        A missing or unreadable file falls back to the defaults. A file that
        reads fine but holds invalid values is refused, since falling back
        would re-enable capabilities the operator switched off.

        Raises:
            ValueError: If a setting has an invalid value
        """
        try:
            if not self.config_path.exists():
                logger.warning(f"Configuration file not found: {self.config_path}")
                self.config = Config()
                return self.config

            with open(self.config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}

        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load configuration: {e}")
            self.config = Config()
            return self.config

        try:
            config = self._parse_config(data)
        except (TypeError, ValueError, AttributeError) as e:
            logger.error(f"Invalid configuration in {self.config_path}: {e}")
            raise ValueError(f"Invalid configuration in {self.config_path}: {e}") from e

        self.config = config
        logger.info(f"Configuration loaded from {self.config_path}")
        return config

    def _parse_config(self, data: Dict[str, Any]) -> Config:
        """Parse configuration data into Config object"""

        # Server configuration
        server_data = data.get('server') or {}
        server = ServerConfig(
            addr=server_data.get('addr', '0.0.0.0'),
            port=int(server_data.get('port', 8080)),
        )

        # Exposed subtree and capabilities
        web_data = data.get('web') or {}
        defaults = WebConfig()
        max_upload_size = web_data.get('max_upload_size')
        web = WebConfig(
            root_path=str(web_data.get('root_path', defaults.root_path)),
            url_prefix=str(web_data.get('url_prefix', defaults.url_prefix)),
            download_enabled=_parse_bool(web_data, 'download_enabled', True),
            upload_enabled=_parse_bool(web_data, 'upload_enabled', True),
            deletion_enabled=_parse_bool(web_data, 'deletion_enabled', True),
            strict_prefix=_parse_bool(web_data, 'strict_prefix', False),
            max_upload_size=int(max_upload_size) if max_upload_size is not None else None,
            chunk_size=int(web_data.get('chunk_size', defaults.chunk_size)),
        )

        # Logging
        logging_data = data.get('logging') or {}
        logging_config = LoggingConfig(
            json=_parse_bool(logging_data, 'json', False),
            file=logging_data.get('file', ''),
            level=logging_data.get('level', 'INFO'),
            max_size_mb=logging_data.get('max_size_mb', 10),
            backup_count=logging_data.get('backup_count', 3)
        )

        return Config(
            server=server,
            web=web,
            logging=logging_config,
        )

    def get_config(self) -> Config:
        """Get current configuration"""
        if self.config is None:
            self.config = self.load_config()
        return self.config


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> Config:
    """Load configuration from file"""
    return ConfigManager(config_path).load_config()
