"""
Data models and constants for sdweb
"""

from enum import Enum
from typing import Dict, Optional, Any, Tuple
from dataclasses import dataclass, field

from .paths import normalize_prefix, normalize_root


class ResponseCode(Enum):
    """Standard response codes"""
    SUCCESS = 0
    ERROR = 1
    FORBIDDEN = 403
    NOT_FOUND = 404
    PAYLOAD_TOO_LARGE = 413
    INTERNAL_ERROR = 500


@dataclass
class ApiResponse:
    """Standard API response format"""
    code: int = ResponseCode.SUCCESS.value
    msg: str = "success"
    data: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "msg": self.msg,
            "data": self.data
        }


@dataclass
class DirectoryEntry:
    """Single entry produced by a directory listing"""
    name: str
    is_directory: bool
    size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "is_directory": self.is_directory,
            "size": self.size,
        }


@dataclass
class RequestContext:
    """Per-request state, discarded once the response is complete"""
    url: str
    method: str
    relative_path: str = ""
    absolute_path: str = ""


@dataclass(frozen=True)
class WebConfig:
    """Exposed subtree, mount point and capability flags"""
    root_path: str = "/sdcard"
    url_prefix: str = "/box3web"
    download_enabled: bool = True
    upload_enabled: bool = True
    deletion_enabled: bool = True
    strict_prefix: bool = False
    max_upload_size: Optional[int] = None
    chunk_size: int = 4096

    def __post_init__(self):
        object.__setattr__(self, "url_prefix", normalize_prefix(self.url_prefix))
        object.__setattr__(self, "root_path", normalize_root(self.root_path))

        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")

        if self.max_upload_size is not None and self.max_upload_size <= 0:
            # Normalise non-positive values to unlimited
            object.__setattr__(self, "max_upload_size", None)


@dataclass
class ServerConfig:
    """Server configuration"""
    addr: str = "0.0.0.0"
    port: int = 8080


@dataclass
class LoggingConfig:
    """Logging configuration"""
    json: bool = False
    file: str = ""
    level: str = "INFO"
    max_size_mb: int = 10
    backup_count: int = 3


@dataclass
class Config:
    """Main configuration container"""
    server: ServerConfig = field(default_factory=ServerConfig)
    web: WebConfig = field(default_factory=WebConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Suffix lookup table, checked in order against the end of the file name
MIME_TYPES: Tuple[Tuple[str, str], ...] = (
    ('.html', 'text/html'),
    ('.css', 'text/css'),
    ('.js', 'application/javascript'),
    ('.json', 'application/json'),
    ('.png', 'image/png'),
    ('.jpg', 'image/jpeg'),
    ('.jpeg', 'image/jpeg'),
    ('.gif', 'image/gif'),
    ('.svg', 'image/svg+xml'),
    ('.ico', 'image/x-icon'),
    ('.mp3', 'audio/mpeg'),
    ('.wav', 'audio/wav'),
    ('.mp4', 'video/mp4'),
    ('.pdf', 'application/pdf'),
    ('.zip', 'application/zip'),
    ('.txt', 'text/plain'),
    ('.xml', 'application/xml'),
)

# Default MIME type for unknown files
DEFAULT_MIME_TYPE = 'application/octet-stream'
