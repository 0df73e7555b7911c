"""
Directory listing rendering for sdweb
"""

import logging
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import quote

from jinja2 import DictLoader, Environment

from .models import DirectoryEntry
from .utils import format_file_size

logger = logging.getLogger(__name__)

LISTING_TEMPLATE = """\
<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Index of {{ display_path }}</title>
<style>
body { font-family: sans-serif; margin: 2em; }
table { border-collapse: collapse; }
th, td { padding: 0.2em 1em; text-align: left; }
td.size { text-align: right; }
</style>
</head>
<body>
<h1>Index of {{ display_path }}</h1>
{% if parent_href %}
<p><a href="{{ parent_href }}">Parent directory</a></p>
{% endif %}
<table>
<thead><tr><th>Name</th><th>Type</th><th>Size</th></tr></thead>
<tbody>
{% for entry in entries %}
<tr><td><a href="{{ base_href }}{{ entry.name | urlquote }}{% if entry.is_directory %}/{% endif %}">{{ entry.name }}</a></td><td>{{ "Directory" if entry.is_directory else "File" }}</td><td class="size"{% if not entry.is_directory %} title="{{ entry.size | filesize }}"{% endif %}>{{ "-" if entry.is_directory else entry.size }}</td></tr>
{% endfor %}
</tbody>
</table>
</body>
</html>
"""

environment = Environment(
    loader=DictLoader({"listing.html": LISTING_TEMPLATE}),
    autoescape=True,
    enable_async=True,
    trim_blocks=True,
    lstrip_blocks=True,
)
environment.filters["urlquote"] = lambda value: quote(value, safe="")
environment.filters["filesize"] = format_file_size


def url_for_path(path: str) -> str:
    """Percent-encode a URL path, keeping separators"""
    return quote(path, safe="/")


def render_listing(
    entries: AsyncIterator[DirectoryEntry],
    display_path: str,
    parent_href: Optional[str] = None,
) -> AsyncIterator[str]:
    """
    Render a directory listing as a stream of HTML fragments

    Entries are pulled from ``entries`` while the output is produced and
    appear in the order given. All names and paths are HTML-escaped, and
    link targets are percent-encoded.

    Args:
        entries: Directory entries, typically straight from the storage backend
        display_path: Public URL path of the directory, unquoted
        parent_href: Optional already-encoded link to the parent directory
    """
    base_href = url_for_path(display_path if display_path.endswith("/") else display_path + "/")
    template = environment.get_template("listing.html")
    return template.generate_async(
        entries=entries,
        display_path=display_path,
        base_href=base_href,
        parent_href=parent_href,
    )


async def listing_to_dict(
    entries: AsyncIterator[DirectoryEntry],
    display_path: str,
) -> Dict[str, Any]:
    """Structured listing for JSON clients"""
    files = [entry.to_dict() async for entry in entries]
    return {
        "path": display_path,
        "files": files,
    }
