"""
Utility functions for sdweb
"""

import logging
from typing import Optional
from urllib.parse import quote

from .models import MIME_TYPES, DEFAULT_MIME_TYPE
from .paths import file_name

logger = logging.getLogger(__name__)


def get_mime_type(path: str) -> str:
    """
    Get MIME type for a file from its name

    Only the final path component is examined and the suffix comparison is
    case-sensitive, so ``photos.png/notes`` is not an image and ``A.PNG``
    falls back to the generic type.
    """
    name = file_name(path)
    for suffix, mime_type in MIME_TYPES:
        if name.endswith(suffix):
            return mime_type
    return DEFAULT_MIME_TYPE


def format_file_size(size_bytes: int) -> str:
    """Format file size in human readable format"""
    if size_bytes == 0:
        return "0 B"

    size_names = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    size = float(size_bytes)

    while size >= 1024.0 and i < len(size_names) - 1:
        size /= 1024.0
        i += 1

    if i == 0:
        return f"{int(size)} {size_names[i]}"
    else:
        return f"{size:.1f} {size_names[i]}"


def validate_filename(filename: Optional[str]) -> bool:
    """Validate a single path component supplied by a client"""
    if not filename or filename in ('.', '..'):
        return False

    # Separators would let the name reach into another directory
    if '/' in filename or '\\' in filename:
        return False

    # Check for control characters
    if any(ord(char) < 32 or ord(char) == 127 for char in filename):
        return False

    return True


def content_disposition(filename: str, disposition: str = "inline") -> str:
    """Build a Content-Disposition value with an ASCII fallback name"""
    fallback_name = "".join(
        ch if 32 <= ord(ch) < 127 and ch not in {'"', '\\'} else "_"
        for ch in filename
    ) or "download"

    return (
        f"{disposition}; filename=\"{fallback_name}\"; "
        f"filename*=UTF-8''{quote(filename, safe='')}"
    )
