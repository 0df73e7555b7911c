"""
URL to filesystem path resolution for sdweb

Everything in this module is a pure string transformation; nothing here
touches the filesystem. Paths always use ``/`` as separator.
"""

import logging
import os
import posixpath

from .errors import PathTraversalError, PrefixMismatchError

logger = logging.getLogger(__name__)

SEPARATOR = "/"


def normalize_path(path: str) -> str:
    """Normalize path separators for cross-platform compatibility"""
    return path.replace('\\', '/')


def normalize_prefix(prefix: str) -> str:
    """
    Normalize a URL prefix to ``/a/b`` form

    The result starts with ``/`` and has no trailing ``/``. A prefix that
    names the site root (``""`` or ``/``) normalizes to the empty string.
    """
    parts = [part for part in normalize_path(prefix or "").split('/') if part]
    if any(part in ('.', '..') for part in parts):
        raise ValueError(f"Invalid URL prefix: {prefix!r}")
    if not parts:
        return ""
    return SEPARATOR + SEPARATOR.join(parts)


def normalize_root(root_path: str) -> str:
    """Make the configured root absolute and drop any trailing separator"""
    if not root_path:
        raise ValueError("root_path must not be empty")
    return os.path.abspath(os.path.expanduser(root_path))


def join(first: str, second: str) -> str:
    """
    Join two path fragments with exactly one separator between them

    A separator duplicated at the junction is collapsed and a missing one
    is inserted, so ``join(root, "/x") == join(root, "x")``.
    """
    if not first:
        return second
    if not second:
        return first

    if first.endswith(SEPARATOR) and second.startswith(SEPARATOR):
        return first + second[1:]
    if first.endswith(SEPARATOR) or second.startswith(SEPARATOR):
        return first + second
    return first + SEPARATOR + second


def file_name(path: str) -> str:
    """Substring after the last separator, or the whole path"""
    index = path.rfind(SEPARATOR)
    return path if index == -1 else path[index + 1:]


def parent_path(path: str) -> str:
    """Substring up to and including the last separator, or empty"""
    index = path.rfind(SEPARATOR)
    return "" if index == -1 else path[:index + 1]


def is_within(root: str, path: str) -> bool:
    """Check that ``path`` is ``root`` itself or one of its descendants"""
    root = posixpath.normpath(root)
    path = posixpath.normpath(path)

    if root == SEPARATOR:
        return path.startswith(SEPARATOR)
    return path == root or path.startswith(root + SEPARATOR)


class PathResolver:
    """Maps decoded request paths onto paths below a root directory"""

    def __init__(self, root_path: str, url_prefix: str = "", strict_prefix: bool = False):
        if not root_path.startswith(SEPARATOR):
            raise ValueError(f"root_path must be absolute: {root_path!r}")

        self.root_path = root_path.rstrip(SEPARATOR) or SEPARATOR
        self.url_prefix = normalize_prefix(url_prefix)
        self.strict_prefix = strict_prefix

    def strip_prefix(self, url: str) -> str:
        """
        Remove the mount prefix from a request path

        The match is segment aware: ``/files`` matches ``/files`` and
        ``/files/...`` but not ``/filesystem``. A path outside the prefix is
        returned unchanged, or rejected when ``strict_prefix`` is set.
        """
        prefix = self.url_prefix
        if not prefix:
            return url

        if url == prefix or url.startswith(prefix + SEPARATOR):
            return url[len(prefix):]

        if self.strict_prefix:
            raise PrefixMismatchError(f"Path is outside {prefix}: {url}")

        logger.debug("URL %s does not start with prefix %s, using it as-is", url, prefix)
        return url

    def resolve(self, url: str) -> str:
        """
        Convert a decoded request path into a normalized relative path

        Args:
            url: Request path with query string already removed

        Returns:
            Relative path starting with ``/``; ``/`` for the root. A trailing
            separator on the input is preserved.

        Raises:
            PathTraversalError: On ``..`` segments or NUL bytes
            PrefixMismatchError: On a foreign URL in strict mode
        """
        remainder = normalize_path(self.strip_prefix(url))

        if '\x00' in remainder:
            raise PathTraversalError(f"Invalid character in path: {url!r}")

        parts = []
        for part in remainder.split(SEPARATOR):
            if not part or part == '.':
                # Skip empty or current-directory segments caused by // or ./
                continue
            if part == '..':
                raise PathTraversalError(f"Path traversal detected: {url}")
            parts.append(part)

        if not parts:
            return SEPARATOR

        relative = SEPARATOR + SEPARATOR.join(parts)
        if remainder.endswith(SEPARATOR):
            relative += SEPARATOR
        return relative

    def to_absolute(self, relative: str) -> str:
        """
        Join a relative path onto the root

        Raises:
            PathTraversalError: If the result would leave the root
        """
        if relative in ("", SEPARATOR):
            return self.root_path

        absolute = join(self.root_path, relative)
        if not is_within(self.root_path, absolute):
            raise PathTraversalError(f"Path traversal detected: {relative}")
        return absolute

    def to_url(self, relative: str) -> str:
        """Public URL path (unquoted) of a relative path"""
        return join(self.url_prefix, relative) if self.url_prefix else relative
