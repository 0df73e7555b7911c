"""
Exception taxonomy for sdweb

Every error raised by the request-to-filesystem layer carries the HTTP
status code it is reported with. Messages may quote the path the client
supplied but never the absolute filesystem path.
"""

from typing import Optional


class FileServerError(Exception):
    """Base exception for file server operations."""

    status_code = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ClientError(FileServerError):
    """Malformed request, missing header or wrong entry type"""
    status_code = 400


class PathTraversalError(ClientError):
    """Raised when a request path would escape the root directory"""
    pass


class PrefixMismatchError(ClientError):
    """Raised when a URL is outside the mount prefix in strict mode"""
    pass


class NotFoundError(FileServerError):
    """Requested path does not exist"""
    status_code = 404


class CapabilityDisabled(FileServerError):
    """Feature switched off in configuration"""
    status_code = 403


class PayloadTooLarge(FileServerError):
    """Upload exceeds the configured size limit"""
    status_code = 413


class BackendError(FileServerError):
    """Storage device or I/O failure"""
    status_code = 500
