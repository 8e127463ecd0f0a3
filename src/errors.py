"""
Error types raised by the server provisioner.
"""

from typing import Optional


class ProvisionerError(Exception):
    """Base class for all provisioner errors."""


class TransportError(ProvisionerError):
    """An API request completed with a non-2xx status."""

    def __init__(self, status_code: int, message: str, request_id: str = ""):
        self.status_code = status_code
        self.message = message
        self.request_id = request_id
        prefix = f"Request {request_id}" if request_id else "Request"
        super().__init__(f"{prefix} failed with {status_code}: {message}")


class NotFoundError(TransportError):
    """The requested resource does not exist (HTTP 404)."""


class AuthError(TransportError):
    """Token refresh failed or the request was not authorized."""


class NetworkError(ProvisionerError):
    """The request never produced an HTTP response."""


class ParseError(ProvisionerError):
    """A response body, resource URL or attribute value could not be parsed."""


class OperationError(ProvisionerError):
    """A long-running operation finished with an embedded error."""

    def __init__(self, code: str, message: str, operation: Optional[str] = None):
        self.code = code
        self.message = message
        self.operation = operation
        name = f"Operation {operation}" if operation else "Operation"
        super().__init__(f"{name} failed with {code}: {message}")


class ServerInstallFailedError(ProvisionerError):
    """Server installation ended in the FAILED state."""


class ServerInstallCanceledError(ProvisionerError):
    """Server installation was canceled by a deletion request."""
