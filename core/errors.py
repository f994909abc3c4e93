"""
core/errors.py -- Typed error hierarchy shared by every layer.

Services raise these; api/main.py maps each one to its HTTP status and the
uniform {error, code, message} envelope. Nothing below api/ knows about HTTP
status codes except through the status_code class attribute.

Layer rule: core/ is the kernel. No imports from api/, auth/, or storage/.
"""

from __future__ import annotations


class ServerError(Exception):
    """Base class for every error that reaches a client with its own message."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class AuthError(ServerError):
    """Bad credentials, invalid/expired/revoked token, bad access code."""

    status_code = 401
    code = "AUTH_ERROR"


class PermissionDeniedError(ServerError):
    """Identity is valid but lacks the privilege for the operation."""

    status_code = 401
    code = "PERMISSION_ERROR"


class ConflictError(ServerError):
    status_code = 400
    code = "CONFLICT"


class FsError(ServerError):
    """Any filesystem failure: confinement violation, missing path, I/O, quota."""

    status_code = 400
    code = "FS_ERROR"


class ValidationError(ServerError):
    """Malformed request headers, body, or query, rejected before any service call."""

    status_code = 400
    code = "VALIDATION_FAILED"
