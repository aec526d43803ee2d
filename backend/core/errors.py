"""
Error taxonomy for the account and session API.

Every failure a service can report is an ApiError subclass carrying an HTTP
status and a stable error code; main.py turns them into the failure envelope.
Token verification has its own pair of errors because callers must tell an
expired token from a forged or malformed one.
"""
from typing import Optional


class ApiError(Exception):
    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(self, message: str, *, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason


class ValidationError(ApiError):
    """Missing or malformed input (400)."""
    status_code = 400
    error_code = "validation_error"


class Unauthorized(ApiError):
    """Missing, invalid, expired or superseded credential (401)."""
    status_code = 401
    error_code = "unauthorized"


class NotFound(ApiError):
    status_code = 404
    error_code = "not_found"


class Conflict(ApiError):
    """Duplicate username or email (409)."""
    status_code = 409
    error_code = "conflict"


class PersistenceError(ApiError):
    status_code = 500
    error_code = "persistence_error"


class UpstreamAssetError(ApiError):
    """The asset store rejected or failed an upload (502)."""
    status_code = 502
    error_code = "upstream_asset_error"


EXPIRED_SESSION = "expired_session"


class TokenError(Exception):
    pass


class TokenInvalid(TokenError):
    """Bad signature, malformed token, wrong token type or missing subject."""


class TokenExpired(TokenError):
    """Signature checks out but the token is past its expiry."""
