"""
Exception Classes - Strongly typed exception hierarchy.

Every error carries the HTTP status it surfaces with, so the API layer can
render the failure envelope without a per-route mapping.
"""

from uuid import UUID


class IdentityError(Exception):
    """Base exception for all identity service errors."""

    status_code: int = 500

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.message = message
        self.errors = errors or []
        super().__init__(message)


class ValidationError(IdentityError):
    """Raised when input is missing, malformed, or violates a policy."""

    status_code = 400


class ConflictError(IdentityError):
    """Raised when a unique field (username, email) is already taken."""

    status_code = 400

    def __init__(self, field: str, value: str) -> None:
        self.field = field
        self.value = value
        super().__init__(f"An account with this {field} already exists", [field])


class UnauthorizedError(IdentityError):
    """Raised when a credential is wrong, missing, or no longer valid."""

    status_code = 401


class InvalidTokenError(UnauthorizedError):
    """Raised when a token has a bad signature, malformed payload, or is expired."""

    def __init__(self, reason: str, expired: bool = False) -> None:
        self.reason = reason
        self.expired = expired
        super().__init__(f"Invalid token: {reason}")


class NotFoundError(IdentityError):
    """Raised when a requested resource does not exist."""

    status_code = 404


class AccountNotFoundError(NotFoundError):
    """Raised when no account matches an id or email."""

    def __init__(self, lookup: UUID | str) -> None:
        self.lookup = lookup
        super().__init__("Account does not exist")


class ChannelNotFoundError(NotFoundError):
    """Raised when no account matches a channel username."""

    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__("Channel does not exist")


class AssetNotFoundError(NotFoundError):
    """Raised when an upload was expected but no local file was staged."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"{field} file is missing", [field])


class ServerFaultError(IdentityError):
    """Raised when a downstream collaborator fails or an invariant is violated."""

    status_code = 500


class UploadFailedError(ServerFaultError):
    """Raised when object storage cannot produce a reference for an upload."""

    def __init__(self, field: str, reason: str | None = None) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"Failed to upload {field}")


class WriteVerificationError(ServerFaultError):
    """Raised when a database write cannot be read back."""

    def __init__(self, message: str) -> None:
        super().__init__(f"Write verification failed: {message}")


class QueryTimeoutError(ServerFaultError):
    """Raised when an aggregation query exceeds its deadline."""

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Query {operation} exceeded {timeout_seconds}s")
