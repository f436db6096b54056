"""Custom exceptions and error handling for the VetConnect API."""

from fastapi import HTTPException, status


class VetConnectException(HTTPException):
    """Base exception for the VetConnect API."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


# Authentication Errors (401, 403)
class InvalidCredentialsError(VetConnectException):
    """Raised when login credentials are invalid."""

    def __init__(self, detail: str = "Invalid email or password"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="INVALID_CREDENTIALS",
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidTokenError(VetConnectException):
    """Raised when a JWT is malformed, badly signed, expired or revoked."""

    def __init__(self, detail: str = "Invalid token"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="INVALID_TOKEN",
            headers={"WWW-Authenticate": "Bearer"},
        )


class SessionExpiredError(VetConnectException):
    """
    Raised when a well-formed refresh token belongs to an invalidated session
    (password change, suspension, revoke-all). The user did nothing wrong and
    simply has to sign in again.
    """

    def __init__(self, detail: str = "Your session is no longer valid. Please sign in again."):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="SESSION_EXPIRED",
            headers={"WWW-Authenticate": "Bearer"},
        )


class NotAuthenticatedError(VetConnectException):
    """Raised by the authorization layer when a route needs a principal."""

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="NOT_AUTHENTICATED",
            headers={"WWW-Authenticate": "Bearer"},
        )


class AccountSuspendedError(VetConnectException):
    """Raised when a suspended account tries to sign in."""

    def __init__(self, detail: str = "This account has been suspended"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="ACCOUNT_SUSPENDED",
        )


class ForbiddenError(VetConnectException):
    """Raised when user lacks permission for an action."""

    def __init__(self, detail: str = "You do not have permission to perform this action"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="FORBIDDEN",
        )


# Resource Errors (404, 409)
class NotFoundError(VetConnectException):
    """Raised when a resource is not found."""

    def __init__(self, resource: str = "Resource", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail or f"{resource} not found",
            error_code="NOT_FOUND",
        )


class AlreadyExistsError(VetConnectException):
    """Raised when trying to create a resource that already exists."""

    def __init__(self, resource: str = "Resource", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail or f"{resource} already exists",
            error_code="ALREADY_EXISTS",
        )


# Validation Errors (400, 422)
class ValidationError(VetConnectException):
    """Raised when input validation fails."""

    def __init__(self, detail: str = "Invalid input"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="VALIDATION_ERROR",
        )


# Rate Limiting (429)
class RateLimitExceededError(VetConnectException):
    """Raised when rate limit is exceeded."""

    def __init__(
        self,
        detail: str = "Rate limit exceeded. Please try again later.",
        retry_after: int | None = None,
    ):
        headers = None
        if retry_after is not None:
            headers = {"Retry-After": str(max(1, retry_after))}
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=detail,
            error_code="RATE_LIMIT_EXCEEDED",
            headers=headers,
        )
        self.retry_after = retry_after

