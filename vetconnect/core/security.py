"""
Password hashing and signed session tokens.

Tokens are HMAC-signed JWTs (header.payload.signature). The payload carries
``sub``, ``email``, ``tokenVersion``, ``iat``, ``iatMs``, ``exp``, ``jti``
and ``type``. ``iatMs`` is the issue time in epoch milliseconds and is what
account-wide revocation cutoffs are compared against.
Expiry is checked here against an injectable clock instead of inside
``jwt.decode`` so that callers (and tests) control what "now" means.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import uuid4
import hashlib
import logging

from jose import JWTError, jwt
from passlib.context import CryptContext

from vetconnect.core.config import Settings
from vetconnect.core.exceptions import InvalidTokenError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Token type constants
TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"
TOKEN_TYPE_PASSWORD_RESET = "password_reset"

# 256 bits
MIN_SECRET_BYTES = 32

SUPPORTED_ALGORITHMS = ("HS256", "HS384", "HS512")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against a hashed password."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt."""
    return pwd_context.hash(password)


def hash_token(token: str) -> str:
    """Create SHA-256 hash of a token for storage."""
    return hashlib.sha256(token.encode()).hexdigest()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenClaims:
    """Decoded, signature-verified token payload."""

    subject: str
    email: str
    token_version: Optional[int]
    issued_at: datetime
    expires_at: datetime
    token_type: str
    jti: Optional[str] = None


class TokenCodec:
    """Issues and parses signed access, refresh and password-reset tokens."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS512",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        password_reset_ttl: timedelta = timedelta(minutes=30),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if not secret or len(secret.encode()) < MIN_SECRET_BYTES:
            raise ValueError("Token signing secret must be at least 256 bits (32 bytes)")
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported signing algorithm: {algorithm}")

        self._secret = secret
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.password_reset_ttl = password_reset_ttl
        self._clock = clock or utcnow

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        return cls(
            secret=settings.SECRET_KEY,
            algorithm=settings.ALGORITHM,
            access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
            password_reset_ttl=timedelta(minutes=settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES),
        )

    def now(self) -> datetime:
        return self._clock()

    @property
    def max_token_lifetime(self) -> timedelta:
        """How long an account-wide revocation must last to outlive every session token."""
        return max(self.access_ttl, self.refresh_ttl)

    def _issue(
        self,
        subject_id,
        email: str,
        token_version: Optional[int],
        ttl: timedelta,
        token_type: str,
    ) -> str:
        issued_at = self.now()
        expire = issued_at + ttl
        to_encode = {
            "sub": str(subject_id),
            "email": email,
            "iat": int(issued_at.timestamp()),
            "iatMs": round(issued_at.timestamp() * 1000),
            "exp": int(expire.timestamp()),
            "type": token_type,
            "jti": str(uuid4()),
        }
        if token_version is not None:
            to_encode["tokenVersion"] = token_version

        return jwt.encode(to_encode, self._secret, algorithm=self.algorithm)

    def issue_access_token(
        self,
        subject_id,
        email: str,
        token_version: int,
        ttl: Optional[timedelta] = None,
    ) -> str:
        """Create a short-lived access token bound to the account's token version."""
        return self._issue(
            subject_id, email, token_version, ttl or self.access_ttl, TOKEN_TYPE_ACCESS
        )

    def issue_refresh_token(
        self,
        subject_id,
        email: str,
        token_version: int,
        ttl: Optional[timedelta] = None,
    ) -> str:
        """
        Create a long-lived refresh token.

        Refresh tokens embed the token version too, so a password change or
        any other version bump also kills outstanding refresh tokens.
        """
        return self._issue(
            subject_id, email, token_version, ttl or self.refresh_ttl, TOKEN_TYPE_REFRESH
        )

    def issue_password_reset_token(self, subject_id, email: str, token_version: int) -> str:
        """Create a short-lived token for the forgot-password flow."""
        return self._issue(
            subject_id, email, token_version, self.password_reset_ttl, TOKEN_TYPE_PASSWORD_RESET
        )

    def decode(self, token: str, expected_type: Optional[str] = None) -> TokenClaims:
        """
        Verify signature and structure and return the claims.

        Expiry is not checked here; use ``validate`` or ``is_expired``.
        Raises InvalidTokenError on any problem.
        """
        if not token:
            raise InvalidTokenError("Token is empty")

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as e:
            raise InvalidTokenError(f"Invalid token: {e}")

        subject = payload.get("sub")
        email = payload.get("email")
        issued_at = payload.get("iat")
        expires_at = payload.get("exp")
        token_type = payload.get("type", TOKEN_TYPE_ACCESS)
        token_version = payload.get("tokenVersion")
        issued_at_ms = payload.get("iatMs")

        if not subject or not email:
            raise InvalidTokenError("Token is missing subject or email")
        if not isinstance(issued_at, (int, float)) or not isinstance(expires_at, (int, float)):
            raise InvalidTokenError("Token is missing issued-at or expiry")
        if token_version is not None and (
            isinstance(token_version, bool) or not isinstance(token_version, int)
        ):
            raise InvalidTokenError("Token version must be an integer")
        if expected_type and token_type != expected_type:
            raise InvalidTokenError(f"Expected a {expected_type} token")

        if isinstance(issued_at_ms, int) and not isinstance(issued_at_ms, bool):
            issued = datetime.fromtimestamp(issued_at_ms / 1000, tz=timezone.utc)
        else:
            issued = datetime.fromtimestamp(issued_at, tz=timezone.utc)

        return TokenClaims(
            subject=subject,
            email=email,
            token_version=token_version,
            issued_at=issued,
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
            token_type=token_type,
            jti=payload.get("jti"),
        )

    def is_expired(self, token: str) -> bool:
        """True when the token's expiry is in the past. Never raises."""
        try:
            claims = self.decode(token)
        except InvalidTokenError:
            return True
        return claims.expires_at <= self.now()

    def validate(self, token: str, expected_type: Optional[str] = None) -> bool:
        """Signature, structure and expiry check. Never raises."""
        try:
            claims = self.decode(token, expected_type=expected_type)
        except InvalidTokenError as e:
            logger.debug(f"Token validation failed: {e.detail}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error validating token: {e}")
            return False
        return claims.expires_at > self.now()

    def time_until_expiry(self, token: str) -> timedelta:
        """Remaining lifetime; negative for expired tokens."""
        claims = self.decode(token)
        return claims.expires_at - self.now()
