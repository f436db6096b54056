"""
Per-request session validation.

A bearer token is checked in a fixed order and the first failing check ends
the evaluation with an anonymous result:

1. no token
2. bad signature, malformed, expired or not an access token
3. the token itself is blacklisted
4. every token of the account is blacklisted
5. the account cannot be loaded (missing, soft-deleted or suspended)
6. the embedded token version is not the account's current version
7. authenticated

Nothing is written while validating. Failures never raise: the caller gets
an anonymous result and the authorization layer decides what that means for
the route.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol
from uuid import UUID

from vetconnect.core.security import TOKEN_TYPE_ACCESS, TokenCodec
from vetconnect.core.token_blacklist import RevocationStore

logger = logging.getLogger(__name__)


class Account(Protocol):
    id: UUID
    email: str
    role: str
    is_active: bool
    is_deleted: bool


class VersionSource(Protocol):
    def current_version(self, account_id) -> int: ...


class RejectReason(str, Enum):
    NO_TOKEN = "no_token"
    INVALID_TOKEN = "invalid_token"
    TOKEN_REVOKED = "token_revoked"
    ACCOUNT_REVOKED = "account_revoked"
    ACCOUNT_UNAVAILABLE = "account_unavailable"
    VERSION_MISMATCH = "version_mismatch"
    ERROR = "error"


@dataclass(frozen=True)
class Principal:
    """The authenticated caller. Produced only by SessionValidator."""

    id: UUID
    email: str
    role: str
    token_version: int
    authorities: tuple[str, ...] = ()

    @classmethod
    def from_account(cls, account: Account, token_version: int) -> "Principal":
        return cls(
            id=account.id,
            email=account.email,
            role=account.role,
            token_version=token_version,
            authorities=(f"ROLE_{account.role}",),
        )

    def has_role(self, role: str) -> bool:
        return f"ROLE_{role}" in self.authorities

    @property
    def is_admin(self) -> bool:
        return self.has_role("ADMIN")


@dataclass(frozen=True)
class SessionResult:
    principal: Optional[Principal] = None
    reason: Optional[RejectReason] = None

    @property
    def authenticated(self) -> bool:
        return self.principal is not None


class SessionValidator:
    """Turns a bearer token into a Principal, or into an anonymous result."""

    def __init__(
        self,
        codec: TokenCodec,
        revocations: RevocationStore,
        load_account: Callable[[str], Optional[Account]],
        versions: VersionSource,
    ):
        self.codec = codec
        self.revocations = revocations
        self.load_account = load_account
        self.versions = versions

    def authenticate(self, token: Optional[str]) -> Optional[Principal]:
        return self.resolve(token).principal

    def resolve(self, token: Optional[str]) -> SessionResult:
        if not token:
            return SessionResult(reason=RejectReason.NO_TOKEN)
        try:
            return self._resolve(token)
        except Exception as e:
            logger.error(f"Cannot set user authentication: {e}")
            return SessionResult(reason=RejectReason.ERROR)

    def _resolve(self, token: str) -> SessionResult:
        if not self.codec.validate(token, expected_type=TOKEN_TYPE_ACCESS):
            logger.info("Rejected bearer token: invalid, expired or wrong type")
            return SessionResult(reason=RejectReason.INVALID_TOKEN)

        claims = self.codec.decode(token, expected_type=TOKEN_TYPE_ACCESS)

        if self.revocations.is_token_revoked(token):
            logger.warning(f"Attempted use of blacklisted token for user: {claims.subject}")
            return SessionResult(reason=RejectReason.TOKEN_REVOKED)

        if self.revocations.is_all_revoked_for_account(claims.subject, issued_at=claims.issued_at):
            logger.warning(
                f"Attempted use of token for user with all tokens blacklisted: {claims.subject}"
            )
            return SessionResult(reason=RejectReason.ACCOUNT_REVOKED)

        account = self.load_account(claims.subject)
        if account is None or account.is_deleted or not account.is_active:
            logger.warning(f"Token presented for unavailable account: {claims.subject}")
            return SessionResult(reason=RejectReason.ACCOUNT_UNAVAILABLE)

        current_version = self.versions.current_version(account.id)
        if claims.token_version != current_version:
            logger.warning(
                f"Token version mismatch for user: {claims.subject}. "
                f"Token version: {claims.token_version}, Current version: {current_version}"
            )
            return SessionResult(reason=RejectReason.VERSION_MISMATCH)

        logger.debug(f"Set authentication for user: {account.id}")
        return SessionResult(principal=Principal.from_account(account, current_version))
