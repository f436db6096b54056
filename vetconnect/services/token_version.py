"""
Per-account token version, persisted on the users row.

Every token carries the version that was current when it was issued. Bumping
the version makes all of those tokens stale at once, whether or not they were
ever blacklisted.
"""

import logging

from sqlalchemy.orm import Session

from vetconnect.models import User

logger = logging.getLogger(__name__)


class TokenVersionStore:
    def __init__(self, db: Session):
        self.db = db

    def current_version(self, account_id) -> int:
        version = self.db.query(User.token_version).filter(User.id == account_id).scalar()
        if version is None:
            raise LookupError(f"User not found: {account_id}")
        return version

    def bump(self, account_id) -> int:
        """
        Increment the version with a single UPDATE and return the new value.

        The increment happens in the database, so two concurrent bumps give
        two increments. The caller commits.
        """
        updated = (
            self.db.query(User)
            .filter(User.id == account_id)
            .update(
                {User.token_version: User.token_version + 1},
                synchronize_session="fetch",
            )
        )
        if not updated:
            raise LookupError(f"User not found: {account_id}")

        version = self.current_version(account_id)
        logger.info(f"Token version bumped for user {account_id} to {version}")
        return version
