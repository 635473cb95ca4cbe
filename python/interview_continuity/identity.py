"""
Identity-scoped session cleanup.

Ensures one browser profile never hands one user's interview content to
another: when a different identity signs in, or the current one signs out,
every session key belonging to the previous identity is purged.

The identity provider passes identities in explicitly on each transition.
The last-seen identity is kept in the durable store only so a transition
can be detected across restarts; it is read and written explicitly by each
call, never cached.
"""

import logging
from typing import Optional

from .store import BACKUP_KEY, SESSION_KEY, SessionStore, backup_key_for, primary_key_for
from .storage import StorageAdapter, StorageError, StorageScope


__all__ = ["IdentityScopedCleaner", "CURRENT_IDENTITY_KEY", "session_keys_for"]


logger = logging.getLogger(__name__)


CURRENT_IDENTITY_KEY = "currentUserId"


def session_keys_for(identity_id: str) -> tuple[str, ...]:
    """All keys that may hold session data for an identity, legacy keys included."""
    return (
        primary_key_for(identity_id),
        backup_key_for(identity_id),
        SESSION_KEY,
        BACKUP_KEY,
    )


class IdentityScopedCleaner:
    """
    Purges session data on identity transitions.

    Storage errors are logged and swallowed so cleanup can never fail the
    surrounding sign-in or sign-out flow.

    Example:
        >>> cleaner = IdentityScopedCleaner(adapter)
        >>> cleaner.on_identity_established("user-a")
        >>> cleaner.on_identity_established("user-b")  # purges user-a
        >>> cleaner.on_signed_out("user-b")
    """

    def __init__(self, adapter: StorageAdapter) -> None:
        self._adapter = adapter

    def remembered_identity(self) -> Optional[str]:
        """Read the last-seen identity marker, or None."""
        try:
            return self._adapter.read(StorageScope.DURABLE, CURRENT_IDENTITY_KEY)
        except StorageError as e:
            logger.error("Failed to read remembered identity: %s", e)
            return None

    def on_identity_established(
        self,
        identity_id: str,
        previous_identity_id: Optional[str] = None,
    ) -> bool:
        """
        Record ``identity_id`` as current, purging the previous identity's data.

        Args:
            identity_id: The identity that just signed in.
            previous_identity_id: The identity the provider saw before, if it
                knows. Falls back to the remembered marker.

        Returns:
            True if a different previous identity's data was purged.
        """
        previous = previous_identity_id or self.remembered_identity()
        purged = False

        if previous and previous != identity_id:
            logger.info("Identity switched, clearing previous identity's interview data")
            self.purge(previous)
            purged = True

        try:
            self._adapter.write(StorageScope.DURABLE, CURRENT_IDENTITY_KEY, identity_id)
        except StorageError as e:
            logger.error("Failed to remember identity: %s", e)

        return purged

    def on_signed_out(self, identity_id: Optional[str]) -> None:
        """Purge the signed-out identity's data and forget the marker."""
        target = identity_id or self.remembered_identity()
        if target:
            logger.info("Identity signed out, clearing interview data")
            self.purge(target)

        try:
            self._adapter.remove(StorageScope.DURABLE, CURRENT_IDENTITY_KEY)
        except StorageError as e:
            logger.error("Failed to forget remembered identity: %s", e)

    def purge(self, identity_id: str) -> None:
        """Remove every session key for an identity from both stores."""
        for key in session_keys_for(identity_id):
            for scope in (StorageScope.SESSION, StorageScope.DURABLE):
                try:
                    self._adapter.remove(scope, key)
                except StorageError as e:
                    logger.error("Error clearing storage key %s:%s: %s", scope.value, key, e)
        logger.info("Cleared interview data for identity %s", identity_id)

    def has_saved_session(self, identity_id: str) -> bool:
        """True if the identity has a session stored under its scoped keys."""
        if not identity_id:
            return False
        return SessionStore(self._adapter, identity_id=identity_id).has_saved_session()
