"""
Interview Session Store.

Keeps one in-progress interview session alive across reloads, tab
backgrounding and crashes using only the two local stores:

    - primary copy in the session-scoped store
    - backup copy in the durable store, mirroring the last primary write

Every storage, parse and migration failure is converted to a None/False
result plus a log entry at this boundary. Only capacity exhaustion is also
reported to the user, through the quota notifier.

Thread Safety:
    Last writer wins. Two tabs auto-saving the same logical session will
    silently overwrite each other.

Last Grunted: 10/16/2026
"""

import logging
from typing import Callable, Optional

from .codec import (
    DecodeError,
    UpgradeFailed,
    current_time_ms,
    decode,
    encode,
    upgrade,
)
from .models import InterviewSession, SessionStats
from .storage import (
    StorageAdapter,
    StorageError,
    StorageQuotaExceeded,
    StorageScope,
    StorageUnavailable,
)


__all__ = [
    "SessionStore",
    "ExpiredSession",
    "SESSION_TIMEOUT_MS",
    "SESSION_KEY",
    "BACKUP_KEY",
    "QUOTA_EXCEEDED_MESSAGE",
    "primary_key_for",
    "backup_key_for",
    "is_expired",
]


logger = logging.getLogger(__name__)


SESSION_TIMEOUT_MS = 2 * 60 * 60 * 1000

SESSION_KEY = "interviewSession"
BACKUP_KEY = "interviewSessionBackup"

QUOTA_EXCEEDED_MESSAGE = (
    "Storage is full, so interview progress can no longer be saved. "
    "Clear your browser cache or site data to keep your progress."
)


def primary_key_for(identity_id: Optional[str]) -> str:
    """Primary (session-scoped) key, unscoped when no identity is given."""
    return f"interview_{identity_id}_session" if identity_id else SESSION_KEY


def backup_key_for(identity_id: Optional[str]) -> str:
    """Backup (durable) key, unscoped when no identity is given."""
    return f"interview_{identity_id}_backup" if identity_id else BACKUP_KEY


class ExpiredSession(Exception):
    """A valid record older than the session timeout."""

    def __init__(self, age_ms: int) -> None:
        self.age_ms = age_ms
        super().__init__(
            f"Session last updated {age_ms} ms ago (timeout {SESSION_TIMEOUT_MS} ms)"
        )


def is_expired(session: InterviewSession, now_ms: int) -> bool:
    """True when the record is strictly older than SESSION_TIMEOUT_MS."""
    return now_ms - session.reference_time > SESSION_TIMEOUT_MS


def _log_quota_warning(message: str) -> None:
    logger.warning("User notice: %s", message)


class SessionStore:
    """
    Save, load, expire, upgrade and recover the current interview session.

    A store bound to an identity uses that identity's keys
    (``interview_<id>_session`` / ``interview_<id>_backup``); an unbound
    store uses the unscoped ``interviewSession`` / ``interviewSessionBackup``.

    Example:
        >>> store = SessionStore(adapter, identity_id="user-123")
        >>> store.save(session)
        True
        >>> restored = store.load()
        >>> store.stats().completion_rate
        40.0
    """

    def __init__(
        self,
        adapter: StorageAdapter,
        identity_id: Optional[str] = None,
        *,
        clock: Callable[[], int] = current_time_ms,
        on_quota_exceeded: Optional[Callable[[str], None]] = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            adapter: Storage adapter over the session-scoped and durable stores.
            identity_id: Identity whose keys this store reads and writes.
            clock: Returns the current time in epoch milliseconds.
            on_quota_exceeded: Receives the user-facing warning when storage
                is full. Defaults to logging it.
        """
        self._adapter = adapter
        self.identity_id = identity_id
        self.primary_key = primary_key_for(identity_id)
        self.backup_key = backup_key_for(identity_id)
        self._clock = clock
        self._notify_quota = on_quota_exceeded or _log_quota_warning

    def save(self, session: InterviewSession) -> bool:
        """
        Persist the session to the primary key, then mirror it to the backup.

        Best-effort: never raises for storage failures. If the primary write
        fails the backup is left untouched. A failed backup write does not
        roll back the primary.

        Returns:
            True if both copies were written.
        """
        try:
            raw = encode(session, now_ms=self._clock())
        except ValueError as e:
            logger.error("Failed to serialize session: %s", e)
            return False

        try:
            self._adapter.write(StorageScope.SESSION, self.primary_key, raw)
            self._adapter.write(StorageScope.DURABLE, self.backup_key, raw)
        except StorageQuotaExceeded as e:
            logger.error("Failed to save session, storage full: %s", e)
            self._notify_quota(QUOTA_EXCEEDED_MESSAGE)
            return False
        except StorageUnavailable as e:
            logger.error("Failed to save session: %s", e)
            return False

        logger.debug(
            "Session saved (%d questions) under %s",
            len(session.questions),
            self.primary_key,
        )
        return True

    def load(self) -> Optional[InterviewSession]:
        """
        Load the resumable session, if any.

        Falls back to the backup when the primary copy is missing and heals
        the primary from it. The record is upgraded, checked for expiry and,
        if the upgrade changed it, written back in the new shape.

        Returns:
            The session, or None if nothing resumable is stored.
        """
        try:
            raw = self._adapter.read(StorageScope.SESSION, self.primary_key)
            if raw is None:
                raw = self._adapter.read(StorageScope.DURABLE, self.backup_key)
                if raw is not None:
                    logger.info("Session restored from backup")
                    self._restore_primary(raw)
        except StorageUnavailable as e:
            logger.error("Failed to load session: %s", e)
            return None

        if raw is None:
            return None

        decoded = decode(raw)
        if isinstance(decoded, DecodeError):
            logger.warning("Discarding corrupted session: %s", decoded)
            self.clear()
            return None

        try:
            session = upgrade(decoded)
        except UpgradeFailed as e:
            logger.warning("Discarding session that cannot be upgraded: %s", e)
            self.clear()
            return None

        try:
            self._check_expiry(session)
        except ExpiredSession as e:
            logger.info("Session expired, clearing data: %s", e)
            self.clear()
            return None

        if session.is_completed:
            logger.debug("Stored session is completed, not resuming")
            return None

        if session != decoded:
            logger.info(
                "Upgraded session from version %s to %s",
                decoded.schema_version,
                session.schema_version,
            )
            self.save(session)

        return session

    def clear(self) -> None:
        """Remove both copies. Safe to call when nothing is stored."""
        for scope, key in (
            (StorageScope.SESSION, self.primary_key),
            (StorageScope.DURABLE, self.backup_key),
        ):
            try:
                self._adapter.remove(scope, key)
            except StorageError as e:
                logger.error("Failed to clear %s session key %s: %s", scope.value, key, e)
        logger.debug("Session cleared for %s", self.primary_key)

    def recover(self) -> Optional[InterviewSession]:
        """
        Restore the backup into the primary slot verbatim and return it.

        Unlike load, no upgrade or expiry check is applied. Intended for when
        the primary copy is suspected to be corrupt.

        Returns:
            The backed-up session, or None if there is no usable backup. A
            corrupt backup is removed; the primary copy is left untouched.
        """
        try:
            raw = self._adapter.read(StorageScope.DURABLE, self.backup_key)
        except StorageUnavailable as e:
            logger.error("Failed to recover session: %s", e)
            return None

        if raw is None:
            return None

        decoded = decode(raw)
        if isinstance(decoded, DecodeError):
            # Only the backup is known bad; the primary may still be resumable.
            logger.warning("Discarding corrupted backup: %s", decoded)
            try:
                self._adapter.remove(StorageScope.DURABLE, self.backup_key)
            except StorageError as e:
                logger.error("Failed to remove corrupted backup %s: %s", self.backup_key, e)
            return None

        logger.info("Attempting session recovery from backup")
        self._restore_primary(raw)
        return decoded

    def stats(self) -> SessionStats:
        """
        Summarize the resumable session.

        Goes through load, so expiry and upgrade side effects apply.
        Returns zeroed stats when there is no session.
        """
        session = self.load()
        if session is None:
            return SessionStats()

        question_count = len(session.questions)
        target = session.settings.question_count
        completion_rate = 100 * question_count / target if target > 0 else 0.0

        return SessionStats(
            has_active_session=True,
            session_age=max(0, self._clock() - session.start_time),
            question_count=question_count,
            completion_rate=completion_rate,
        )

    def has_saved_session(self) -> bool:
        """True if either copy holds data, without decoding it."""
        try:
            return (
                self._adapter.read(StorageScope.SESSION, self.primary_key) is not None
                or self._adapter.read(StorageScope.DURABLE, self.backup_key) is not None
            )
        except StorageUnavailable as e:
            logger.error("Failed to check for saved session: %s", e)
            return False

    def _check_expiry(self, session: InterviewSession) -> None:
        now = self._clock()
        if is_expired(session, now):
            raise ExpiredSession(now - session.reference_time)

    def _restore_primary(self, raw: str) -> None:
        try:
            self._adapter.write(StorageScope.SESSION, self.primary_key, raw)
        except StorageQuotaExceeded as e:
            logger.error("Failed to restore primary session copy, storage full: %s", e)
            self._notify_quota(QUOTA_EXCEEDED_MESSAGE)
        except StorageUnavailable as e:
            logger.error("Failed to restore primary session copy: %s", e)
