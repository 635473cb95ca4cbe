"""
Auto-save scheduler.

Periodically re-saves the in-memory session while the interview screen is
active, on the running asyncio event loop. The session object is captured
when the schedule starts; callers restart the schedule after replacing it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import InterviewSession
    from .store import SessionStore


__all__ = ["AutoSaveScheduler", "AutoSaveHandle", "DEFAULT_AUTOSAVE_INTERVAL_MS"]


logger = logging.getLogger(__name__)


DEFAULT_AUTOSAVE_INTERVAL_MS = 30_000


class AutoSaveHandle:
    """
    Cancelable handle for one running auto-save schedule.

    Calling the handle (or ``cancel()``) stops further saves. Cancelling
    more than once is a no-op, and no save fires after cancellation.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        store: SessionStore,
        session: InterviewSession,
        interval_ms: int,
    ) -> None:
        self._loop = loop
        self._store = store
        self._session = session
        self._interval_s = interval_ms / 1000
        self._timer: asyncio.TimerHandle | None = None
        self._cancelled = False
        self.save_count = 0

    @property
    def active(self) -> bool:
        """True until the handle is cancelled."""
        return not self._cancelled

    @property
    def session(self) -> InterviewSession:
        """The session captured when the schedule started."""
        return self._session

    def _schedule(self) -> None:
        self._timer = self._loop.call_later(self._interval_s, self._tick)

    def _tick(self) -> None:
        if self._cancelled:
            return
        try:
            if self._store.save(self._session):
                self.save_count += 1
        except Exception:
            logger.exception("Auto-save tick failed")
        finally:
            if not self._cancelled:
                self._schedule()

    def cancel(self) -> None:
        """Stop the schedule. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        logger.debug("Auto-save cancelled after %d saves", self.save_count)

    def __call__(self) -> None:
        self.cancel()


class AutoSaveScheduler:
    """
    Starts auto-save schedules against a SessionStore.

    Example:
        >>> scheduler = AutoSaveScheduler(store)
        >>> cancel = scheduler.start(session, interval_ms=30_000)
        >>> ...
        >>> cancel()
    """

    def __init__(self, store: SessionStore) -> None:
        self._store = store

    def start(
        self,
        session: InterviewSession,
        interval_ms: int = DEFAULT_AUTOSAVE_INTERVAL_MS,
    ) -> AutoSaveHandle:
        """
        Begin saving ``session`` every ``interval_ms`` milliseconds.

        Must be called from within a running event loop.

        Raises:
            ValueError: If interval_ms is not positive.
            RuntimeError: If no event loop is running.
        """
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive. Got: {interval_ms}")

        loop = asyncio.get_running_loop()
        handle = AutoSaveHandle(loop, self._store, session, interval_ms)
        handle._schedule()
        logger.info("Auto-save started every %d ms", interval_ms)
        return handle
