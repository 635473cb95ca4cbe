"""
Tests for SessionStore: save, load, expiry, upgrade, recovery and stats.

A controllable clock is injected so expiry boundaries are exact.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import pytest

from interview_continuity.codec import CURRENT_SCHEMA_VERSION, decode
from interview_continuity.models import ConversationQuality, InterviewSession
from interview_continuity.storage import (
    JsonFileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    StorageAdapter,
    StorageScope,
)
from interview_continuity.store import (
    BACKUP_KEY,
    QUOTA_EXCEEDED_MESSAGE,
    SESSION_KEY,
    SESSION_TIMEOUT_MS,
    SessionStore,
    is_expired,
)
from tests.mock_data import (
    BASE_TIME_MS,
    generate_legacy_payload,
    generate_session,
)


# =============================================================================
# Helpers
# =============================================================================


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, now: int = BASE_TIME_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class CountingStore:
    """Backend wrapper that counts reads."""

    def __init__(self, inner: KeyValueStore) -> None:
        self.inner = inner
        self.reads = 0

    def get_item(self, key: str) -> Optional[str]:
        self.reads += 1
        return self.inner.get_item(key)

    def set_item(self, key: str, value: str) -> None:
        self.inner.set_item(key, value)

    def remove_item(self, key: str) -> None:
        self.inner.remove_item(key)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def adapter(tmp_path: Path) -> StorageAdapter:
    return StorageAdapter(
        session_store=MemoryKeyValueStore(),
        durable_store=JsonFileKeyValueStore(tmp_path / "durable"),
    )


@pytest.fixture
def notices() -> list[str]:
    return []


@pytest.fixture
def store(adapter: StorageAdapter, clock: FakeClock, notices: list[str]) -> SessionStore:
    return SessionStore(adapter, clock=clock, on_quota_exceeded=notices.append)


def _primary(adapter: StorageAdapter) -> Optional[str]:
    return adapter.read(StorageScope.SESSION, SESSION_KEY)


def _backup(adapter: StorageAdapter) -> Optional[str]:
    return adapter.read(StorageScope.DURABLE, BACKUP_KEY)


# =============================================================================
# Save
# =============================================================================


class TestSave:
    """Persisting the session to primary and backup."""

    def test_save_writes_identical_primary_and_backup(
        self, store: SessionStore, adapter: StorageAdapter
    ) -> None:
        """Backup mirrors the primary byte for byte."""
        assert store.save(generate_session()) is True

        assert _primary(adapter) is not None
        assert _primary(adapter) == _backup(adapter)

    def test_save_stamps_version_and_time(
        self, store: SessionStore, adapter: StorageAdapter, clock: FakeClock
    ) -> None:
        """Stored record carries the current version and save time."""
        clock.advance(5_000)
        store.save(generate_session())

        data = json.loads(_primary(adapter))
        assert data["version"] == CURRENT_SCHEMA_VERSION
        assert data["lastUpdated"] == BASE_TIME_MS + 5_000

    def test_save_replaces_previous_record(
        self, store: SessionStore, adapter: StorageAdapter
    ) -> None:
        """Exactly one logical session is stored."""
        store.save(generate_session(num_questions=1))
        store.save(generate_session(num_questions=3))

        loaded = store.load()
        assert loaded is not None
        assert len(loaded.questions) == 3

    def test_last_updated_is_monotonic_across_saves(
        self, store: SessionStore, adapter: StorageAdapter, clock: FakeClock
    ) -> None:
        """A clock going backwards does not rewind the stored timestamp."""
        clock.advance(10_000)
        store.save(generate_session())
        saved = store.load()

        clock.advance(-5_000)
        store.save(saved)

        assert json.loads(_primary(adapter))["lastUpdated"] == BASE_TIME_MS + 10_000

    def test_primary_quota_failure_notifies_and_skips_backup(
        self, tmp_path: Path, clock: FakeClock
    ) -> None:
        """Storage-full on the primary write warns the user and writes nothing."""
        adapter = StorageAdapter(
            session_store=MemoryKeyValueStore(quota_bytes=10),
            durable_store=JsonFileKeyValueStore(tmp_path),
        )
        notices: list[str] = []
        store = SessionStore(adapter, clock=clock, on_quota_exceeded=notices.append)

        assert store.save(generate_session()) is False

        assert notices == [QUOTA_EXCEEDED_MESSAGE]
        assert _backup(adapter) is None

    def test_backup_quota_failure_keeps_primary(
        self, tmp_path: Path, clock: FakeClock
    ) -> None:
        """A full durable store does not roll back the primary write."""
        adapter = StorageAdapter(
            session_store=MemoryKeyValueStore(),
            durable_store=JsonFileKeyValueStore(tmp_path, quota_bytes=10),
        )
        notices: list[str] = []
        store = SessionStore(adapter, clock=clock, on_quota_exceeded=notices.append)

        assert store.save(generate_session()) is False

        assert notices == [QUOTA_EXCEEDED_MESSAGE]
        assert _primary(adapter) is not None
        assert _backup(adapter) is None

    def test_unavailable_storage_does_not_raise(
        self, tmp_path: Path, clock: FakeClock
    ) -> None:
        """Unusable durable storage is logged, not raised, and not a quota notice."""
        blocker = tmp_path / "blocked"
        blocker.write_text("x", encoding="utf-8")
        adapter = StorageAdapter(
            session_store=MemoryKeyValueStore(),
            durable_store=JsonFileKeyValueStore(blocker),
        )
        notices: list[str] = []
        store = SessionStore(adapter, clock=clock, on_quota_exceeded=notices.append)

        assert store.save(generate_session()) is False
        assert notices == []


# =============================================================================
# Load
# =============================================================================


class TestLoad:
    """Loading, fallback, and self-healing."""

    def test_load_empty_returns_none(self, store: SessionStore) -> None:
        """No stored data means no session."""
        assert store.load() is None

    def test_load_returns_saved_session(self, store: SessionStore) -> None:
        """A saved session comes back with its progress."""
        session = generate_session(num_questions=2)
        store.save(session)

        loaded = store.load()

        assert loaded is not None
        assert loaded.questions == session.questions
        assert loaded.settings == session.settings
        assert loaded.current_question_index == 1

    def test_backup_fallback_heals_primary(self, tmp_path: Path, clock: FakeClock) -> None:
        """Primary missing: load uses the backup, then the primary serves later loads."""
        durable_dir = tmp_path / "durable"
        SessionStore(
            StorageAdapter(MemoryKeyValueStore(), JsonFileKeyValueStore(durable_dir)),
            clock=clock,
        ).save(generate_session())

        # New tab: empty session-scoped store, same durable store.
        durable = CountingStore(JsonFileKeyValueStore(durable_dir))
        adapter = StorageAdapter(MemoryKeyValueStore(), durable)
        store = SessionStore(adapter, clock=clock)

        first = store.load()
        assert first is not None
        assert durable.reads == 1

        second = store.load()
        assert second == first
        assert durable.reads == 1

        assert _primary(adapter) == _backup(adapter)

    def test_expired_past_timeout(
        self, store: SessionStore, adapter: StorageAdapter, clock: FakeClock
    ) -> None:
        """One millisecond past the timeout: not returned and purged."""
        store.save(generate_session())
        clock.advance(SESSION_TIMEOUT_MS + 1)

        assert store.load() is None
        assert _primary(adapter) is None
        assert _backup(adapter) is None

    def test_not_expired_just_inside_timeout(
        self, store: SessionStore, clock: FakeClock
    ) -> None:
        """One millisecond inside the timeout: still resumable."""
        store.save(generate_session())
        clock.advance(SESSION_TIMEOUT_MS - 1)

        assert store.load() is not None

    def test_expiry_falls_back_to_start_time(
        self, store: SessionStore, adapter: StorageAdapter, clock: FakeClock
    ) -> None:
        """Records without lastUpdated expire from startTime."""
        start = clock.now - SESSION_TIMEOUT_MS - 1
        adapter.write(
            StorageScope.SESSION,
            SESSION_KEY,
            generate_legacy_payload(start_time=start),
        )

        assert store.load() is None
        assert _primary(adapter) is None

    def test_is_expired_boundary(self) -> None:
        """Exactly at the timeout is still valid."""
        session = generate_session(last_updated=BASE_TIME_MS)

        assert is_expired(session, BASE_TIME_MS + SESSION_TIMEOUT_MS) is False
        assert is_expired(session, BASE_TIME_MS + SESSION_TIMEOUT_MS + 1) is True

    def test_corrupted_record_is_deleted(
        self, store: SessionStore, adapter: StorageAdapter
    ) -> None:
        """Unparseable data is removed rather than retried."""
        store.save(generate_session())
        adapter.write(StorageScope.SESSION, SESSION_KEY, "{corrupt")

        assert store.load() is None
        assert _primary(adapter) is None
        assert _backup(adapter) is None

    def test_empty_version_record_is_upgraded(
        self, store: SessionStore, adapter: StorageAdapter
    ) -> None:
        """An empty version tag is a legacy record, not a broken one."""
        adapter.write(
            StorageScope.SESSION, SESSION_KEY, generate_legacy_payload(version="")
        )

        loaded = store.load()

        assert loaded is not None
        assert loaded.schema_version == CURRENT_SCHEMA_VERSION
        assert json.loads(_primary(adapter))["version"] == CURRENT_SCHEMA_VERSION

    def test_numeric_version_record_is_kept(
        self, store: SessionStore, adapter: StorageAdapter
    ) -> None:
        """A version stored as a number loads instead of being discarded."""
        record = json.loads(generate_legacy_payload(num_questions=2))
        record["version"] = 2.0
        adapter.write(StorageScope.SESSION, SESSION_KEY, json.dumps(record))

        loaded = store.load()

        assert loaded is not None
        assert len(loaded.questions) == 2
        assert loaded.schema_version == CURRENT_SCHEMA_VERSION

    def test_unupgradeable_record_is_treated_as_absent(
        self, store: SessionStore, adapter: StorageAdapter
    ) -> None:
        """A version tag that cannot be interpreted yields None, not a crash."""
        adapter.write(
            StorageScope.SESSION,
            SESSION_KEY,
            generate_legacy_payload(version="two-point-oh"),
        )

        assert store.load() is None
        assert _primary(adapter) is None

    def test_legacy_record_is_upgraded_and_written_back(
        self, store: SessionStore, adapter: StorageAdapter
    ) -> None:
        """Legacy record without version or coveredTopics loads in current shape."""
        adapter.write(StorageScope.SESSION, SESSION_KEY, generate_legacy_payload())

        loaded = store.load()

        assert loaded is not None
        assert loaded.schema_version == CURRENT_SCHEMA_VERSION
        assert loaded.covered_topics == set()
        assert loaded.conversation_quality == ConversationQuality.MODERATE

        stored = json.loads(_primary(adapter))
        assert stored["version"] == CURRENT_SCHEMA_VERSION
        assert stored["coveredTopics"] == []
        assert _primary(adapter) == _backup(adapter)

    def test_completed_session_is_not_resumed(
        self, store: SessionStore, adapter: StorageAdapter
    ) -> None:
        """Result-stage snapshots are never resumed but are kept."""
        store.save(generate_session(is_completed=True))

        assert store.load() is None
        assert _primary(adapter) is not None

    def test_unavailable_storage_returns_none(self, tmp_path: Path, clock: FakeClock) -> None:
        """Read failures on the backup become None."""
        blocker = tmp_path / "blocked"
        blocker.write_text("x", encoding="utf-8")
        store = SessionStore(
            StorageAdapter(MemoryKeyValueStore(), JsonFileKeyValueStore(blocker)),
            clock=clock,
        )

        assert store.load() is None


# =============================================================================
# Clear and Recover
# =============================================================================


class TestClearAndRecover:
    """Explicit clearing and disaster recovery from the backup."""

    def test_clear_is_total(self, store: SessionStore) -> None:
        """After clear, neither load nor recover sees data."""
        store.save(generate_session())

        store.clear()

        assert store.load() is None
        assert store.recover() is None

    def test_clear_without_session_is_noop(self, store: SessionStore) -> None:
        """Clearing twice, or with nothing stored, is fine."""
        store.clear()
        store.clear()

    def test_recover_restores_backup_verbatim(
        self, store: SessionStore, adapter: StorageAdapter
    ) -> None:
        """Recover copies the backup into the primary without upgrading it."""
        payload = generate_legacy_payload()
        adapter.write(StorageScope.DURABLE, BACKUP_KEY, payload)

        recovered = store.recover()

        assert recovered is not None
        assert recovered.schema_version is None
        assert recovered.covered_topics is None
        assert _primary(adapter) == payload

    def test_recover_replaces_corrupt_primary(
        self, store: SessionStore, adapter: StorageAdapter
    ) -> None:
        """A corrupt primary is overwritten by the good backup."""
        store.save(generate_session(num_questions=2))
        adapter.write(StorageScope.SESSION, SESSION_KEY, "garbage")

        recovered = store.recover()

        assert recovered is not None
        assert len(recovered.questions) == 2
        assert _primary(adapter) == _backup(adapter)

    def test_recover_without_backup_returns_none(self, store: SessionStore) -> None:
        """Nothing to recover from."""
        assert store.recover() is None

    def test_recover_corrupt_backup_is_deleted(
        self, store: SessionStore, adapter: StorageAdapter
    ) -> None:
        """A corrupt backup is removed rather than copied into the primary."""
        adapter.write(StorageScope.DURABLE, BACKUP_KEY, "[broken")

        assert store.recover() is None
        assert _backup(adapter) is None
        assert _primary(adapter) is None

    def test_recover_corrupt_backup_keeps_valid_primary(
        self, store: SessionStore, adapter: StorageAdapter
    ) -> None:
        """A bad backup never takes a resumable primary down with it."""
        store.save(generate_session(num_questions=2))
        primary = _primary(adapter)
        adapter.write(StorageScope.DURABLE, BACKUP_KEY, "{corrupt")

        assert store.recover() is None

        assert _backup(adapter) is None
        assert _primary(adapter) == primary
        loaded = store.load()
        assert loaded is not None
        assert len(loaded.questions) == 2

    def test_recover_ignores_expiry(
        self, store: SessionStore, clock: FakeClock
    ) -> None:
        """Recovery returns the backup even if load would consider it expired."""
        store.save(generate_session())
        clock.advance(SESSION_TIMEOUT_MS + 1)

        assert isinstance(store.recover(), InterviewSession)


# =============================================================================
# Stats
# =============================================================================


class TestStats:
    """Derived statistics view."""

    def test_stats_after_reload(self, tmp_path: Path, clock: FakeClock) -> None:
        """2 of 5 questions answered reports 40% after a reload."""
        durable_dir = tmp_path / "durable"
        session = generate_session(num_questions=2, question_count=5, current_question_index=1)
        SessionStore(
            StorageAdapter(MemoryKeyValueStore(), JsonFileKeyValueStore(durable_dir)),
            clock=clock,
        ).save(session)

        clock.advance(60_000)
        reloaded = SessionStore(
            StorageAdapter(MemoryKeyValueStore(), JsonFileKeyValueStore(durable_dir)),
            clock=clock,
        )
        stats = reloaded.stats()

        assert stats.has_active_session is True
        assert stats.question_count == 2
        assert stats.completion_rate == 40
        assert stats.session_age == 60_000

    def test_stats_without_session_are_zeroed(self, store: SessionStore) -> None:
        """No session gives an inactive, zeroed summary."""
        stats = store.stats()

        assert stats.has_active_session is False
        assert stats.session_age == 0
        assert stats.question_count == 0
        assert stats.completion_rate == 0

    def test_stats_with_zero_target(self, store: SessionStore) -> None:
        """A zero target question count does not divide by zero."""
        store.save(generate_session(num_questions=1, question_count=0))

        assert store.stats().completion_rate == 0

    def test_stats_serialize_camel_case(self, store: SessionStore) -> None:
        """Stats use the browser's field names on the wire."""
        store.save(generate_session())

        data = store.stats().model_dump(by_alias=True)

        assert set(data) == {"hasActiveSession", "sessionAge", "questionCount", "completionRate"}


# =============================================================================
# Identity-Scoped Keys
# =============================================================================


class TestIdentityScopedKeys:
    """Stores bound to an identity use that identity's keys."""

    def test_scoped_keys(self, adapter: StorageAdapter) -> None:
        """Key names follow interview_<id>_session / _backup."""
        store = SessionStore(adapter, identity_id="user-1")

        assert store.primary_key == "interview_user-1_session"
        assert store.backup_key == "interview_user-1_backup"

    def test_identities_do_not_share_sessions(
        self, adapter: StorageAdapter, clock: FakeClock
    ) -> None:
        """One identity's session is invisible to another and to the unscoped store."""
        SessionStore(adapter, identity_id="user-1", clock=clock).save(generate_session())

        assert SessionStore(adapter, identity_id="user-2", clock=clock).load() is None
        assert SessionStore(adapter, clock=clock).load() is None
        assert SessionStore(adapter, identity_id="user-1", clock=clock).load() is not None

    def test_has_saved_session(self, adapter: StorageAdapter, clock: FakeClock) -> None:
        """Either copy counts as a saved session."""
        store = SessionStore(adapter, identity_id="user-1", clock=clock)
        assert store.has_saved_session() is False

        store.save(generate_session())
        adapter.remove(StorageScope.SESSION, store.primary_key)

        assert store.has_saved_session() is True


def test_decode_of_stored_record_matches_load(
    store: SessionStore, adapter: StorageAdapter
) -> None:
    """What load returns is what is stored, once upgraded."""
    store.save(generate_session())

    assert decode(_primary(adapter)) == store.load()
