"""
Interview Session Continuity Package.

Keeps an in-progress mock interview alive across page reloads, tab
backgrounding, crashes and identity changes using only local storage.

Components:
    - StorageAdapter: Uniform read/write/remove over session-scoped and durable stores
    - Codec: encode/decode of session records plus schema upgrades
    - SessionStore: Primary + backup persistence with expiry and recovery
    - AutoSaveScheduler: Periodic saves on the running event loop
    - IdentityScopedCleaner: Purges a previous identity's session data
    - Models: Pydantic models for sessions, settings, questions and stats

Example:
    >>> from pathlib import Path
    >>> from interview_continuity import (
    ...     JsonFileKeyValueStore, MemoryKeyValueStore, SessionStore, StorageAdapter,
    ... )
    >>>
    >>> adapter = StorageAdapter(
    ...     session_store=MemoryKeyValueStore(),
    ...     durable_store=JsonFileKeyValueStore(Path("./storage")),
    ... )
    >>> store = SessionStore(adapter, identity_id="user-123")
    >>> store.save(session)
    True
    >>> print(store.stats().completion_rate)

Last Grunted: 10/16/2026
"""

from .models import (
    ConversationQuality,
    InterviewMetrics,
    InterviewQuestion,
    InterviewSession,
    InterviewSettings,
    SessionStats,
)

from .storage import (
    JsonFileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    StorageAdapter,
    StorageError,
    StorageQuotaExceeded,
    StorageScope,
    StorageUnavailable,
)

from .codec import (
    CURRENT_SCHEMA_VERSION,
    DecodeError,
    UpgradeFailed,
    compare_versions,
    decode,
    encode,
    needs_upgrade,
    upgrade,
)

from .store import (
    SESSION_TIMEOUT_MS,
    ExpiredSession,
    SessionStore,
)

from .autosave import AutoSaveHandle, AutoSaveScheduler

from .identity import CURRENT_IDENTITY_KEY, IdentityScopedCleaner


__all__ = [
    # Models
    "ConversationQuality",
    "InterviewMetrics",
    "InterviewQuestion",
    "InterviewSession",
    "InterviewSettings",
    "SessionStats",
    # Storage
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "StorageAdapter",
    "StorageError",
    "StorageQuotaExceeded",
    "StorageScope",
    "StorageUnavailable",
    # Codec
    "CURRENT_SCHEMA_VERSION",
    "DecodeError",
    "UpgradeFailed",
    "compare_versions",
    "decode",
    "encode",
    "needs_upgrade",
    "upgrade",
    # Session store
    "SESSION_TIMEOUT_MS",
    "ExpiredSession",
    "SessionStore",
    # Auto-save
    "AutoSaveHandle",
    "AutoSaveScheduler",
    # Identity
    "CURRENT_IDENTITY_KEY",
    "IdentityScopedCleaner",
]

__version__ = "0.3.0"
