"""
Interview Continuity Service

Local API the interview UI shell calls to persist, resume and recover an
in-progress interview session, and that the identity provider notifies on
sign-in / sign-out so one user's interview never leaks to the next.

Endpoints:
    PUT    /session                  - Save the current session
    GET    /session                  - Load the resumable session
    DELETE /session                  - Clear both session copies
    POST   /session/recover          - Restore primary copy from backup
    GET    /session/stats            - Session statistics
    POST   /session/autosave         - Start auto-saving the last saved session
    DELETE /session/autosave         - Stop auto-saving
    POST   /identity/established     - Identity signed in
    POST   /identity/signed-out      - Identity signed out
    GET    /identity/{id}/saved-session - Whether an identity has a saved session
    GET    /notices                  - User-facing warnings (storage full)
    GET    /health                   - Health check

Internal binding: configured by CONTINUITY_HOST/CONTINUITY_PORT (default 127.0.0.1:8790)

Last Grunted: 10/18/2026
"""

from __future__ import annotations

import logging
import os
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any, AsyncIterator, Optional, TypedDict

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from interview_continuity import (
    AutoSaveHandle,
    AutoSaveScheduler,
    IdentityScopedCleaner,
    InterviewSession,
    JsonFileKeyValueStore,
    MemoryKeyValueStore,
    SessionStats,
    SessionStore,
    StorageAdapter,
    __version__,
)
from interview_continuity.autosave import DEFAULT_AUTOSAVE_INTERVAL_MS


load_dotenv()


# =============================================================================
# Logging Configuration
# =============================================================================

logging.basicConfig(
    level=(os.environ.get("CONTINUITY_LOG_LEVEL") or "INFO").strip().upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class RuntimeConfig:
    """Runtime config for the continuity service."""

    host: str
    port: int
    storage_dir: Path
    autosave_interval_ms: int
    storage_quota_bytes: Optional[int]


def _positive_int_env(name: str, default: Optional[str]) -> Optional[int]:
    raw = (os.environ.get(name, default or "") or "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer. Got: {raw}") from exc
    if value <= 0:
        raise RuntimeError(f"{name} must be positive. Got: {value}.")
    return value


def load_runtime_config() -> RuntimeConfig:
    """Load runtime config from environment with strict validation."""
    host = (os.environ.get("CONTINUITY_HOST", "127.0.0.1") or "").strip()
    if not host:
        raise RuntimeError("CONTINUITY_HOST resolved to empty value.")

    port_raw = (os.environ.get("CONTINUITY_PORT", "8790") or "").strip()
    try:
        port = int(port_raw)
    except ValueError as exc:
        raise RuntimeError(f"CONTINUITY_PORT must be an integer. Got: {port_raw}") from exc
    if port < 1 or port > 65535:
        raise RuntimeError(f"CONTINUITY_PORT must be in range 1-65535. Got: {port}.")

    storage_override = (os.environ.get("CONTINUITY_STORAGE_DIR") or "").strip()
    if storage_override:
        storage_dir = Path(storage_override).expanduser()
    else:
        storage_dir = Path(__file__).parent / "storage"

    autosave_interval_ms = _positive_int_env(
        "AUTOSAVE_INTERVAL_MS", str(DEFAULT_AUTOSAVE_INTERVAL_MS)
    )
    if autosave_interval_ms is None:
        raise RuntimeError("AUTOSAVE_INTERVAL_MS resolved to empty value.")

    return RuntimeConfig(
        host=host,
        port=port,
        storage_dir=storage_dir,
        autosave_interval_ms=autosave_interval_ms,
        storage_quota_bytes=_positive_int_env("STORAGE_QUOTA_BYTES", None),
    )


RUNTIME_CONFIG = load_runtime_config()

SERVICE_NAME = "Interview Continuity Service"

CORS_ORIGINS: list[str] = [
    "http://localhost:5173",  # Vite dev server
    "http://localhost:3000",
]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# Request Models
# =============================================================================


class IdentityRequest(BaseModel):
    """Identity transition reported by the identity provider."""

    identity_id: str = Field(..., min_length=1, description="Opaque identity identifier")
    previous_identity_id: str | None = Field(
        default=None,
        description="Identity the provider saw before this one, when known",
    )


class SignedOutRequest(BaseModel):
    """Sign-out reported by the identity provider."""

    identity_id: str | None = Field(
        default=None,
        description="Identity that signed out. Defaults to the remembered identity.",
    )


class AutoSaveStartRequest(BaseModel):
    """Request to start auto-saving."""

    interval_ms: int | None = Field(
        default=None, gt=0, description="Save interval in milliseconds"
    )


# =============================================================================
# Response Models
# =============================================================================


class BaseResponse(BaseModel):
    """Base response model with common fields."""

    ok: bool = Field(..., description="Whether the operation succeeded")
    message: str | None = Field(default=None, description="Optional status message")


class ErrorResponse(BaseModel):
    """Standard error response."""

    ok: bool = Field(default=False)
    error: str = Field(..., description="Error description")
    error_code: str | None = Field(default=None, description="Machine-readable error code")


class SessionResponse(BaseModel):
    """A loaded or recovered session."""

    found: bool = Field(..., description="Whether a session was returned")
    session: InterviewSession | None = Field(default=None)


class AutoSaveResponse(BaseResponse):
    """Auto-save schedule status."""

    active: bool = Field(..., description="Whether auto-save is running")
    interval_ms: int | None = Field(default=None, description="Active save interval")


class IdentityResponse(BaseResponse):
    """Result of an identity transition."""

    identity_id: str | None = Field(default=None, description="Current identity")
    purged: bool = Field(default=False, description="Whether previous data was purged")


class SavedSessionResponse(BaseModel):
    """Whether an identity has a saved interview."""

    identity_id: str
    has_saved_session: bool


class NoticesResponse(BaseModel):
    """User-facing warnings accumulated by the service."""

    notices: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    timestamp: str = Field(..., description="Current server timestamp")
    identity_id: str | None = Field(default=None, description="Current identity")
    autosave_active: bool = Field(..., description="Whether auto-save is running")


# =============================================================================
# Application State (Type-safe Lifespan State)
# =============================================================================


@dataclass
class ContinuityRuntime:
    """Mutable per-process state shared by all requests."""

    identity_id: str | None = None
    last_session: InterviewSession | None = None
    autosave: AutoSaveHandle | None = None
    autosave_interval_ms: int | None = None
    notices: deque[str] = field(default_factory=lambda: deque(maxlen=20))

    def stop_autosave(self) -> None:
        if self.autosave is not None:
            self.autosave.cancel()
        self.autosave = None
        self.autosave_interval_ms = None


class AppState(TypedDict):
    """Type-safe application state managed by lifespan."""

    adapter: StorageAdapter
    cleaner: IdentityScopedCleaner
    runtime: ContinuityRuntime


# =============================================================================
# Custom Exceptions
# =============================================================================


class ContinuityServiceError(Exception):
    """Base exception for continuity service errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str | None = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class NoSessionError(ContinuityServiceError):
    """Raised when an operation needs a session and none is stored."""

    def __init__(self, message: str = "No resumable session. Save a session first.") -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code="NO_SESSION",
        )


# =============================================================================
# Dependencies
# =============================================================================


def get_app_state(request: Request) -> AppState:
    """
    Dependency to retrieve application state from request.

    Raises:
        RuntimeError: If state is not properly initialized.
    """
    state = getattr(request, "state", None)
    if state is None:
        raise RuntimeError("Application state not initialized")
    return AppState(
        adapter=state.adapter,
        cleaner=state.cleaner,
        runtime=state.runtime,
    )


AppStateDep = Annotated[AppState, Depends(get_app_state)]


def build_session_store(state: AppState) -> SessionStore:
    """Session store bound to the current identity, reporting quota warnings as notices."""
    runtime = state["runtime"]
    return SessionStore(
        state["adapter"],
        identity_id=runtime.identity_id,
        on_quota_exceeded=runtime.notices.append,
    )


def _start_autosave(state: AppState, session: InterviewSession, interval_ms: int) -> None:
    runtime = state["runtime"]
    runtime.stop_autosave()
    scheduler = AutoSaveScheduler(build_session_store(state))
    runtime.autosave = scheduler.start(session, interval_ms)
    runtime.autosave_interval_ms = interval_ms


# =============================================================================
# Exception Handlers
# =============================================================================


async def continuity_service_error_handler(
    request: Request, exc: ContinuityServiceError
) -> JSONResponse:
    """Handle ContinuityServiceError exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            ok=False,
            error=exc.message,
            error_code=exc.error_code,
        ).model_dump(),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            ok=False,
            error="Internal server error",
            error_code="INTERNAL_ERROR",
        ).model_dump(),
    )


# =============================================================================
# FastAPI App Lifespan
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[dict[str, Any]]:
    """
    Manage application lifespan with type-safe state.

    The session-scoped store lives in memory for exactly as long as the
    process; the durable store lives in RUNTIME_CONFIG.storage_dir.
    """
    logger.info("Starting %s %s", SERVICE_NAME, __version__)
    logger.info("Durable storage directory: %s", RUNTIME_CONFIG.storage_dir)
    if RUNTIME_CONFIG.storage_quota_bytes:
        logger.info("Storage quota: %d bytes", RUNTIME_CONFIG.storage_quota_bytes)

    adapter = StorageAdapter(
        session_store=MemoryKeyValueStore(quota_bytes=RUNTIME_CONFIG.storage_quota_bytes),
        durable_store=JsonFileKeyValueStore(
            RUNTIME_CONFIG.storage_dir,
            quota_bytes=RUNTIME_CONFIG.storage_quota_bytes,
        ),
    )
    cleaner = IdentityScopedCleaner(adapter)
    runtime = ContinuityRuntime(identity_id=cleaner.remembered_identity())

    yield {
        "adapter": adapter,
        "cleaner": cleaner,
        "runtime": runtime,
    }

    logger.info("Shutting down...")
    runtime.stop_autosave()


# =============================================================================
# FastAPI Application
# =============================================================================


app = FastAPI(
    title=SERVICE_NAME,
    version=__version__,
    description="Local session continuity for in-progress mock interviews",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
    max_age=3600,
)

app.add_exception_handler(ContinuityServiceError, continuity_service_error_handler)
app.add_exception_handler(Exception, generic_exception_handler)


# =============================================================================
# Session Endpoints
# =============================================================================


@app.put("/session", response_model=BaseResponse)
async def save_session(session: InterviewSession, state: AppStateDep) -> BaseResponse:
    """
    Save the current session.

    A running auto-save schedule is restarted on the new session object,
    since the schedule only ever saves the object it was started with.
    """
    runtime = state["runtime"]
    saved = build_session_store(state).save(session)
    runtime.last_session = session

    if runtime.autosave is not None and runtime.autosave_interval_ms:
        _start_autosave(state, session, runtime.autosave_interval_ms)

    return BaseResponse(
        ok=saved,
        message=None if saved else "Session could not be persisted",
    )


@app.get("/session", response_model=SessionResponse)
async def load_session(state: AppStateDep) -> SessionResponse:
    """Load the resumable session, if any."""
    session = build_session_store(state).load()
    if session is not None:
        state["runtime"].last_session = session
    return SessionResponse(found=session is not None, session=session)


@app.delete("/session", response_model=BaseResponse)
async def clear_session(state: AppStateDep) -> BaseResponse:
    """Clear both copies and stop auto-saving."""
    runtime = state["runtime"]
    runtime.stop_autosave()
    runtime.last_session = None
    build_session_store(state).clear()
    return BaseResponse(ok=True, message="Session cleared")


@app.post("/session/recover", response_model=SessionResponse)
async def recover_session(state: AppStateDep) -> SessionResponse:
    """Restore the primary copy from the backup."""
    session = build_session_store(state).recover()
    return SessionResponse(found=session is not None, session=session)


@app.get("/session/stats", response_model=SessionStats)
async def session_stats(state: AppStateDep) -> SessionStats:
    """Statistics for the resumable session."""
    return build_session_store(state).stats()


@app.post("/session/autosave", response_model=AutoSaveResponse)
async def start_autosave(
    state: AppStateDep,
    request: AutoSaveStartRequest | None = None,
) -> AutoSaveResponse:
    """
    Start auto-saving the last saved (or loaded) session.

    Raises:
        NoSessionError: If there is no session to auto-save.
    """
    runtime = state["runtime"]
    session = runtime.last_session or build_session_store(state).load()
    if session is None:
        raise NoSessionError()

    interval_ms = (
        request.interval_ms
        if request is not None and request.interval_ms
        else RUNTIME_CONFIG.autosave_interval_ms
    )
    _start_autosave(state, session, interval_ms)
    return AutoSaveResponse(ok=True, active=True, interval_ms=interval_ms)


@app.delete("/session/autosave", response_model=AutoSaveResponse)
async def stop_autosave(state: AppStateDep) -> AutoSaveResponse:
    """Stop auto-saving. Safe to call when nothing is running."""
    state["runtime"].stop_autosave()
    return AutoSaveResponse(ok=True, active=False)


# =============================================================================
# Identity Endpoints
# =============================================================================


@app.post("/identity/established", response_model=IdentityResponse)
async def identity_established(
    request: IdentityRequest, state: AppStateDep
) -> IdentityResponse:
    """Record a sign-in, purging a different previous identity's data."""
    runtime = state["runtime"]
    previous = request.previous_identity_id or runtime.identity_id
    purged = state["cleaner"].on_identity_established(request.identity_id, previous)

    if purged:
        runtime.stop_autosave()
        runtime.last_session = None
    runtime.identity_id = request.identity_id

    return IdentityResponse(ok=True, identity_id=request.identity_id, purged=purged)


@app.post("/identity/signed-out", response_model=IdentityResponse)
async def identity_signed_out(
    state: AppStateDep,
    request: SignedOutRequest | None = None,
) -> IdentityResponse:
    """Record a sign-out, purging that identity's data."""
    runtime = state["runtime"]
    target = (request.identity_id if request is not None else None) or runtime.identity_id

    runtime.stop_autosave()
    runtime.last_session = None
    state["cleaner"].on_signed_out(target)
    runtime.identity_id = None

    return IdentityResponse(ok=True, identity_id=None, purged=target is not None)


@app.get("/identity/{identity_id}/saved-session", response_model=SavedSessionResponse)
async def identity_saved_session(identity_id: str, state: AppStateDep) -> SavedSessionResponse:
    """Whether the identity has a session stored under its keys."""
    return SavedSessionResponse(
        identity_id=identity_id,
        has_saved_session=state["cleaner"].has_saved_session(identity_id),
    )


# =============================================================================
# Service Endpoints
# =============================================================================


@app.get("/notices", response_model=NoticesResponse)
async def notices(state: AppStateDep) -> NoticesResponse:
    """User-facing warnings, oldest first."""
    return NoticesResponse(notices=list(state["runtime"].notices))


@app.get("/health", response_model=HealthResponse)
async def health(state: AppStateDep) -> HealthResponse:
    """Health check."""
    runtime = state["runtime"]
    return HealthResponse(
        status="healthy",
        service=SERVICE_NAME,
        version=__version__,
        timestamp=_utc_now(),
        identity_id=runtime.identity_id,
        autosave_active=runtime.autosave is not None and runtime.autosave.active,
    )


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    logger.info("=" * 60)
    logger.info(SERVICE_NAME)
    logger.info("=" * 60)
    logger.info("Binding to: http://%s:%d", RUNTIME_CONFIG.host, RUNTIME_CONFIG.port)
    logger.info("Durable storage: %s", RUNTIME_CONFIG.storage_dir)
    logger.info("Auto-save interval: %d ms", RUNTIME_CONFIG.autosave_interval_ms)
    logger.info("=" * 60)

    uvicorn.run(
        app,
        host=RUNTIME_CONFIG.host,
        port=RUNTIME_CONFIG.port,
        log_level="info",
    )
