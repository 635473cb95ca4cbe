"""
Session record codec and schema migrator.

Serializes InterviewSession records to the JSON text kept in storage,
parses them back, and upgrades records written by older schema versions
to the current shape.

Schema history:
    - no version / < 2.0: legacy records, settings + questions only
    - 2.0: adds conversationQuality, coveredTopics, interviewMetrics
    - 3.0: guarantees isCompleted and currentQuestionIndex are populated
"""

import logging
import time
from typing import Callable, Optional, Union

from pydantic import ValidationError

from .models import ConversationQuality, InterviewMetrics, InterviewSession


__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "DecodeError",
    "UpgradeFailed",
    "compare_versions",
    "current_time_ms",
    "decode",
    "encode",
    "needs_upgrade",
    "stamp",
    "upgrade",
]


logger = logging.getLogger(__name__)


CURRENT_SCHEMA_VERSION = "3.0"


class DecodeError(Exception):
    """Stored text does not parse as a session record."""

    def __init__(self, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"Malformed session record: {cause}")


class UpgradeFailed(Exception):
    """A record could not be migrated to the current schema."""

    def __init__(self, version: Optional[str], cause: Optional[Exception] = None) -> None:
        self.version = version
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Cannot upgrade session from version {version!r}{detail}")


def current_time_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _parse_version(tag: str) -> tuple[int, ...]:
    try:
        return tuple(int(part) for part in tag.strip().split("."))
    except ValueError as e:
        raise UpgradeFailed(tag, e) from e


def compare_versions(left: str, right: str) -> int:
    """
    Compare two dotted version tags numerically.

    Returns:
        Negative if left < right, zero if equal, positive if left > right.

    Raises:
        UpgradeFailed: If either tag is not a dotted sequence of integers.
    """
    a = _parse_version(left)
    b = _parse_version(right)
    width = max(len(a), len(b))
    a += (0,) * (width - len(a))
    b += (0,) * (width - len(b))
    return (a > b) - (a < b)


def needs_upgrade(session: InterviewSession) -> bool:
    """True when the record predates the current schema. Empty tags count as absent."""
    if not session.schema_version:
        return True
    return compare_versions(session.schema_version, CURRENT_SCHEMA_VERSION) < 0


def stamp(session: InterviewSession, now_ms: Optional[int] = None) -> InterviewSession:
    """
    Return a copy carrying the current schema tag and a fresh lastUpdated.

    lastUpdated never moves backwards and never precedes startTime, even if
    the wall clock does.
    """
    now = current_time_ms() if now_ms is None else now_ms
    last_updated = max(now, session.start_time, session.last_updated or 0)
    return session.model_copy(
        update={"last_updated": last_updated, "schema_version": CURRENT_SCHEMA_VERSION}
    )


def encode(session: InterviewSession, now_ms: Optional[int] = None) -> str:
    """Stamp and serialize a session to its storage representation."""
    return stamp(session, now_ms).model_dump_json(by_alias=True)


def decode(raw: Union[str, bytes]) -> Union[InterviewSession, DecodeError]:
    """
    Parse stored text into a session.

    Returns a DecodeError instead of raising when the text is not valid JSON
    or does not describe a session record.
    """
    try:
        return InterviewSession.model_validate_json(raw)
    except ValidationError as e:
        return DecodeError(e)


# =============================================================================
# Migration Steps
# =============================================================================


def _fill_v2_fields(session: InterviewSession) -> dict:
    updates: dict = {}
    if session.conversation_quality is None:
        updates["conversation_quality"] = ConversationQuality.MODERATE
    if session.covered_topics is None:
        updates["covered_topics"] = set()
    if session.interview_metrics is None:
        updates["interview_metrics"] = InterviewMetrics()
    return updates


def _fill_v3_fields(session: InterviewSession) -> dict:
    updates: dict = {}
    if session.is_completed is None:
        updates["is_completed"] = False
    if session.current_question_index is None and session.questions:
        updates["current_question_index"] = len(session.questions) - 1
    return updates


_MIGRATIONS: tuple[tuple[str, Callable[[InterviewSession], dict]], ...] = (
    ("2.0", _fill_v2_fields),
    ("3.0", _fill_v3_fields),
)


def upgrade(session: InterviewSession) -> InterviewSession:
    """
    Migrate a record to the current schema.

    Pure: the input is not modified. Each step only fills fields the record
    lacks, so every value already present survives. Records already at (or
    beyond) the current version are returned as-is.

    Raises:
        UpgradeFailed: If the record's version tag cannot be interpreted.
    """
    if not needs_upgrade(session):
        return session

    from_version = session.schema_version
    upgraded = session
    for target_version, step in _MIGRATIONS:
        if from_version and compare_versions(from_version, target_version) >= 0:
            continue
        try:
            upgraded = upgraded.model_copy(update=step(upgraded))
        except (TypeError, ValueError) as e:
            raise UpgradeFailed(from_version, e) from e

    logger.debug("Upgraded session from %s to %s", from_version, CURRENT_SCHEMA_VERSION)
    return upgraded.model_copy(update={"schema_version": CURRENT_SCHEMA_VERSION})
