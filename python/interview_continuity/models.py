"""
Pydantic models for interview session continuity.

Defines the persisted interview session record, its nested settings and
question records, the schema-versioned optional fields, and the derived
statistics view.

Field names are snake_case in Python and camelCase on the wire, matching
the layout the browser application writes to storage.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


_WIRE_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    extra="allow",
)


class ConversationQuality(str, Enum):
    """Classification of how deep the interview conversation has gone."""

    SHALLOW = "shallow"
    MODERATE = "moderate"
    DEEP = "deep"


class InterviewSettings(BaseModel):
    """
    Interview configuration chosen at setup.

    Opaque to the continuity layer beyond being serializable; only
    ``question_count`` is read, to compute the completion rate.
    """
    model_config = _WIRE_CONFIG

    industry: str = Field(..., description="Industry the interview targets")
    interview_type: str = Field(..., description="Interview style, e.g. 'technical'")
    question_count: int = Field(..., ge=0, description="Target number of questions")


class InterviewQuestion(BaseModel):
    """A single question/answer exchange accumulated during the interview."""
    model_config = _WIRE_CONFIG

    id: Optional[str] = None
    question: str = Field(..., description="Question text as asked")
    answer: Optional[str] = Field(default=None, description="Candidate answer, if given")
    feedback: Optional[Any] = Field(default=None, description="Evaluator feedback payload")
    timestamp: Optional[int] = Field(
        default=None,
        description="Epoch milliseconds when the question was asked",
    )


class InterviewMetrics(BaseModel):
    """Aggregate response metrics, introduced in schema 2.0."""
    model_config = _WIRE_CONFIG

    total_response_time: int = 0
    average_response_length: float = 0.0
    deep_dive_count: int = 0


class InterviewSession(BaseModel):
    """
    The persisted interview session record.

    Exactly one logical session exists per storage scope; saving replaces
    the stored record rather than appending to it.

    Version-specific fields (``conversation_quality``, ``covered_topics``,
    ``interview_metrics``) are None when absent from an older record and are
    defaulted by the codec's upgrade step.

    Example:
        >>> session = InterviewSession(
        ...     settings=InterviewSettings(
        ...         industry="fintech", interview_type="technical", question_count=5
        ...     ),
        ...     questions=[InterviewQuestion(question="Tell me about yourself.")],
        ...     current_question_index=0,
        ...     start_time=1760000000000,
        ... )
    """
    model_config = _WIRE_CONFIG

    settings: InterviewSettings
    questions: list[InterviewQuestion] = Field(default_factory=list)
    current_question_index: Optional[int] = Field(
        default=None,
        description="Index of the active question; None while no question exists",
    )
    is_completed: Optional[bool] = Field(
        default=None,
        description="True only for result-stage snapshots, never resumed",
    )
    start_time: int = Field(..., description="Epoch milliseconds when the interview began")
    last_updated: Optional[int] = Field(
        default=None,
        description="Epoch milliseconds of the most recent save",
    )
    schema_version: Optional[str] = Field(
        default=None,
        alias="version",
        description="Schema version tag identifying the record shape",
    )
    conversation_quality: Optional[ConversationQuality] = None
    covered_topics: Optional[set[str]] = None
    interview_metrics: Optional[InterviewMetrics] = None

    @field_validator("schema_version", mode="before")
    @classmethod
    def coerce_version(cls, v: Any) -> Any:
        # Some writers stored the tag as a JSON number.
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @model_validator(mode="after")
    def validate_progress(self) -> "InterviewSession":
        if not self.questions:
            # Legacy writers stored 0 or -1 for an empty interview.
            self.current_question_index = None
        elif self.current_question_index is not None and not (
            0 <= self.current_question_index < len(self.questions)
        ):
            raise ValueError(
                f"currentQuestionIndex {self.current_question_index} out of range "
                f"for {len(self.questions)} questions"
            )

        if self.last_updated is not None and self.last_updated < self.start_time:
            raise ValueError("lastUpdated must not precede startTime")
        return self

    @property
    def reference_time(self) -> int:
        """Timestamp expiry is measured from: last save, else start."""
        return self.last_updated if self.last_updated is not None else self.start_time


class SessionStats(BaseModel):
    """
    Read-only summary of the current session.

    Zeroed when no resumable session exists.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    has_active_session: bool = False
    session_age: int = Field(default=0, description="Milliseconds since start_time")
    question_count: int = 0
    completion_rate: float = Field(default=0.0, description="Percent of target questions asked")
