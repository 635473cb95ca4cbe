"""
Mock data generators for continuity testing.

Generates InterviewSession records and raw stored payloads in the shapes
the browser application has written over its schema history.
"""

import json
import random
from typing import Any, Optional

from interview_continuity.models import (
    InterviewQuestion,
    InterviewSession,
    InterviewSettings,
)


# =============================================================================
# Interview Content
# =============================================================================

INTERVIEW_QUESTIONS = [
    "Tell me about yourself and why you are interested in this role.",
    "Describe a challenging technical problem you solved recently.",
    "How do you handle disagreements with team members?",
    "Walk me through how you would design a URL shortener.",
    "What is your approach to writing maintainable code?",
    "Tell me about a time you had to learn a new technology quickly.",
]

CANDIDATE_ANSWERS = [
    "I have five years of backend experience, mostly building Python services.",
    "We had a memory leak under load; profiling showed leaked connections.",
    "I try to understand the other perspective first and bring data.",
    "I would start with the read/write ratio and pick a key-value store.",
    "Small functions, clear names, and tests that describe behaviour.",
    "We moved to Kubernetes in three months; I learned by pairing.",
]

# Fixed epoch so tests do not depend on the wall clock.
BASE_TIME_MS = 1_760_000_000_000


# =============================================================================
# Generators
# =============================================================================


def generate_settings(
    question_count: int = 5,
    industry: str = "software",
    interview_type: str = "technical",
) -> InterviewSettings:
    """Generate interview settings as chosen at setup."""
    return InterviewSettings(
        industry=industry,
        interview_type=interview_type,
        question_count=question_count,
    )


def generate_question(
    index: int,
    answered: bool = True,
    timestamp: Optional[int] = None,
) -> InterviewQuestion:
    """Generate one question record, optionally answered."""
    return InterviewQuestion(
        id=f"q{index + 1}",
        question=INTERVIEW_QUESTIONS[index % len(INTERVIEW_QUESTIONS)],
        answer=CANDIDATE_ANSWERS[index % len(CANDIDATE_ANSWERS)] if answered else None,
        timestamp=timestamp if timestamp is not None else BASE_TIME_MS + index * 60_000,
    )


def generate_session(
    num_questions: int = 2,
    question_count: int = 5,
    start_time: int = BASE_TIME_MS,
    last_updated: Optional[int] = None,
    current_question_index: Optional[int] = None,
    is_completed: bool = False,
) -> InterviewSession:
    """
    Generate a current-shape interview session.

    Args:
        num_questions: Questions accumulated so far.
        question_count: Target question count from settings.
        start_time: Epoch ms the interview began.
        last_updated: Epoch ms of the last save (None for never saved).
        current_question_index: Active question; defaults to the last one.
        is_completed: Whether this is a result-stage snapshot.
    """
    questions = [generate_question(i) for i in range(num_questions)]
    if current_question_index is None and questions:
        current_question_index = len(questions) - 1

    return InterviewSession(
        settings=generate_settings(question_count=question_count),
        questions=questions,
        current_question_index=current_question_index,
        is_completed=is_completed,
        start_time=start_time,
        last_updated=last_updated,
    )


def generate_legacy_record_dict(
    num_questions: int = 2,
    question_count: int = 5,
    start_time: int = BASE_TIME_MS,
    last_updated: Optional[int] = None,
    version: Optional[str] = None,
) -> dict[str, Any]:
    """
    Generate a stored record as written before schema 2.0.

    No ``version``, ``coveredTopics``, ``conversationQuality`` or
    ``interviewMetrics`` keys.
    """
    record: dict[str, Any] = {
        "settings": {
            "industry": "finance",
            "interviewType": "behavioral",
            "questionCount": question_count,
        },
        "questions": [
            {
                "id": f"q{i + 1}",
                "question": INTERVIEW_QUESTIONS[i % len(INTERVIEW_QUESTIONS)],
                "answer": CANDIDATE_ANSWERS[i % len(CANDIDATE_ANSWERS)],
                "timestamp": start_time + i * 60_000,
            }
            for i in range(num_questions)
        ],
        "currentQuestionIndex": max(num_questions - 1, 0),
        "isCompleted": False,
        "startTime": start_time,
    }
    if last_updated is not None:
        record["lastUpdated"] = last_updated
    if version is not None:
        record["version"] = version
    return record


def generate_legacy_payload(**kwargs: Any) -> str:
    """Serialized legacy record, as found in storage."""
    return json.dumps(generate_legacy_record_dict(**kwargs))


def generate_identity_id() -> str:
    """Generate an opaque identity id like the identity provider issues."""
    return f"user-{random.randint(100000, 999999)}"
