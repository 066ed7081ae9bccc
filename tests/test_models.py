from __future__ import annotations

from datetime import datetime, timezone

import pytest

from knowledge_sync.errors import InterviewStateError, SetupValidationError
from knowledge_sync.models import (
    AIAnalysisResult,
    InterviewSession,
    KnowledgeArticle,
    Message,
    MessageRole,
    SessionMode,
    SessionSetup,
    SessionStatus,
)


def _session() -> InterviewSession:
    setup = SessionSetup(title=" Title ", interviewee="Ann", category="Ops")
    return InterviewSession.new(setup, interviewer="AI Interviewer")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("ai", SessionMode.AI_INTERVIEWER),
        ("Manual", SessionMode.MANUAL_RECORDING),
        ("manual-recording", SessionMode.MANUAL_RECORDING),
        ("ai_interviewer", SessionMode.AI_INTERVIEWER),
    ],
)
def test_session_mode_aliases(raw, expected):
    assert SessionMode.from_string(raw) is expected


def test_unknown_mode_without_default_raises():
    with pytest.raises(ValueError):
        SessionMode.from_string("robot")


def test_status_parsing_is_lenient():
    assert SessionStatus.from_string("in_progress") is SessionStatus.IN_PROGRESS
    assert SessionStatus.from_string("Completed") is SessionStatus.COMPLETED
    assert SessionStatus.from_string("InProgress") is SessionStatus.IN_PROGRESS
    assert SessionStatus.from_string(" IN PROGRESS ") is SessionStatus.IN_PROGRESS


def test_setup_validation_reports_missing_fields():
    with pytest.raises(SetupValidationError) as excinfo:
        SessionSetup(title="", interviewee=" ", category="Ops").validate()

    assert excinfo.value.missing_fields == ["title", "interviewee"]
    assert isinstance(excinfo.value, ValueError)


def test_new_session_is_in_progress_and_trimmed():
    session = _session()

    assert session.status is SessionStatus.IN_PROGRESS
    assert session.title == "Title"
    assert session.messages == []


def test_only_in_progress_sessions_accept_messages():
    session = _session()
    session.append(Message.create(MessageRole.RESPONDENT, "hello"))
    completed = session.with_status(SessionStatus.COMPLETED)

    with pytest.raises(InterviewStateError):
        completed.append(Message.create(MessageRole.RESPONDENT, "late"))

    assert completed.messages is not session.messages
    assert completed.respondent_turns == 1


def test_session_serializes_with_camel_case_keys():
    session = _session()
    session.append(Message.create(MessageRole.INTERVIEWER, "Why?"))

    data = session.to_dict()
    restored = InterviewSession.from_dict(data)

    assert set(data) >= {"createdAt", "updatedAt", "messages", "status", "mode"}
    assert data["status"] == "In Progress"
    assert restored.id == session.id
    assert restored.messages[0].content == "Why?"
    assert restored.mode is SessionMode.AI_INTERVIEWER


def test_message_accepts_iso_timestamps():
    message = Message.from_dict(
        {"id": "m1", "role": "respondent", "content": "x", "timestamp": "2024-05-01T09:00:00Z"}
    )

    assert message.timestamp == datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def test_article_from_analysis_copies_transcript():
    session = _session()
    session.append(Message.create(MessageRole.RESPONDENT, "answer"))
    analysis = AIAnalysisResult(
        suggested_title="Title",
        summary="Summary",
        overview="",
        key_insights=["k"],
        planning_notes=["p"],
        execution_notes=["e"],
        tags=["Ops"],
    )

    article = KnowledgeArticle.from_analysis(analysis, session)
    session.messages.append(Message.create(MessageRole.RESPONDENT, "later"))

    assert article.overview == "Summary"
    assert article.author == "Ann"
    assert article.category == "Ops"
    assert len(article.full_transcript) == 1
    assert KnowledgeArticle.from_dict(article.to_dict()).key_insights == ["k"]
