from __future__ import annotations

import asyncio
import json

import pytest

from knowledge_sync.errors import (
    FinalizationError,
    InterviewStateError,
    SetupValidationError,
    StorageError,
)
from knowledge_sync.gateway import AIGateway
from knowledge_sync.models import (
    MessageRole,
    SessionMode,
    SessionSetup,
    SessionStatus,
)
from knowledge_sync.prompts import get_language_pack
from knowledge_sync.sessions import (
    ChatState,
    CompletedState,
    ExitedState,
    FinalizationFailedState,
    FinalizationStep,
    InterviewOrchestrator,
    SetupState,
)

ANALYSIS_REPLY = json.dumps(
    {
        "suggestedTitle": "Reading the warehouse floor",
        "summary": "How a shift lead spots trouble early.",
        "overview": "Signals, thresholds and habits.",
        "keyInsights": ["Walk the floor first", "Watch the dock queue"],
        "planningNotes": ["Check staffing the day before"],
        "executionNotes": ["Escalate after two missed trucks"],
        "tags": ["Logistics"],
    }
)


def _setup(mode: SessionMode = SessionMode.AI_INTERVIEWER) -> SessionSetup:
    return SessionSetup(title="T", interviewee="I", category="C", mode=mode)


def test_empty_key_session_degrades_instead_of_failing(make_orchestrator):
    orchestrator, _, _ = make_orchestrator()

    session = orchestrator.start(_setup())

    assert isinstance(orchestrator.state, ChatState)
    assert len(session.messages) == 1
    greeting = session.messages[0]
    assert greeting.role is MessageRole.INTERVIEWER
    assert "I" in greeting.content and "C" in greeting.content

    exchanged = asyncio.run(orchestrator.submit_response("We check the numbers daily."))

    assert [message.role for message in exchanged] == [
        MessageRole.RESPONDENT,
        MessageRole.INTERVIEWER,
    ]
    assert exchanged[1].content.strip()
    assert exchanged[1].content == get_language_pack("en")[1].missing_key_question


def test_setup_requires_every_field(make_orchestrator):
    orchestrator, _, _ = make_orchestrator()

    with pytest.raises(SetupValidationError) as excinfo:
        orchestrator.start(SessionSetup(title=" ", interviewee="I", category=""))

    assert excinfo.value.missing_fields == ["title", "category"]
    assert isinstance(orchestrator.state, SetupState)
    assert orchestrator.session is None


def test_ai_mode_transcript_alternates_roles(make_orchestrator):
    orchestrator, client, _ = make_orchestrator(["Next question?"])
    session = orchestrator.start(_setup())

    for answer in ("first", "second", "third"):
        before = len(session.messages)
        asyncio.run(orchestrator.submit_response(answer))
        assert len(session.messages) == before + 2

    roles = [message.role for message in session.messages]
    assert roles[0] is MessageRole.INTERVIEWER
    for previous, current in zip(roles, roles[1:]):
        assert previous is not current
    assert len(client.calls) == 3
    assert isinstance(orchestrator.state, ChatState)


def test_blank_submission_is_ignored(make_orchestrator):
    orchestrator, client, _ = make_orchestrator(["Next?"])
    session = orchestrator.start(_setup())

    assert asyncio.run(orchestrator.submit_response("   ")) == []
    assert len(session.messages) == 1
    assert client.calls == []


def test_mode_specific_actions_are_rejected(make_orchestrator):
    orchestrator, _, _ = make_orchestrator()
    orchestrator.start(_setup())

    with pytest.raises(InterviewStateError):
        orchestrator.record_interviewer_question("Q?")
    with pytest.raises(InterviewStateError):
        asyncio.run(orchestrator.finalize())
    with pytest.raises(InterviewStateError):
        orchestrator.start(_setup())


def test_manual_mode_suggestions(make_orchestrator, store):
    suggestions = json.dumps({"questions": ["Why?", "When?", "Who?"]})
    orchestrator, _, _ = make_orchestrator([suggestions])
    session = orchestrator.start(_setup(SessionMode.MANUAL_RECORDING))

    assert session.messages[0].role is MessageRole.SYSTEM
    assert orchestrator.record_interviewer_question("How do you plan a route?")
    asyncio.run(orchestrator.record_respondent_reply("By the weather first."))

    assert orchestrator.suggestions == ["Why?", "When?", "Who?"]
    chosen = orchestrator.use_suggestion(1)
    assert chosen == "When?"
    with pytest.raises(IndexError):
        orchestrator.use_suggestion(3)

    orchestrator.record_interviewer_question(chosen)
    assert orchestrator.suggestions == []
    stored = store.get_session(session.id)
    assert stored is not None
    assert [m.content for m in stored.messages][-1] == "When?"
    with pytest.raises(InterviewStateError):
        asyncio.run(orchestrator.submit_response("not allowed here"))


def test_finalize_creates_one_article(make_orchestrator, store):
    orchestrator, _, progress = make_orchestrator(["Next?", "Next?", ANALYSIS_REPLY])
    session = orchestrator.start(_setup())
    asyncio.run(orchestrator.submit_response("first"))
    asyncio.run(orchestrator.submit_response("second"))

    article = asyncio.run(orchestrator.finalize())

    assert isinstance(orchestrator.state, CompletedState)
    assert progress == [
        FinalizationStep.ANALYZE,
        FinalizationStep.EXTRACT,
        FinalizationStep.GENERATE,
        FinalizationStep.SAVE,
        FinalizationStep.DONE,
    ]
    assert article.title == "Reading the warehouse floor"
    assert article.author == "I"
    assert len(article.full_transcript) == len(session.messages)
    articles = store.get_articles()
    assert [stored.id for stored in articles] == [article.id]
    stored_session = store.get_session(session.id)
    assert stored_session is not None
    assert stored_session.status is SessionStatus.COMPLETED


def test_quota_failure_during_save_is_retryable(make_orchestrator, store):
    orchestrator, _, _ = make_orchestrator(["Next?"])
    session = orchestrator.start(_setup())
    asyncio.run(orchestrator.submit_response("only answer"))
    message_ids = [message.id for message in session.messages]
    store.article_failures = 1

    with pytest.raises(FinalizationError):
        asyncio.run(orchestrator.finalize())

    state = orchestrator.state
    assert isinstance(state, FinalizationFailedState)
    assert state.article is not None
    assert orchestrator.can_finalize
    assert [message.id for message in orchestrator.session.messages] == message_ids
    stored = store.get_session(session.id)
    assert stored is not None
    assert stored.status is SessionStatus.IN_PROGRESS
    assert [message.id for message in stored.messages] == message_ids
    assert store.get_articles() == []

    article = asyncio.run(orchestrator.finalize())

    assert article.id == state.article.id
    assert [stored.id for stored in store.get_articles()] == [article.id]


def test_failed_finalization_can_return_to_chat(make_orchestrator, store):
    orchestrator, _, _ = make_orchestrator(["Next?"])
    orchestrator.start(_setup())
    asyncio.run(orchestrator.submit_response("answer"))
    store.article_failures = 1

    with pytest.raises(FinalizationError):
        asyncio.run(orchestrator.finalize())
    orchestrator.return_to_chat()

    assert isinstance(orchestrator.state, ChatState)
    asyncio.run(orchestrator.submit_response("another answer"))
    assert orchestrator.session.respondent_turns == 2


def test_session_save_failure_rolls_back_the_article(make_orchestrator, store):
    orchestrator, _, _ = make_orchestrator(["Next?"])
    session = orchestrator.start(_setup())
    asyncio.run(orchestrator.submit_response("answer"))
    store.session_failures = 1

    with pytest.raises(FinalizationError):
        asyncio.run(orchestrator.finalize())

    assert store.get_articles() == []
    orchestrator.return_to_chat()
    asyncio.run(orchestrator.submit_response("another answer"))
    article = asyncio.run(orchestrator.finalize())

    assert [stored.id for stored in store.get_articles()] == [article.id]
    stored = store.get_session(session.id)
    assert stored is not None and stored.status is SessionStatus.COMPLETED


def test_draft_after_partial_save_leaves_no_article(make_orchestrator, store):
    orchestrator, _, _ = make_orchestrator(["Next?"])
    session = orchestrator.start(_setup())
    asyncio.run(orchestrator.submit_response("answer"))
    store.session_failures = 1

    with pytest.raises(FinalizationError):
        asyncio.run(orchestrator.finalize())
    orchestrator.save_draft()

    assert store.get_articles() == []
    stored = store.get_session(session.id)
    assert stored is not None and stored.status is SessionStatus.DRAFT


def test_return_to_chat_removes_article_the_rollback_missed(
    make_orchestrator, store, monkeypatch
):
    orchestrator, _, _ = make_orchestrator(["Next?"])
    orchestrator.start(_setup())
    asyncio.run(orchestrator.submit_response("answer"))
    store.session_failures = 1

    def _busy_delete(article_id):
        raise StorageError("busy")

    monkeypatch.setattr(store, "delete_article", _busy_delete)
    with pytest.raises(FinalizationError):
        asyncio.run(orchestrator.finalize())
    assert len(store.get_articles()) == 1

    monkeypatch.undo()
    orchestrator.return_to_chat()

    assert store.get_articles() == []


def test_unexpected_analysis_error_produces_error_article(store):
    class BrokenGateway(AIGateway):
        async def analyze_session(self, messages, category):
            raise RuntimeError("analysis exploded")

    broken = BrokenGateway(language="en")
    orchestrator = InterviewOrchestrator(broken, store, step_delay=0)
    orchestrator.start(_setup())
    asyncio.run(orchestrator.submit_response("answer"))

    article = asyncio.run(orchestrator.finalize())

    assert article.title == "T"
    assert article.tags == [broken.language_pack.analysis.error_tag]


def test_save_draft_and_resume(make_orchestrator, store):
    orchestrator, _, _ = make_orchestrator(["Next?"])
    session = orchestrator.start(_setup())
    asyncio.run(orchestrator.submit_response("answer"))

    draft = orchestrator.save_draft()

    assert isinstance(orchestrator.state, ExitedState)
    assert draft.status is SessionStatus.DRAFT
    stored = store.get_session(session.id)
    assert stored is not None and stored.status is SessionStatus.DRAFT

    resumed_orchestrator, _, _ = make_orchestrator(["Next?"])
    resumed = resumed_orchestrator.resume(stored)
    assert resumed.status is SessionStatus.IN_PROGRESS
    asyncio.run(resumed_orchestrator.submit_response("more"))
    assert len(resumed.messages) == len(draft.messages) + 2


def test_completed_session_cannot_be_resumed(make_orchestrator, store):
    orchestrator, _, _ = make_orchestrator(["Next?", "Next?", ANALYSIS_REPLY])
    session = orchestrator.start(_setup())
    asyncio.run(orchestrator.submit_response("first"))
    asyncio.run(orchestrator.finalize())

    completed = store.get_session(session.id)
    other, _, _ = make_orchestrator()
    with pytest.raises(InterviewStateError):
        other.resume(completed)


def test_chat_persistence_failure_keeps_messages(make_orchestrator, store):
    orchestrator, _, _ = make_orchestrator(["Next?"])
    session = orchestrator.start(_setup())
    store.session_failures = 1

    asyncio.run(orchestrator.submit_response("answer"))

    assert len(session.messages) == 3
    assert orchestrator.storage_warning is None
    stored = store.get_session(session.id)
    assert stored is not None and len(stored.messages) == 3
