"""Interview orchestration: setup, chat and finalization."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Union

from .errors import (
    FinalizationError,
    InterviewStateError,
    StorageError,
)
from .gateway import AIGateway
from .models import (
    AIAnalysisResult,
    InterviewSession,
    KnowledgeArticle,
    Message,
    MessageRole,
    SessionMode,
    SessionSetup,
    SessionStatus,
)
from .storage import KnowledgeStore

logger = logging.getLogger(__name__)

MIN_RESPONDENT_TURNS_TO_FINALIZE = 1


class PendingCall(str, Enum):
    """AI request currently outstanding for the session."""

    NONE = "none"
    NEXT_QUESTION = "next_question"
    SUGGESTIONS = "suggestions"


class FinalizationStep(str, Enum):
    """Progress steps shown while an article is produced."""

    ANALYZE = "analyze"
    EXTRACT = "extract"
    GENERATE = "generate"
    SAVE = "save"
    DONE = "done"


@dataclass(frozen=True, slots=True)
class SetupState:
    """Collecting the setup form; no session exists yet."""


@dataclass(frozen=True, slots=True)
class ChatState:
    pending: PendingCall = PendingCall.NONE


@dataclass(frozen=True, slots=True)
class FinalizingState:
    step: FinalizationStep


@dataclass(frozen=True, slots=True)
class FinalizationFailedState:
    """Finalization stopped on an error; ``finalize()`` may be retried."""

    message: str
    article: Optional[KnowledgeArticle] = None


@dataclass(frozen=True, slots=True)
class CompletedState:
    article: KnowledgeArticle


@dataclass(frozen=True, slots=True)
class ExitedState:
    session: InterviewSession


InterviewState = Union[
    SetupState,
    ChatState,
    FinalizingState,
    FinalizationFailedState,
    CompletedState,
    ExitedState,
]

ProgressCallback = Callable[[FinalizationStep, str], None]


class InterviewOrchestrator:
    """Encapsulates the state machine for a single interview run."""

    def __init__(
        self,
        gateway: AIGateway,
        store: KnowledgeStore,
        *,
        step_delay: float = 0.8,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._pack = gateway.language_pack
        self._step_delay = step_delay
        self._on_progress = on_progress
        self._state: InterviewState = SetupState()
        self._session: Optional[InterviewSession] = None
        self._suggestions: List[str] = []
        self.storage_warning: Optional[str] = None

    @property
    def state(self) -> InterviewState:
        return self._state

    @property
    def session(self) -> Optional[InterviewSession]:
        return self._session

    @property
    def suggestions(self) -> List[str]:
        return list(self._suggestions)

    @property
    def can_finalize(self) -> bool:
        if self._session is None:
            return False
        if isinstance(self._state, FinalizationFailedState):
            return True
        return (
            isinstance(self._state, ChatState)
            and self._state.pending is PendingCall.NONE
            and self._session.respondent_turns >= MIN_RESPONDENT_TURNS_TO_FINALIZE
        )

    def start(self, setup: SessionSetup) -> InterviewSession:
        """Validate the setup form and open the chat."""

        if not isinstance(self._state, SetupState):
            raise InterviewStateError("An interview has already been started.")
        setup.validate()
        interviewer = self._pack.interviewer_names[setup.mode]
        session = InterviewSession.new(setup, interviewer=interviewer)
        if setup.mode is SessionMode.AI_INTERVIEWER:
            greeting = self._pack.opening_greeting.substitute(
                interviewee=session.interviewee,
                category=session.category,
            )
            session.append(Message.create(MessageRole.INTERVIEWER, greeting))
        else:
            session.append(
                Message.create(MessageRole.SYSTEM, self._pack.recording_started)
            )
        self._session = session
        self._suggestions = []
        self._state = ChatState()
        self._persist_session()
        logger.info(
            "Started %s session %s for %s",
            session.mode.value,
            session.id,
            session.interviewee,
        )
        return session

    def resume(self, session: InterviewSession) -> InterviewSession:
        """Re-enter the chat for a stored draft or in-progress session."""

        if not isinstance(self._state, SetupState):
            raise InterviewStateError("An interview has already been started.")
        if session.status not in {SessionStatus.DRAFT, SessionStatus.IN_PROGRESS}:
            raise InterviewStateError(
                f"Cannot resume a session that is {session.status.value}."
            )
        self._session = session.with_status(SessionStatus.IN_PROGRESS)
        self._suggestions = []
        self._state = ChatState()
        self._persist_session()
        return self._session

    async def submit_response(self, text: str) -> List[Message]:
        """Record a respondent answer and append the AI's next question."""

        session = self._require_idle_chat(SessionMode.AI_INTERVIEWER)
        content = text.strip()
        if not content:
            return []
        answer = Message.create(MessageRole.RESPONDENT, content)
        session.append(answer)
        self._suggestions = []
        self._persist_session()
        self._state = ChatState(pending=PendingCall.NEXT_QUESTION)
        try:
            question_text = await self._gateway.generate_next_question(
                list(session.messages),
                session.category,
                session.interviewee,
            )
        finally:
            self._state = ChatState()
        question = Message.create(MessageRole.INTERVIEWER, question_text)
        session.append(question)
        self._persist_session()
        return [answer, question]

    def record_interviewer_question(self, text: str) -> Optional[Message]:
        """Record the human interviewer's question in manual mode."""

        session = self._require_idle_chat(SessionMode.MANUAL_RECORDING)
        content = text.strip()
        if not content:
            return None
        question = Message.create(MessageRole.INTERVIEWER, content)
        session.append(question)
        self._suggestions = []
        self._persist_session()
        return question

    async def record_respondent_reply(self, text: str) -> Optional[Message]:
        """Record a transcribed answer and refresh the quick-fill suggestions."""

        session = self._require_idle_chat(SessionMode.MANUAL_RECORDING)
        content = text.strip()
        if not content:
            return None
        answer = Message.create(MessageRole.RESPONDENT, content)
        session.append(answer)
        self._suggestions = []
        self._persist_session()
        self._state = ChatState(pending=PendingCall.SUGGESTIONS)
        try:
            self._suggestions = await self._gateway.generate_follow_up_suggestions(
                list(session.messages),
                session.category,
            )
        finally:
            self._state = ChatState()
        return answer

    def use_suggestion(self, index: int) -> str:
        """Return a suggestion's text for the interviewer's input box."""

        if index < 0 or index >= len(self._suggestions):
            raise IndexError(f"No suggestion at position {index}.")
        return self._suggestions[index]

    async def finalize(self) -> KnowledgeArticle:
        """Analyze the transcript, store the article and complete the session.

        Persistence failures leave the orchestrator in
        :class:`FinalizationFailedState` and raise :class:`FinalizationError`;
        calling ``finalize()`` again retries with the same article.
        """

        session = self._session
        if session is None or not self.can_finalize:
            raise InterviewStateError(
                "The interview needs at least one answer before it can be "
                "finalized, and no AI request may be pending."
            )
        article: Optional[KnowledgeArticle] = None
        if isinstance(self._state, FinalizationFailedState):
            article = self._state.article

        if article is None:
            await self._advance(FinalizationStep.ANALYZE)
            await self._advance(FinalizationStep.EXTRACT)
            analysis = await self._analyze(session)
            await self._advance(FinalizationStep.GENERATE, pause=False)
            article = KnowledgeArticle.from_analysis(analysis, session)

        await self._advance(FinalizationStep.SAVE, pause=False)
        completed = session.with_status(SessionStatus.COMPLETED)
        article_saved = False
        try:
            self._store.save_article(article)
            article_saved = True
            self._store.save_session(completed)
        except Exception as exc:  # noqa: BLE001 - surfaced as FinalizationError
            logger.error("Finalization of session %s failed: %s", session.id, exc)
            if article_saved:
                # The session is not completed, so the article must not be published.
                self._discard_article(article)
            self._state = FinalizationFailedState(message=str(exc), article=article)
            raise FinalizationError(
                f"Saving the knowledge article failed: {exc}"
            ) from exc

        self._session = completed
        self._suggestions = []
        await self._advance(FinalizationStep.DONE)
        self._state = CompletedState(article=article)
        logger.info("Session %s finalized as article %s", session.id, article.id)
        return article

    def return_to_chat(self) -> None:
        """Leave a failed finalization and keep interviewing."""

        if not isinstance(self._state, FinalizationFailedState):
            raise InterviewStateError("There is no failed finalization to leave.")
        self._discard_article(self._state.article)
        self._state = ChatState()

    def save_draft(self) -> InterviewSession:
        """Exit without finalizing, keeping the transcript as a draft."""

        session = self._session
        idle_chat = (
            isinstance(self._state, ChatState)
            and self._state.pending is PendingCall.NONE
        )
        if session is None or not (
            idle_chat or isinstance(self._state, FinalizationFailedState)
        ):
            raise InterviewStateError("Only an idle chat can be saved as a draft.")
        draft = session.with_status(SessionStatus.DRAFT)
        self._store.save_session(draft)
        if isinstance(self._state, FinalizationFailedState):
            self._discard_article(self._state.article)
        self._session = draft
        self._state = ExitedState(session=draft)
        return draft

    async def _analyze(self, session: InterviewSession) -> AIAnalysisResult:
        try:
            return await self._gateway.analyze_session(
                list(session.messages),
                session.category,
            )
        except Exception:  # noqa: BLE001 # pylint: disable=broad-except
            logger.exception(
                "Session analysis raised unexpectedly; using the error article."
            )
            return self._gateway.error_analysis(session)

    async def _advance(self, step: FinalizationStep, *, pause: bool = True) -> None:
        self._state = FinalizingState(step=step)
        if self._on_progress is not None:
            self._on_progress(step, self._pack.progress_labels[step.value])
        if pause and self._step_delay > 0:
            await asyncio.sleep(self._step_delay)

    def _require_idle_chat(self, mode: SessionMode) -> InterviewSession:
        session = self._session
        if session is None or not isinstance(self._state, ChatState):
            raise InterviewStateError("The interview is not in the chat stage.")
        if self._state.pending is not PendingCall.NONE:
            raise InterviewStateError("Wait for the pending AI request to finish.")
        if session.mode is not mode:
            raise InterviewStateError(
                f"This action is not available in {session.mode.value} mode."
            )
        return session

    def _discard_article(self, article: Optional[KnowledgeArticle]) -> None:
        """Remove an article left behind by a partial finalization, if any."""

        if article is None:
            return
        try:
            removed = self._store.delete_article(article.id)
        except StorageError as exc:
            logger.warning(
                "Unable to remove unfinished article %s: %s", article.id, exc
            )
            return
        if removed:
            logger.info("Removed unfinished article %s.", article.id)

    def _persist_session(self) -> None:
        if self._session is None:
            return
        try:
            self._store.save_session(self._session)
        except StorageError as exc:
            logger.warning(
                "Unable to save session %s; keeping it in memory: %s",
                self._session.id,
                exc,
            )
            self.storage_warning = str(exc)
        else:
            self.storage_warning = None
