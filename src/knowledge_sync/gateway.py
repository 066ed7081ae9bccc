"""AI gateway: prompt building, model calls and fallback content.

Every public coroutine here has a total contract. Whatever happens on the
wire, the caller gets a usable value back: a generated reply when the model
answers, or deterministic local content when it does not.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import (
    Any,
    Awaitable,
    Callable,
    List,
    Optional,
    Protocol,
    Sequence,
    TypeVar,
)

from .ai_client import (
    AIAuthenticationError,
    AIRequestError,
    ChatMessage,
    MAFChatClient,
    MAFIntegrationError,
)
from .config import AppSettings, ModelSettings
from .errors import MalformedResponseError
from .models import AIAnalysisResult, InterviewSession, Message
from .prompts import (
    LanguagePack,
    count_respondent_turns,
    format_transcript,
    get_language_pack,
)
from .schemas import (
    FOLLOW_UP_COUNT,
    AnalysisDefaults,
    AnalysisSchema,
    FollowUpSchema,
    normalize_analysis,
    parse_analysis_payload,
    parse_follow_up_questions,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

QUESTION_TEMPERATURE = 0.7
QUESTION_MAX_TOKENS = 300
SUGGESTION_TEMPERATURE = 0.7
ANALYSIS_TEMPERATURE = 0.5
MIN_ANALYSIS_TURNS = 2
FALLBACK_OVERVIEW_CHARS = 500

SleepFn = Callable[[float], Awaitable[Any]]


class CompletionClient(Protocol):
    """Anything that can run a chat completion like :class:`MAFChatClient`."""

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Any = None,
    ) -> ChatMessage: ...


@dataclass(slots=True)
class AIStatus:
    """Informational view of whether AI features can be used."""

    available: bool
    message: str


async def attempt_with_fallback(
    operation: Callable[[], Awaitable[T]],
    fallback: Callable[[], T],
    *,
    max_attempts: int,
    backoff: float,
    label: str,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """Run ``operation`` with bounded linear-backoff retries, then fall back.

    Transient request failures are retried, waiting ``backoff * n`` seconds
    after the n-th failure. Authentication failures and malformed replies go
    straight to ``fallback``. No exception escapes.
    """

    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except AIAuthenticationError as exc:
            logger.warning("%s rejected by the provider: %s", label, exc)
            break
        except MalformedResponseError as exc:
            logger.warning("%s returned an unusable reply: %s", label, exc)
            break
        except AIRequestError as exc:
            if attempt >= attempts:
                logger.warning(
                    "%s failed after %d attempt(s): %s", label, attempt, exc
                )
                break
            delay = backoff * attempt
            logger.warning(
                "%s attempt %d/%d failed: %s; retrying in %.1fs",
                label,
                attempt,
                attempts,
                exc,
                delay,
            )
            await sleep(delay)
        except Exception:  # noqa: BLE001 # pylint: disable=broad-except
            logger.exception("%s failed unexpectedly.", label)
            break
    logger.warning("%s is using fallback content.", label)
    return fallback()


class AIGateway:
    """Turns conversation state into model requests and normalized replies."""

    def __init__(
        self,
        model_settings: Optional[ModelSettings] = None,
        *,
        language: Optional[str] = None,
        max_attempts: int = 3,
        retry_backoff: float = 1.0,
        client: Optional[CompletionClient] = None,
        rng: Optional[random.Random] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._language, self._pack = get_language_pack(language)
        self._max_attempts = max_attempts
        self._retry_backoff = retry_backoff
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._init_error: Optional[str] = None
        self._client: Optional[CompletionClient] = client
        if self._client is None and model_settings is not None:
            if model_settings.has_credentials:
                try:
                    self._client = MAFChatClient(model_settings)
                except MAFIntegrationError as exc:
                    logger.warning("AI client unavailable: %s", exc)
                    self._init_error = str(exc)

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "AIGateway":
        return cls(
            settings.model,
            language=settings.language,
            max_attempts=settings.ai_max_attempts,
            retry_backoff=settings.ai_retry_backoff,
        )

    @property
    def language(self) -> str:
        return self._language

    @property
    def language_pack(self) -> LanguagePack:
        return self._pack

    def is_ai_available(self) -> bool:
        return self._client is not None

    def get_ai_status(self) -> AIStatus:
        if self._client is not None:
            return AIStatus(available=True, message=self._pack.ai_available_message)
        message = self._pack.ai_unavailable_message
        if self._init_error:
            message = f"{message} ({self._init_error})"
        return AIStatus(available=False, message=message)

    async def generate_next_question(
        self,
        history: Sequence[Message],
        topic: str,
        interviewee_name: str,
    ) -> str:
        """Ask the model for the next probing question."""

        client = self._client
        if client is None:
            return self._pack.missing_key_question
        prompt = self._pack.next_question_prompt.substitute(
            topic=topic,
            interviewee=interviewee_name,
            transcript=format_transcript(history, self._pack),
            stage_hint=self._pack.stage_hints.for_turns(
                count_respondent_turns(history)
            ),
        )

        async def _request() -> str:
            reply = await client.complete(
                [ChatMessage(role="user", content=prompt)],
                temperature=QUESTION_TEMPERATURE,
                max_tokens=QUESTION_MAX_TOKENS,
            )
            question = reply.content.strip()
            if not question:
                raise MalformedResponseError("Model returned an empty question.")
            return question

        return await attempt_with_fallback(
            _request,
            self._fallback_question,
            max_attempts=self._max_attempts,
            backoff=self._retry_backoff,
            label="Next-question generation",
            sleep=self._sleep,
        )

    async def generate_follow_up_suggestions(
        self,
        history: Sequence[Message],
        topic: str,
    ) -> List[str]:
        """Return exactly three follow-up questions for a human interviewer."""

        client = self._client
        if client is None:
            return list(self._pack.fallback_suggestions)
        prompt = self._pack.follow_up_prompt.substitute(
            topic=topic,
            transcript=format_transcript(history, self._pack),
        )

        async def _request() -> List[str]:
            reply = await client.complete(
                [ChatMessage(role="user", content=prompt)],
                temperature=SUGGESTION_TEMPERATURE,
                response_format=FollowUpSchema,
            )
            return self._fit_suggestions(
                parse_follow_up_questions(reply.content)
            )

        return await attempt_with_fallback(
            _request,
            lambda: list(self._pack.fallback_suggestions),
            max_attempts=self._max_attempts,
            backoff=self._retry_backoff,
            label="Follow-up suggestion generation",
            sleep=self._sleep,
        )

    async def analyze_session(
        self,
        messages: Sequence[Message],
        category: str,
    ) -> AIAnalysisResult:
        """Distill a transcript into the fields of a knowledge article."""

        transcript = format_transcript(messages, self._pack)
        if count_respondent_turns(messages) < MIN_ANALYSIS_TURNS:
            return self.insufficient_analysis(category)
        client = self._client
        if client is None:
            logger.warning("API key missing, using fallback analysis.")
            return self.fallback_analysis(transcript, category)
        prompt = self._pack.analysis_prompt.substitute(
            category=category,
            transcript=transcript,
        )
        defaults = self._analysis_defaults(category)

        async def _request() -> AIAnalysisResult:
            reply = await client.complete(
                [ChatMessage(role="user", content=prompt)],
                temperature=ANALYSIS_TEMPERATURE,
                response_format=AnalysisSchema,
            )
            data = parse_analysis_payload(reply.content)
            return normalize_analysis(data, defaults=defaults)

        return await attempt_with_fallback(
            _request,
            lambda: self.fallback_analysis(transcript, category),
            max_attempts=self._max_attempts,
            backoff=self._retry_backoff,
            label="Session analysis",
            sleep=self._sleep,
        )

    def fallback_analysis(self, transcript: str, category: str) -> AIAnalysisResult:
        texts = self._pack.analysis
        excerpt = transcript[:FALLBACK_OVERVIEW_CHARS]
        if len(transcript) > FALLBACK_OVERVIEW_CHARS:
            excerpt += "..."
        return AIAnalysisResult(
            suggested_title=texts.fallback_title.substitute(
                category=category,
                date=_today(),
            ),
            summary=texts.fallback_summary,
            overview=f"{texts.fallback_overview_intro}\n\n{excerpt}",
            key_insights=list(texts.fallback_insights),
            planning_notes=[texts.fallback_planning],
            execution_notes=[texts.fallback_execution],
            tags=_compact_tags([category, texts.manual_review_tag]),
        )

    def insufficient_analysis(self, category: str) -> AIAnalysisResult:
        texts = self._pack.analysis
        return AIAnalysisResult(
            suggested_title=texts.insufficient_title.substitute(category=category),
            summary=texts.insufficient_summary,
            overview=texts.insufficient_overview,
            key_insights=list(texts.insufficient_insights),
            planning_notes=[texts.default_planning],
            execution_notes=[texts.default_execution],
            tags=_compact_tags([category, texts.insufficient_tag]),
        )

    def error_analysis(self, session: InterviewSession) -> AIAnalysisResult:
        """Hard-coded result used when analysis breaks its own contract."""

        texts = self._pack.analysis
        return AIAnalysisResult(
            suggested_title=session.title,
            summary=texts.error_summary,
            overview=texts.error_summary,
            key_insights=[texts.default_insight],
            planning_notes=[texts.default_planning],
            execution_notes=[texts.default_execution],
            tags=[texts.error_tag],
        )

    def _analysis_defaults(self, category: str) -> AnalysisDefaults:
        texts = self._pack.analysis
        return AnalysisDefaults(
            suggested_title=f"{category} ({_today()})" if category else _today(),
            summary=texts.default_summary,
            key_insights=[texts.default_insight],
            planning_notes=[texts.default_planning],
            execution_notes=[texts.default_execution],
            tags=_compact_tags([category, texts.manual_review_tag]),
        )

    def _fallback_question(self) -> str:
        question = self._rng.choice(self._pack.canned_questions)
        return f"{question} {self._pack.degraded_marker}"

    def _fit_suggestions(self, questions: Sequence[str]) -> List[str]:
        fallbacks = self._pack.fallback_suggestions
        # Real questions pad first; the "could not generate" notice goes last.
        candidates = [*questions, *fallbacks[1:], fallbacks[0]]
        fitted: List[str] = []
        for candidate in candidates:
            if len(fitted) >= FOLLOW_UP_COUNT:
                break
            if candidate not in fitted:
                fitted.append(candidate)
        return fitted


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def _compact_tags(tags: Sequence[str]) -> List[str]:
    return [tag for tag in (item.strip() for item in tags) if tag]
