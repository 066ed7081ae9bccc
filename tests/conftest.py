from __future__ import annotations

import random
from typing import Any, Dict, List, Optional, Sequence, Union

import pytest

from knowledge_sync.ai_client import ChatMessage
from knowledge_sync.errors import StorageError, StorageQuotaExceededError
from knowledge_sync.gateway import AIGateway
from knowledge_sync.models import KnowledgeArticle, InterviewSession
from knowledge_sync.sessions import InterviewOrchestrator
from knowledge_sync.storage import JsonFileKnowledgeStore

Reply = Union[str, BaseException]


class FakeCompletionClient:
    """Plays back scripted replies; the last one repeats once the script runs out."""

    def __init__(self, replies: Sequence[Reply]) -> None:
        self._replies: List[Reply] = list(replies)
        self.calls: List[Dict[str, Any]] = []

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Any = None,
    ) -> ChatMessage:
        self.calls.append(
            {
                "messages": list(messages),
                "temperature": temperature,
                "max_tokens": max_tokens,
                "response_format": response_format,
            }
        )
        reply = self._replies.pop(0) if len(self._replies) > 1 else self._replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return ChatMessage(role="assistant", content=reply)


class FlakyStore(JsonFileKnowledgeStore):
    """JSON store that fails a configurable number of writes."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.article_failures = 0
        self.session_failures = 0

    def save_article(self, article: KnowledgeArticle) -> None:
        if self.article_failures > 0:
            self.article_failures -= 1
            raise StorageQuotaExceededError("quota exceeded")
        super().save_article(article)

    def save_session(self, session: InterviewSession) -> None:
        if self.session_failures > 0:
            self.session_failures -= 1
            raise StorageError("disk unavailable")
        super().save_session(session)


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def make_gateway(sleeps):
    def _factory(
        replies: Optional[Sequence[Reply]] = None,
        *,
        language: str = "en",
        max_attempts: int = 3,
        backoff: float = 0.5,
    ):
        client = FakeCompletionClient(replies) if replies is not None else None

        async def _record_sleep(delay: float) -> None:
            sleeps.append(delay)

        gateway = AIGateway(
            language=language,
            max_attempts=max_attempts,
            retry_backoff=backoff,
            client=client,
            rng=random.Random(7),
            sleep=_record_sleep,
        )
        return gateway, client

    return _factory


@pytest.fixture
def store(tmp_path) -> FlakyStore:
    return FlakyStore(tmp_path / "data")


@pytest.fixture
def make_orchestrator(make_gateway, store):
    def _factory(replies: Optional[Sequence[Reply]] = None, **kwargs: Any):
        gateway, client = make_gateway(replies)
        progress: List[Any] = []
        orchestrator = InterviewOrchestrator(
            gateway,
            store,
            step_delay=0,
            on_progress=lambda step, label: progress.append(step),
            **kwargs,
        )
        return orchestrator, client, progress

    return _factory
