"""Data model for interview sessions and knowledge articles."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from .errors import InterviewStateError, SetupValidationError


class MessageRole(str, Enum):
    """Author of a transcript message."""

    INTERVIEWER = "interviewer"
    RESPONDENT = "respondent"
    SYSTEM = "system"
    AI_SUGGESTION = "ai_suggestion"


class SessionStatus(str, Enum):
    """Lifecycle status of an interview session."""

    DRAFT = "Draft"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    ARCHIVED = "Archived"

    @classmethod
    def from_string(cls, value: str) -> "SessionStatus":
        normalized = value.strip().lower().replace("_", " ")
        compact = normalized.replace(" ", "")
        for candidate in cls:
            label = candidate.value.lower()
            if label == normalized or label.replace(" ", "") == compact:
                return candidate
        raise ValueError(f"Unsupported session status: {value}")


class SessionMode(str, Enum):
    """How questions are produced during an interview."""

    AI_INTERVIEWER = "ai_interviewer"
    MANUAL_RECORDING = "manual_recording"

    @classmethod
    def from_string(
        cls,
        mode: str | None,
        default: Optional["SessionMode"] = None,
    ) -> "SessionMode":
        """Normalize arbitrary user input into a valid mode."""
        if not mode:
            if default is None:
                raise ValueError("Session mode is required.")
            return default
        normalized = mode.strip().lower().replace("-", "_").replace(" ", "_")
        aliases = {"ai": cls.AI_INTERVIEWER, "manual": cls.MANUAL_RECORDING}
        if normalized in aliases:
            return aliases[normalized]
        for candidate in cls:
            if candidate.value == normalized:
                return candidate
        if default is not None:
            return default
        raise ValueError(f"Unsupported session mode: {mode}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


def _to_epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _parse_timestamp(value: Any) -> datetime:
    """Accept epoch milliseconds or ISO-8601 strings."""

    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return _utcnow()


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value]


@dataclass(frozen=True, slots=True)
class Message:
    """A single transcript entry. Immutable once created."""

    id: str
    role: MessageRole
    content: str
    timestamp: datetime

    @classmethod
    def create(cls, role: MessageRole, content: str) -> "Message":
        return cls(id=_new_id(), role=role, content=content, timestamp=_utcnow())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": _to_epoch_ms(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            id=str(data.get("id") or _new_id()),
            role=MessageRole(str(data.get("role", MessageRole.SYSTEM.value))),
            content=str(data.get("content", "")),
            timestamp=_parse_timestamp(data.get("timestamp")),
        )


@dataclass(slots=True)
class SessionSetup:
    """Values collected by the interview setup form."""

    title: str
    interviewee: str
    category: str
    mode: SessionMode = SessionMode.AI_INTERVIEWER

    def validate(self) -> None:
        missing = [
            name
            for name in ("title", "interviewee", "category")
            if not str(getattr(self, name) or "").strip()
        ]
        if missing:
            raise SetupValidationError(missing)


def _empty_messages() -> List[Message]:
    return []


@dataclass(slots=True)
class InterviewSession:
    """An interview and its ordered transcript."""

    id: str
    title: str
    interviewee: str
    interviewer: str
    category: str
    status: SessionStatus
    mode: SessionMode
    messages: List[Message] = field(default_factory=_empty_messages)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(cls, setup: SessionSetup, *, interviewer: str) -> "InterviewSession":
        now = _utcnow()
        return cls(
            id=_new_id(),
            title=setup.title.strip(),
            interviewee=setup.interviewee.strip(),
            interviewer=interviewer,
            category=setup.category.strip(),
            status=SessionStatus.IN_PROGRESS,
            mode=setup.mode,
            messages=[],
            created_at=now,
            updated_at=now,
        )

    @property
    def respondent_turns(self) -> int:
        return sum(
            1 for message in self.messages
            if message.role is MessageRole.RESPONDENT
        )

    def append(self, message: Message) -> None:
        """Add one message to the end of the transcript."""

        if self.status is not SessionStatus.IN_PROGRESS:
            raise InterviewStateError(
                f"Cannot add messages to a session that is {self.status.value}."
            )
        self.messages.append(message)
        self.updated_at = _utcnow()

    def with_status(self, status: SessionStatus) -> "InterviewSession":
        return replace(
            self,
            status=status,
            messages=list(self.messages),
            updated_at=_utcnow(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "interviewee": self.interviewee,
            "interviewer": self.interviewer,
            "category": self.category,
            "status": self.status.value,
            "mode": self.mode.value,
            "messages": [message.to_dict() for message in self.messages],
            "createdAt": _to_epoch_ms(self.created_at),
            "updatedAt": _to_epoch_ms(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InterviewSession":
        raw_messages = data.get("messages")
        messages = [
            Message.from_dict(item)
            for item in (raw_messages if isinstance(raw_messages, list) else [])
            if isinstance(item, dict)
        ]
        return cls(
            id=str(data.get("id") or _new_id()),
            title=str(data.get("title", "")),
            interviewee=str(data.get("interviewee", "")),
            interviewer=str(data.get("interviewer", "")),
            category=str(data.get("category", "")),
            status=SessionStatus.from_string(
                str(data.get("status", SessionStatus.DRAFT.value))
            ),
            mode=SessionMode.from_string(
                data.get("mode"), default=SessionMode.AI_INTERVIEWER
            ),
            messages=messages,
            created_at=_parse_timestamp(data.get("createdAt")),
            updated_at=_parse_timestamp(data.get("updatedAt")),
        )


@dataclass(slots=True)
class AIAnalysisResult:
    """Structured analysis of a transcript, used to seed an article."""

    suggested_title: str
    summary: str
    overview: str
    key_insights: List[str]
    planning_notes: List[str]
    execution_notes: List[str]
    tags: List[str]


@dataclass(slots=True)
class KnowledgeArticle:
    """Reusable knowledge distilled from one finalized interview."""

    id: str
    title: str
    summary: str
    overview: str
    key_insights: List[str]
    planning_notes: List[str]
    execution_notes: List[str]
    tags: List[str]
    full_transcript: List[Message]
    created_at: datetime
    author: str
    category: str

    @classmethod
    def from_analysis(
        cls,
        analysis: AIAnalysisResult,
        session: InterviewSession,
    ) -> "KnowledgeArticle":
        return cls(
            id=_new_id(),
            title=analysis.suggested_title,
            summary=analysis.summary,
            overview=analysis.overview or analysis.summary,
            key_insights=list(analysis.key_insights),
            planning_notes=list(analysis.planning_notes),
            execution_notes=list(analysis.execution_notes),
            tags=list(analysis.tags),
            full_transcript=list(session.messages),
            created_at=_utcnow(),
            author=session.interviewee,
            category=session.category,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "summary": self.summary,
            "overview": self.overview,
            "keyInsights": list(self.key_insights),
            "planningNotes": list(self.planning_notes),
            "executionNotes": list(self.execution_notes),
            "tags": list(self.tags),
            "fullTranscript": [
                message.to_dict() for message in self.full_transcript
            ],
            "createdAt": _to_epoch_ms(self.created_at),
            "author": self.author,
            "category": self.category,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KnowledgeArticle":
        raw_transcript = data.get("fullTranscript")
        transcript = [
            Message.from_dict(item)
            for item in (
                raw_transcript if isinstance(raw_transcript, list) else []
            )
            if isinstance(item, dict)
        ]
        return cls(
            id=str(data.get("id") or _new_id()),
            title=str(data.get("title", "")),
            summary=str(data.get("summary", "")),
            overview=str(data.get("overview", "")),
            key_insights=_string_list(data.get("keyInsights")),
            planning_notes=_string_list(data.get("planningNotes")),
            execution_notes=_string_list(data.get("executionNotes")),
            tags=_string_list(data.get("tags")),
            full_transcript=transcript,
            created_at=_parse_timestamp(data.get("createdAt")),
            author=str(data.get("author", "")),
            category=str(data.get("category", "")),
        )
