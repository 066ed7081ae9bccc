"""Response contracts for the schema-constrained model calls."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, cast

from pydantic import BaseModel, Field

from .errors import MalformedResponseError
from .models import AIAnalysisResult

FOLLOW_UP_COUNT = 3


class FollowUpSchema(BaseModel):
    """Shape requested for follow-up suggestions."""

    questions: List[str] = Field(min_length=FOLLOW_UP_COUNT, max_length=FOLLOW_UP_COUNT)


class AnalysisSchema(BaseModel):
    """Shape requested for end-of-session analysis."""

    suggestedTitle: str
    summary: str
    overview: str
    keyInsights: List[str]
    planningNotes: List[str]
    executionNotes: List[str]
    tags: List[str]


@dataclass(slots=True)
class AnalysisDefaults:
    """Per-field substitutes for missing or empty analysis values."""

    suggested_title: str
    summary: str
    key_insights: List[str]
    planning_notes: List[str]
    execution_notes: List[str]
    tags: List[str]


def clean_json_output(text: str) -> str:
    """Strip a surrounding markdown code fence from a model reply."""

    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[len("```json"):]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def _load_json(raw: str) -> Any:
    text = clean_json_output(raw)
    if not text:
        raise MalformedResponseError("Model returned an empty reply.")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(
            f"Model reply was not valid JSON: {exc}"
        ) from exc


def _to_clean_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def _sanitize_string_list(value: Any) -> List[str]:
    items: List[str] = []
    if isinstance(value, list):
        for entry in cast(List[Any], value):
            text = _to_clean_string(entry)
            if text:
                items.append(text)
    elif isinstance(value, str) and value.strip():
        items.append(value.strip())
    return items


def _dedupe_tags(tags: Sequence[str]) -> List[str]:
    seen: set[str] = set()
    unique: List[str] = []
    for tag in tags:
        key = tag.casefold()
        if key in seen:
            continue
        seen.add(key)
        unique.append(tag)
    return unique


def parse_follow_up_questions(raw: str) -> List[str]:
    """Extract question strings from a bare array or ``{"questions": [...]}``."""

    data = _load_json(raw)
    if isinstance(data, dict):
        data = cast(Dict[str, Any], data).get("questions")
    if not isinstance(data, list):
        raise MalformedResponseError(
            "Follow-up reply did not contain a list of questions."
        )
    questions = _sanitize_string_list(data)
    if not questions:
        raise MalformedResponseError("Follow-up reply contained no questions.")
    return questions


def parse_analysis_payload(raw: str) -> Dict[str, Any]:
    data = _load_json(raw)
    if not isinstance(data, dict):
        raise MalformedResponseError("Analysis reply was not a JSON object.")
    return cast(Dict[str, Any], data)


def normalize_analysis(
    data: Dict[str, Any],
    *,
    defaults: AnalysisDefaults,
) -> AIAnalysisResult:
    """Coerce a raw analysis object into a fully populated result.

    Each field is checked on its own; a missing or empty value is replaced
    by its default without affecting the others.
    """

    title = _to_clean_string(data.get("suggestedTitle")) or defaults.suggested_title
    summary = _to_clean_string(data.get("summary")) or defaults.summary
    overview = _to_clean_string(data.get("overview")) or summary
    key_insights = (
        _sanitize_string_list(data.get("keyInsights"))
        or list(defaults.key_insights)
    )
    planning_notes = (
        _sanitize_string_list(data.get("planningNotes"))
        or list(defaults.planning_notes)
    )
    execution_notes = (
        _sanitize_string_list(data.get("executionNotes"))
        or list(defaults.execution_notes)
    )
    tags = _dedupe_tags(_sanitize_string_list(data.get("tags"))) or list(
        defaults.tags
    )
    return AIAnalysisResult(
        suggested_title=title,
        summary=summary,
        overview=overview,
        key_insights=key_insights,
        planning_notes=planning_notes,
        execution_notes=execution_notes,
        tags=tags,
    )
