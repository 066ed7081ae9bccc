from __future__ import annotations

import asyncio
import json

from knowledge_sync.ai_client import AIAuthenticationError, AIRequestError
from knowledge_sync.gateway import attempt_with_fallback
from knowledge_sync.models import Message, MessageRole
from knowledge_sync.prompts import get_language_pack
from knowledge_sync.schemas import AnalysisSchema, FollowUpSchema


def _conversation(answers: int) -> list[Message]:
    messages = [Message.create(MessageRole.INTERVIEWER, "What do you watch most closely?")]
    for index in range(answers):
        messages.append(Message.create(MessageRole.RESPONDENT, f"Answer {index}"))
        messages.append(Message.create(MessageRole.INTERVIEWER, f"Question {index}?"))
    return messages


def test_missing_key_uses_placeholder_content(make_gateway):
    gateway, _ = make_gateway()
    pack = gateway.language_pack

    question = asyncio.run(gateway.generate_next_question(_conversation(1), "Sales", "Ann"))
    suggestions = asyncio.run(gateway.generate_follow_up_suggestions(_conversation(1), "Sales"))
    analysis = asyncio.run(gateway.analyze_session(_conversation(3), "Sales"))

    assert question == pack.missing_key_question
    assert suggestions == list(pack.fallback_suggestions)
    assert pack.analysis.manual_review_tag in analysis.tags
    assert "Answer 0" in analysis.overview
    assert not gateway.is_ai_available()
    assert gateway.get_ai_status().available is False


def test_next_question_retries_then_falls_back(make_gateway, sleeps):
    gateway, client = make_gateway([AIRequestError("timeout")], max_attempts=3, backoff=0.5)

    question = asyncio.run(gateway.generate_next_question(_conversation(1), "Sales", "Ann"))

    assert question.endswith(gateway.language_pack.degraded_marker)
    assert question.strip() != gateway.language_pack.degraded_marker
    assert len(client.calls) == 3
    assert sleeps == [0.5, 1.0]


def test_authentication_failure_is_not_retried(make_gateway, sleeps):
    gateway, client = make_gateway([AIAuthenticationError("bad key")])

    question = asyncio.run(gateway.generate_next_question(_conversation(1), "Sales", "Ann"))

    assert gateway.language_pack.degraded_marker in question
    assert len(client.calls) == 1
    assert sleeps == []


def test_next_question_prompt_carries_context(make_gateway):
    gateway, client = make_gateway(["  Why that threshold?  "])

    question = asyncio.run(
        gateway.generate_next_question(_conversation(1), "Logistics", "Ken")
    )

    assert question == "Why that threshold?"
    prompt = client.calls[0]["messages"][0].content
    assert "Ken" in prompt
    assert "Logistics" in prompt
    assert "Respondent: Answer 0" in prompt
    assert client.calls[0]["temperature"] == 0.7
    assert client.calls[0]["max_tokens"] == 300


def test_empty_question_reply_falls_back_without_retry(make_gateway, sleeps):
    gateway, client = make_gateway(["   "])

    question = asyncio.run(gateway.generate_next_question(_conversation(1), "Sales", "Ann"))

    assert question.endswith(gateway.language_pack.degraded_marker)
    assert len(client.calls) == 1
    assert sleeps == []


def test_suggestions_strip_code_fence_and_pad_to_three(make_gateway):
    reply = '```json\n{"questions": ["Which numbers?", "Who approved it?"]}\n```'
    gateway, client = make_gateway([reply])

    suggestions = asyncio.run(gateway.generate_follow_up_suggestions(_conversation(1), "Sales"))

    assert len(suggestions) == 3
    assert suggestions[:2] == ["Which numbers?", "Who approved it?"]
    assert suggestions[2] == gateway.language_pack.fallback_suggestions[1]
    assert client.calls[0]["response_format"] is FollowUpSchema


def test_suggestion_padding_never_repeats_a_question(make_gateway):
    fallbacks = get_language_pack("en")[1].fallback_suggestions
    reply = json.dumps({"questions": [fallbacks[2], fallbacks[1]]})
    gateway, _ = make_gateway([reply])

    suggestions = asyncio.run(gateway.generate_follow_up_suggestions(_conversation(1), "Sales"))

    assert suggestions == [fallbacks[2], fallbacks[1], fallbacks[0]]
    assert len(set(suggestions)) == 3


def test_duplicate_model_questions_are_collapsed(make_gateway):
    gateway, _ = make_gateway([json.dumps(["Why?", "Why?", "When?"])])

    suggestions = asyncio.run(gateway.generate_follow_up_suggestions(_conversation(1), "Sales"))

    assert suggestions == ["Why?", "When?", gateway.language_pack.fallback_suggestions[1]]


def test_suggestions_truncate_long_lists(make_gateway):
    gateway, _ = make_gateway([json.dumps(["a?", "b?", "c?", "d?"])])

    suggestions = asyncio.run(gateway.generate_follow_up_suggestions(_conversation(1), "Sales"))

    assert suggestions == ["a?", "b?", "c?"]


def test_malformed_suggestions_use_fallback(make_gateway):
    gateway, client = make_gateway(["not json at all"])

    suggestions = asyncio.run(gateway.generate_follow_up_suggestions(_conversation(1), "Sales"))

    assert suggestions == list(gateway.language_pack.fallback_suggestions)
    assert len(client.calls) == 1


def test_analysis_skips_model_for_short_transcripts(make_gateway):
    gateway, client = make_gateway(["{}"])

    analysis = asyncio.run(gateway.analyze_session(_conversation(1), "Sales"))

    texts = gateway.language_pack.analysis
    assert client.calls == []
    assert analysis.suggested_title == texts.insufficient_title.substitute(category="Sales")
    assert texts.insufficient_tag in analysis.tags


def test_analysis_keeps_insight_count_from_model(make_gateway):
    payload = {
        "suggestedTitle": "Closing deals",
        "summary": "How deals get closed.",
        "overview": "Longer overview.",
        "keyInsights": ["one", "two", "three", "four"],
        "planningNotes": ["plan"],
        "executionNotes": ["execute"],
        "tags": ["Sales", "sales", "Negotiation"],
    }
    gateway, client = make_gateway([json.dumps(payload)])
    messages = _conversation(3)[:6]

    analysis = asyncio.run(gateway.analyze_session(messages, "Sales"))

    assert len(messages) == 6
    assert analysis.key_insights == ["one", "two", "three", "four"]
    assert analysis.tags == ["Sales", "Negotiation"]
    assert client.calls[0]["response_format"] is AnalysisSchema
    assert client.calls[0]["temperature"] == 0.5


def test_analysis_fills_missing_fields(make_gateway):
    gateway, _ = make_gateway(['{"summary": "Only a summary"}'])

    analysis = asyncio.run(gateway.analyze_session(_conversation(2), "Support"))

    texts = gateway.language_pack.analysis
    assert analysis.suggested_title.startswith("Support")
    assert analysis.summary == "Only a summary"
    assert analysis.overview == "Only a summary"
    assert analysis.key_insights == [texts.default_insight]
    assert analysis.planning_notes == [texts.default_planning]
    assert analysis.execution_notes == [texts.default_execution]
    assert analysis.tags


def test_analysis_falls_back_on_invalid_json(make_gateway):
    gateway, client = make_gateway(["{broken"])

    analysis = asyncio.run(gateway.analyze_session(_conversation(2), "Support"))

    assert gateway.language_pack.analysis.manual_review_tag in analysis.tags
    assert len(client.calls) == 1


def test_attempt_with_fallback_swallows_unexpected_errors():
    calls = []

    async def _operation() -> str:
        calls.append(1)
        raise KeyError("surprise")

    async def _no_sleep(delay: float) -> None:
        raise AssertionError("should not sleep")

    result = asyncio.run(
        attempt_with_fallback(
            _operation,
            lambda: "fallback",
            max_attempts=3,
            backoff=1.0,
            label="test",
            sleep=_no_sleep,
        )
    )

    assert result == "fallback"
    assert calls == [1]


def test_japanese_pack_is_selected(make_gateway):
    gateway, _ = make_gateway(language="ja-JP")

    assert gateway.language == "ja"
    question = asyncio.run(gateway.generate_next_question([], "営業", "田中"))
    assert question == gateway.language_pack.missing_key_question
