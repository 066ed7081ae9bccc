from __future__ import annotations

from datetime import datetime, timedelta, timezone

from knowledge_sync.knowledge_base import KnowledgeBase, article_snippet
from knowledge_sync.models import (
    InterviewSession,
    KnowledgeArticle,
    SessionSetup,
    SessionStatus,
)
from knowledge_sync.storage import JsonFileKnowledgeStore

BASE_TIME = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def _article(article_id: str, title: str, summary: str, tags: list[str], hours: int) -> KnowledgeArticle:
    return KnowledgeArticle(
        id=article_id,
        title=title,
        summary=summary,
        overview="",
        key_insights=[],
        planning_notes=[],
        execution_notes=[],
        tags=tags,
        full_transcript=[],
        created_at=BASE_TIME + timedelta(hours=hours),
        author="Ann",
        category="Ops",
    )


def _populated(tmp_path) -> tuple[KnowledgeBase, JsonFileKnowledgeStore]:
    store = JsonFileKnowledgeStore(tmp_path)
    store.save_article(_article("a", "Database migration", "Dual writes keep data safe.", ["Engineering", "Database"], 0))
    store.save_article(_article("b", "Enterprise deals", "Champions speed up approval.", ["Sales", "Negotiation"], 1))
    store.save_article(_article("c", "Night shift", "Handover checklists matter.", ["Operations", "engineering"], 2))
    return KnowledgeBase(store), store


def test_search_matches_title_tags_and_summary(tmp_path):
    knowledge_base, _ = _populated(tmp_path)

    assert [a.id for a in knowledge_base.search("MIGRATION")] == ["a"]
    assert [a.id for a in knowledge_base.search("negotiation")] == ["b"]
    assert [a.id for a in knowledge_base.search("checklists")] == ["c"]
    assert [a.id for a in knowledge_base.search("engineering")] == ["c", "a"]
    assert knowledge_base.search("nothing like this") == []
    assert len(knowledge_base.search("  ")) == 3


def test_list_respects_limit_and_delete(tmp_path):
    knowledge_base, _ = _populated(tmp_path)

    assert [a.id for a in knowledge_base.list(limit=2)] == ["c", "b"]
    assert knowledge_base.delete("b") is True
    assert knowledge_base.get("b") is None
    assert knowledge_base.delete("b") is False


def test_report_counts_sessions_and_top_tags(tmp_path):
    knowledge_base, store = _populated(tmp_path)
    for index in range(3):
        session = InterviewSession.new(
            SessionSetup(title=f"S{index}", interviewee="Ann", category="Ops"),
            interviewer="AI Interviewer",
        )
        if index < 2:
            session = session.with_status(SessionStatus.COMPLETED)
        store.save_session(session)
    store.save_article(
        _article("d", "More sales", "", ["Sales", "Pricing", "Legal", "Travel"], 3)
    )

    stats = knowledge_base.report()

    assert stats.total_articles == 4
    assert stats.total_sessions == 3
    assert stats.completed_sessions == 2
    assert len(stats.top_tags) == 5
    assert stats.top_tags[0] == ("Sales", 2)


def test_snippet_surrounds_first_match():
    article = _article("a", "t", "Dual writes keep data safe.", [], 0)

    assert "keep data" in article_snippet(article, "KEEP")
    assert article_snippet(article, "absent") == ""
