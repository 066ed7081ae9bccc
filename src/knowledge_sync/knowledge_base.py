"""Read-side queries over stored knowledge articles."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .models import KnowledgeArticle, SessionStatus
from .storage import KnowledgeStore

logger = logging.getLogger(__name__)

TOP_TAG_COUNT = 5
SNIPPET_WINDOW = 60


@dataclass(slots=True)
class DashboardStats:
    """Aggregated counts shown on the dashboard."""

    total_articles: int
    total_sessions: int
    completed_sessions: int
    top_tags: List[Tuple[str, int]]


def article_snippet(article: KnowledgeArticle, needle: str) -> str:
    """Produce a short snippet around the first match in the summary."""

    haystack = article.summary
    index = haystack.lower().find(needle.lower())
    if index == -1:
        return ""
    start = max(index - SNIPPET_WINDOW, 0)
    end = index + len(needle) + SNIPPET_WINDOW
    return haystack[start:end].replace("\n", " ")


def matches_term(article: KnowledgeArticle, term: str) -> bool:
    needle = term.strip().lower()
    if not needle:
        return True
    if needle in article.title.lower() or needle in article.summary.lower():
        return True
    return any(needle in tag.lower() for tag in article.tags)


class KnowledgeBase:
    """Browse, search and summarize the article collection."""

    def __init__(self, store: KnowledgeStore) -> None:
        self._store = store

    def list(self, *, limit: Optional[int] = None) -> List[KnowledgeArticle]:
        articles = self._store.get_articles()
        if limit is not None:
            return articles[:limit]
        return articles

    def get(self, article_id: str) -> Optional[KnowledgeArticle]:
        return self._store.get_article(article_id)

    def search(
        self,
        term: str,
        *,
        limit: Optional[int] = None,
    ) -> List[KnowledgeArticle]:
        """Case-insensitive match on title, tags or summary.

        A blank term matches every article, like an empty search box.
        """

        matches = [
            article for article in self._store.get_articles()
            if matches_term(article, term)
        ]
        if limit is not None:
            return matches[:limit]
        return matches

    def delete(self, article_id: str) -> bool:
        deleted = self._store.delete_article(article_id)
        if deleted:
            logger.info("Deleted article %s", article_id)
        return deleted

    def report(self) -> DashboardStats:
        articles = self._store.get_articles()
        sessions = self._store.get_sessions()
        completed = sum(
            1 for session in sessions
            if session.status is SessionStatus.COMPLETED
        )
        counts = Counter(tag for article in articles for tag in article.tags)
        return DashboardStats(
            total_articles=len(articles),
            total_sessions=len(sessions),
            completed_sessions=completed,
            top_tags=counts.most_common(TOP_TAG_COUNT),
        )
