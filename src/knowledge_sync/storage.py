"""Persistence for interview sessions and knowledge articles."""

from __future__ import annotations

import errno
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import redis
from redis import Redis
from redis.exceptions import RedisError, ResponseError

from .config import DEFAULT_STORAGE_MAX_BYTES, AppSettings, StorageBackend
from .errors import (
    CorruptCollectionError,
    StorageError,
    StorageQuotaExceededError,
)
from .models import InterviewSession, KnowledgeArticle

logger = logging.getLogger(__name__)

SESSIONS_COLLECTION = "sessions"
ARTICLES_COLLECTION = "articles"

_QUOTA_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


class KnowledgeStore(ABC):
    """Repository for the session and article collections.

    Backends only have to load and store whole collections; the
    read-modify-write logic for each entity lives here.
    """

    @abstractmethod
    def _load_collection(self, name: str) -> List[Dict[str, Any]]:
        """Return every record of a collection, or an empty list when absent.

        Raises :class:`CorruptCollectionError` when stored data exists but
        cannot be decoded, so writers never replace records they could not
        read.
        """

    @abstractmethod
    def _write_collection(self, name: str, records: List[Dict[str, Any]]) -> None:
        """Replace a collection in one all-or-nothing write."""

    def _read_collection(self, name: str) -> List[Dict[str, Any]]:
        try:
            return self._load_collection(name)
        except CorruptCollectionError as exc:
            logger.warning("Ignoring corrupt %s collection: %s", name, exc)
            return []

    def save_session(self, session: InterviewSession) -> None:
        self._upsert(SESSIONS_COLLECTION, session.to_dict())

    def get_sessions(self) -> List[InterviewSession]:
        sessions: List[InterviewSession] = []
        for record in self._read_collection(SESSIONS_COLLECTION):
            try:
                sessions.append(InterviewSession.from_dict(record))
            except ValueError as exc:
                logger.warning(
                    "Skipping unreadable session %s: %s", record.get("id"), exc
                )
        sessions.sort(key=lambda session: session.updated_at, reverse=True)
        return sessions

    def get_session(self, session_id: str) -> Optional[InterviewSession]:
        for record in self._read_collection(SESSIONS_COLLECTION):
            if record.get("id") == session_id:
                return InterviewSession.from_dict(record)
        return None

    def delete_session(self, session_id: str) -> bool:
        return self._remove(SESSIONS_COLLECTION, session_id)

    def save_article(self, article: KnowledgeArticle) -> None:
        self._upsert(ARTICLES_COLLECTION, article.to_dict())

    def get_articles(self) -> List[KnowledgeArticle]:
        articles: List[KnowledgeArticle] = []
        for record in self._read_collection(ARTICLES_COLLECTION):
            try:
                articles.append(KnowledgeArticle.from_dict(record))
            except (KeyError, ValueError) as exc:
                logger.warning(
                    "Skipping unreadable article %s: %s", record.get("id"), exc
                )
        articles.sort(key=lambda article: article.created_at, reverse=True)
        return articles

    def get_article(self, article_id: str) -> Optional[KnowledgeArticle]:
        for record in self._read_collection(ARTICLES_COLLECTION):
            if record.get("id") == article_id:
                return KnowledgeArticle.from_dict(record)
        return None

    def update_article(self, article: KnowledgeArticle) -> None:
        """Replace an existing article; unknown ids raise ``KeyError``."""

        records = self._load_collection(ARTICLES_COLLECTION)
        for index, record in enumerate(records):
            if record.get("id") == article.id:
                records[index] = article.to_dict()
                self._write_collection(ARTICLES_COLLECTION, records)
                return
        raise KeyError(article.id)

    def delete_article(self, article_id: str) -> bool:
        return self._remove(ARTICLES_COLLECTION, article_id)

    def seed_articles(self, articles: Iterable[KnowledgeArticle]) -> int:
        """Insert example articles only when the collection is empty."""

        if self._load_collection(ARTICLES_COLLECTION):
            return 0
        records = [article.to_dict() for article in articles]
        if records:
            self._write_collection(ARTICLES_COLLECTION, records)
        return len(records)

    def _upsert(self, name: str, payload: Dict[str, Any]) -> None:
        records = self._load_collection(name)
        for index, record in enumerate(records):
            if record.get("id") == payload["id"]:
                records[index] = payload
                break
        else:
            records.append(payload)
        self._write_collection(name, records)

    def _remove(self, name: str, record_id: str) -> bool:
        records = self._load_collection(name)
        remaining = [record for record in records if record.get("id") != record_id]
        if len(remaining) == len(records):
            return False
        self._write_collection(name, remaining)
        return True


def _decode_records(name: str, raw: str) -> List[Dict[str, Any]]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CorruptCollectionError(
            f"The {name} collection is not valid JSON: {exc}"
        ) from exc
    if not isinstance(payload, list):
        raise CorruptCollectionError(f"The {name} collection is not a list.")
    return [record for record in payload if isinstance(record, dict)]


def _encode_records(
    name: str,
    records: List[Dict[str, Any]],
    max_bytes: int,
) -> bytes:
    blob = json.dumps(records, ensure_ascii=False).encode("utf-8")
    if len(blob) > max_bytes:
        raise StorageQuotaExceededError(
            f"Writing the {name} collection needs {len(blob)} bytes, "
            f"over the {max_bytes} byte quota."
        )
    return blob


class JsonFileKnowledgeStore(KnowledgeStore):
    """Keeps each collection in a JSON file inside ``data_dir``."""

    def __init__(
        self,
        data_dir: Path,
        *,
        max_bytes: int = DEFAULT_STORAGE_MAX_BYTES,
    ) -> None:
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._max_bytes = max_bytes

    @property
    def data_dir(self) -> Path:
        """Return the directory holding the collection files."""

        return self._data_dir

    def collection_path(self, name: str) -> Path:
        return self._data_dir / f"{name}.json"

    def _load_collection(self, name: str) -> List[Dict[str, Any]]:
        path = self.collection_path(name)
        if not path.exists():
            return []
        try:
            raw = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise CorruptCollectionError(f"{path} is not UTF-8 text: {exc}") from exc
        except OSError as exc:
            raise StorageError(f"Unable to read {path}: {exc}") from exc
        if not raw.strip():
            return []
        return _decode_records(name, raw)

    def _write_collection(self, name: str, records: List[Dict[str, Any]]) -> None:
        blob = _encode_records(name, records, self._max_bytes)
        path = self.collection_path(name)
        handle, temp_name = tempfile.mkstemp(
            dir=self._data_dir,
            prefix=f".{name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(handle, "wb") as temp_file:
                temp_file.write(blob)
                temp_file.flush()
                os.fsync(temp_file.fileno())
            os.replace(temp_name, path)
        except OSError as exc:
            Path(temp_name).unlink(missing_ok=True)
            if exc.errno in _QUOTA_ERRNOS:
                raise StorageQuotaExceededError(
                    f"Storage is full while writing {path}: {exc}"
                ) from exc
            raise StorageError(f"Unable to write {path}: {exc}") from exc


class RedisKnowledgeStore(KnowledgeStore):
    """Keeps each collection as a JSON blob under ``ksync:<name>``."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        *,
        client: Optional[Redis] = None,
        max_bytes: int = DEFAULT_STORAGE_MAX_BYTES,
        key_prefix: str = "ksync",
    ) -> None:
        if client is None and not redis_url:
            raise StorageError("A Redis URL or client is required.")
        self._redis_url = redis_url
        self._redis: Optional[Redis] = client
        self._max_bytes = max_bytes
        self._key_prefix = key_prefix

    def _get_redis(self) -> Redis:
        if self._redis is None:
            try:
                self._redis = redis.from_url(  # type: ignore[call-overload]
                    self._redis_url,
                    decode_responses=True,
                )
            except RedisError as exc:
                raise StorageError(f"Redis connection failed: {exc}") from exc
        return self._redis

    def _key(self, name: str) -> str:
        return f"{self._key_prefix}:{name}"

    def _load_collection(self, name: str) -> List[Dict[str, Any]]:
        key = self._key(name)
        try:
            raw_value = self._get_redis().get(key)
        except RedisError as exc:
            raise StorageError(f"Redis read failed for {key}: {exc}") from exc
        if not raw_value:
            return []
        if isinstance(raw_value, bytes):
            decoded = raw_value.decode("utf-8")
        else:
            decoded = str(raw_value)
        return _decode_records(name, decoded)

    def _write_collection(self, name: str, records: List[Dict[str, Any]]) -> None:
        blob = _encode_records(name, records, self._max_bytes)
        key = self._key(name)
        try:
            self._get_redis().set(key, blob.decode("utf-8"))
        except ResponseError as exc:
            if str(exc).startswith("OOM"):
                raise StorageQuotaExceededError(
                    f"Redis is out of memory while writing {key}: {exc}"
                ) from exc
            raise StorageError(f"Redis write failed for {key}: {exc}") from exc
        except RedisError as exc:
            raise StorageError(f"Redis write failed for {key}: {exc}") from exc


def create_store(settings: AppSettings) -> KnowledgeStore:
    """Build the backend selected in the settings."""

    if settings.storage_backend is StorageBackend.REDIS:
        return RedisKnowledgeStore(
            settings.redis_url,
            max_bytes=settings.storage_max_bytes,
        )
    return JsonFileKnowledgeStore(
        settings.data_dir,
        max_bytes=settings.storage_max_bytes,
    )


def build_seed_articles(now: Optional[datetime] = None) -> List[KnowledgeArticle]:
    """Example articles written by the ``seed`` command."""

    reference = now or datetime.now(timezone.utc)
    return [
        KnowledgeArticle(
            id="kb-101",
            title="Avoiding trouble when migrating a legacy database",
            summary=(
                "The dual-write strategy and key checkpoints for moving from "
                "SQL Server to PostgreSQL with no downtime."
            ),
            overview=(
                "Lessons from migrating SQL Server 2008 to PostgreSQL without "
                "stopping the service: how data consistency was protected, "
                "how the rollback plan was prepared and how the incidents "
                "that did occur were handled."
            ),
            key_insights=[
                "Zero downtime requires a dual-write strategy.",
                "Keep the old system read-only for 48 hours after cutover so "
                "you can roll back immediately.",
                "Do not underestimate collation differences; they corrupt text.",
            ],
            planning_notes=[
                "Rehearse with production-sized data and time every step.",
                "Verify that the application's database driver supports both "
                "the old and new databases.",
                "Document the rollback triggers and agree on them with every "
                "stakeholder in advance.",
            ],
            execution_notes=[
                "Keep a dashboard of replication lag on screen at all times.",
                "Scale the database instance up temporarily; CPU load spikes "
                "during the migration.",
                "Assign one person to watch error logs full time.",
            ],
            tags=["Engineering", "Database", "Migration", "Risk Management"],
            full_transcript=[],
            created_at=reference - timedelta(days=1, hours=4),
            author="Taro Yamada",
            category="Engineering",
        ),
        KnowledgeArticle(
            id="kb-102",
            title="Closing enterprise deals on schedule",
            summary=(
                "Using an internal champion to get through large-company "
                "approval processes and sign on time."
            ),
            overview=(
                "A practical guide to keeping enterprise proposals with many "
                "decision makers from stalling, from finding the key people "
                "to running legal and security reviews in parallel."
            ),
            key_insights=[
                "Find an internal champion early and ask them to sell for you.",
                "Treat discounts as a last resort and always trade them for "
                "something, such as a longer term or a public case study.",
                "Learn the full approval route in the first meeting.",
            ],
            planning_notes=[
                "Know the customer's fiscal year-end and budgeting period and "
                "plan the proposal schedule backwards from them.",
                "Legal review usually takes two weeks to a month, so submit "
                "the security questionnaire first.",
                "Research competitors' deployments and past failed rollouts "
                "of similar tools.",
            ],
            execution_notes=[
                "If contact goes quiet, reach out with useful industry news "
                "rather than a plain reminder.",
                "Ask for a direct meeting with legal to explain contract "
                "changes in person.",
                "Write the approval request template for your champion.",
            ],
            tags=["Sales", "Enterprise", "Negotiation"],
            full_transcript=[],
            created_at=reference - timedelta(hours=14),
            author="Hanako Sato",
            category="Sales",
        ),
    ]
