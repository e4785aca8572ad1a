"""Knowledge base facade: local records, search and remote sync."""

import logging
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from site_knowledge._config import ConfigManager
from site_knowledge._embedding import EmbeddingError, EmbeddingService
from site_knowledge._semantic import SemanticIndex
from site_knowledge._sync import PublishPlan, PublishResult, SyncEngine
from site_knowledge._sync_state import StateObserver, SyncState
from site_knowledge.models import CONTENT_FIELDS, REQUIRED_FIELDS, Record
from site_knowledge.record_store import RecordStore
from site_knowledge.remote import RemoteStoreClient
from site_knowledge.utils import clean_field, fuzzy_score

logger = logging.getLogger(__name__)

DEFAULT_BASE_PATH = "~/.site_knowledge"
SYNC_IN_PROGRESS = "A sync is already in progress"


@dataclass
class ScoredRecord:
    """A record with a relevance score."""

    record: Record
    score: float


@dataclass
class Citation:
    """A record used to answer a question."""

    local_id: int
    question: str
    answer: str
    score: float

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dictionary."""
        return {
            "local_id": self.local_id,
            "question": self.question,
            "answer": self.answer,
            "score": self.score,
        }


@dataclass
class AskResult:
    """Answer to a natural-language question."""

    answer: str
    citations: list[Citation] = field(default_factory=list)
    confidence: float | None = None
    confident: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dictionary."""
        return {
            "answer": self.answer,
            "confidence": self.confidence,
            "confident": self.confident,
            "citations": [c.to_dict() for c in self.citations],
        }


class KnowledgeBase:
    """Site question/answer knowledge base.

    Records live in a local SQLite store. Search works offline; sync with the
    remote store is optional and only set up when a remote URL is configured.
    """

    # Record status filters accepted by search()
    STATUS_FILTERS = {"all": None, "approved": True, "unapproved": False}

    # Input size limits for add()/edit()
    MAX_FIELD_LENGTHS = {
        "site_name": 200,
        "category": 200,
        "subcategory": 200,
        "question": 2_000,
        "answer": 50_000,
        "additional_info": 50_000,
    }

    # Hybrid similarity weights
    SEMANTIC_WEIGHT = 0.7
    FUZZY_WEIGHT = 0.3

    DEFAULT_ASK_RESULTS = 5
    DEFAULT_ASK_THRESHOLD = 0.55
    DEFAULT_SIMILAR_LIMIT = 5

    NO_DATA_ANSWER = "No records available yet."

    def __init__(
        self,
        base_path: str | Path = DEFAULT_BASE_PATH,
        embedding_service: EmbeddingService | None = None,
        remote: RemoteStoreClient | None = None,
    ) -> None:
        """Initialize the knowledge base.

        Args:
            base_path: Base directory for all data storage.
            embedding_service: Optional embedding service. A default one with
                a lazily loaded model is created if omitted.
            remote: Optional remote store client. If omitted, one is built
                from the configuration the first time sync is used.
        """
        self.base_path = Path(base_path).expanduser()
        self.base_path.mkdir(parents=True, exist_ok=True)

        self.chroma_path = self.base_path / "chroma_db"
        self.sqlite_path = self.base_path / "records.db"

        self.config = ConfigManager(self.base_path)
        self.store = RecordStore(self.sqlite_path)
        self._embedding = embedding_service or EmbeddingService()
        self._semantic: SemanticIndex | None = None
        self._remote = remote
        self._engine: SyncEngine | None = None

    # --- Records ---

    def _validate(self, fields: dict[str, Any], required: tuple[str, ...]) -> None:
        """Validate field values.

        Raises:
            ValueError: If a required field is empty or a field is too long.
        """
        for name in required:
            if not clean_field(fields.get(name)):
                raise ValueError(f"{name} cannot be empty")
        for name, value in fields.items():
            limit = self.MAX_FIELD_LENGTHS.get(name)
            if limit and value is not None and len(str(value)) > limit:
                raise ValueError(f"{name} exceeds maximum length of {limit} characters")

    def add(
        self,
        site_name: str,
        category: str,
        subcategory: str,
        question: str,
        answer: str,
        additional_info: str = "",
        approved: bool = False,
    ) -> int:
        """Add a new record.

        The record stays local until the next publish.

        Args:
            site_name: Site the record belongs to.
            category: Category (tag).
            subcategory: Subcategory (subtag).
            question: The question.
            answer: The answer.
            additional_info: Optional free-form notes.
            approved: Whether the answer is approved.

        Returns:
            The new local id.

        Raises:
            ValueError: If a required field is empty or a field is too long.
        """
        fields = {
            "site_name": site_name,
            "category": category,
            "subcategory": subcategory,
            "question": question,
            "answer": answer,
            "additional_info": additional_info or "",
        }
        self._validate(fields, REQUIRED_FIELDS)

        values: dict[str, Any] = {name: clean_field(v) for name, v in fields.items()}
        values["approved"] = approved
        local_id = self.store.insert(values)
        logger.info("Added record %s", local_id)
        return local_id

    def edit(self, local_id: int, **fields: Any) -> bool:
        """Update fields of a record.

        Args:
            local_id: The local record id.
            **fields: Content fields and/or approved flag to change.

        Returns:
            True if updated, False if not found.

        Raises:
            ValueError: If a required field is set to empty or a field is too long.
        """
        if self.store.get(local_id) is None:
            return False

        updates = {
            name: value
            for name, value in fields.items()
            if name in CONTENT_FIELDS or name == "approved"
        }
        if not updates:
            return True

        required = tuple(name for name in REQUIRED_FIELDS if name in updates)
        self._validate(updates, required)
        for name in CONTENT_FIELDS:
            if name in updates:
                updates[name] = clean_field(updates[name])

        self.store.update_by_local_id(local_id, updates)
        logger.info("Edited record %s", local_id)
        return True

    def remove(self, local_id: int) -> bool:
        """Delete a record.

        If the record was published, the next publish marks the remote copy
        as deleted.

        Returns:
            True if deleted, False if not found.
        """
        deleted = self.store.delete_by_local_id(local_id) > 0
        if deleted:
            logger.info("Deleted record %s", local_id)
        return deleted

    def approve(self, local_id: int, approved: bool = True) -> bool:
        """Set the approval flag of a record.

        Returns:
            True if updated, False if not found.
        """
        return self.store.set_approval(local_id, approved) > 0

    def get(self, local_id: int) -> Record | None:
        """Get a record by local id."""
        return self.store.get(local_id)

    def list_all(self, status: str = "all") -> list[Record]:
        """List records, optionally filtered by approval status."""
        return self.store.list_all(approved=self._status_filter(status))

    def stats(self) -> dict[str, Any]:
        """Get record counts and sync information."""
        stats: dict[str, Any] = self.store.stats()
        last_sync = self.config.get_last_sync()
        stats["last_sync"] = last_sync.isoformat() if last_sync else None
        stats["remote_url"] = self.config.get_remote_settings().url
        return stats

    # --- Search ---

    def _status_filter(self, status: str) -> bool | None:
        if status not in self.STATUS_FILTERS:
            allowed = ", ".join(self.STATUS_FILTERS)
            raise ValueError(f"Invalid status '{status}'. Must be one of: {allowed}")
        return self.STATUS_FILTERS[status]

    def search(
        self, query: str, status: str = "all", limit: int | None = None
    ) -> list[Record]:
        """Fuzzy text search over all record fields.

        Args:
            query: Search text. An empty query lists every record.
            status: "all", "approved" or "unapproved".
            limit: Optional maximum number of results.

        Returns:
            Matching records, best first.

        Raises:
            ValueError: If status is not a known filter.
        """
        return self.store.search(query, approved=self._status_filter(status), limit=limit)

    @property
    def semantic(self) -> SemanticIndex:
        """Lazy-open the semantic index."""
        if self._semantic is None:
            self._semantic = SemanticIndex(self.chroma_path, self._embedding)
        return self._semantic

    def _refreshed_index(self) -> SemanticIndex:
        index = self.semantic
        index.refresh(self.store.list_all())
        return index

    def find_similar_approved(
        self, text: str, limit: int = DEFAULT_SIMILAR_LIMIT
    ) -> list[ScoredRecord]:
        """Find approved records similar to a piece of text.

        Combines semantic similarity with fuzzy text matching. If embeddings
        are unavailable, only the fuzzy score is used.

        Args:
            text: Text to compare against (typically a new question).
            limit: Maximum number of results.

        Returns:
            Scored records, best first.
        """
        if not text or not text.strip():
            return []
        approved = {r.local_id: r for r in self.store.list_all(approved=True)}
        if not approved:
            return []

        semantic_scores: dict[int, float] | None
        try:
            index = self._refreshed_index()
            semantic_scores = {
                local_id: max(score, 0.0)
                for local_id, score in index.query(text, index.count())
                if local_id in approved
            }
        except EmbeddingError as e:
            logger.warning("Semantic search unavailable, using fuzzy match only: %s", e)
            semantic_scores = None

        results = []
        for local_id, record in approved.items():
            text_score = fuzzy_score(text, record.search_text())
            if semantic_scores is None:
                score = text_score
            else:
                score = (
                    self.SEMANTIC_WEIGHT * semantic_scores.get(local_id, 0.0)
                    + self.FUZZY_WEIGHT * text_score
                )
            if score > 0:
                results.append(ScoredRecord(record=record, score=score))

        results.sort(key=lambda item: (-item.score, item.record.local_id))
        return results[:limit]

    def ask(
        self,
        query: str,
        k: int = DEFAULT_ASK_RESULTS,
        threshold: float = DEFAULT_ASK_THRESHOLD,
    ) -> AskResult:
        """Answer a question from the nearest records.

        Args:
            query: Natural-language question.
            k: Number of neighbours to cite.
            threshold: Minimum similarity for a confident answer.

        Returns:
            AskResult with the best answer and its citations.

        Raises:
            EmbeddingError: If the query cannot be embedded.
        """
        if not query or not query.strip():
            return AskResult(answer="")

        records = {r.local_id: r for r in self.store.list_all()}
        if not records:
            return AskResult(answer=self.NO_DATA_ANSWER)

        matches = self._refreshed_index().query(query, k)
        citations = []
        for local_id, score in matches:
            record = records.get(local_id)
            if record is None:
                continue
            citations.append(
                Citation(
                    local_id=local_id,
                    question=record.question,
                    answer=record.answer,
                    score=score,
                )
            )

        if not citations:
            return AskResult(answer=self.NO_DATA_ANSWER)

        best = citations[0]
        return AskResult(
            answer=best.answer,
            citations=citations,
            confidence=best.score,
            confident=best.score >= threshold,
        )

    # --- Sync ---

    @property
    def sync_configured(self) -> bool:
        """Whether a remote store is available for sync."""
        return self._remote is not None or bool(self.config.get_remote_settings().url)

    @property
    def sync_engine(self) -> SyncEngine:
        """Lazy-create the sync engine.

        Raises:
            ValueError: If no remote store is configured.
        """
        if self._engine is None:
            settings = self.config.get_remote_settings()
            remote = self._remote
            if remote is None:
                if not settings.url:
                    raise ValueError(
                        "No remote store configured. "
                        "Set one with: site-kb config --remote-url URL"
                    )
                remote = RemoteStoreClient(settings.url, timeout=settings.timeout)
                self._remote = remote
            self._engine = SyncEngine(
                self.store,
                remote,
                self.config,
                identity=settings.identity,
                password=settings.password,
            )
        return self._engine

    def pull(self, silent: bool = False) -> SyncState:
        """Pull remote records into the local store.

        Does nothing if a sync is already running.

        Returns:
            The sync state after the pull.
        """
        engine = self.sync_engine
        if engine.is_busy:
            logger.warning("Pull skipped: a sync is already in progress")
            return engine.get_sync_state()
        engine.pull(silent=silent)
        return engine.get_sync_state()

    def start_pull(self, silent: bool = False) -> "Future[None] | None":
        """Schedule a pull in the background.

        Returns:
            Future of the scheduled pull, or None if a sync is already running.
        """
        engine = self.sync_engine
        if engine.is_busy:
            logger.warning("Background pull skipped: a sync is already in progress")
            return None
        return engine.start_pull(silent=silent)

    def publish(self) -> PublishResult:
        """Publish local changes to the remote store.

        Refused while another sync is running or scheduled.
        """
        engine = self.sync_engine
        if engine.is_busy:
            return PublishResult(ok=False, error=SYNC_IN_PROGRESS)
        return engine.publish()

    def plan_publish(self) -> PublishPlan:
        """Preview what a publish would send."""
        return self.sync_engine.plan()

    def sync_state(self) -> SyncState:
        """Get the latest sync state (idle if sync was never used)."""
        if self._engine is None:
            return SyncState()
        return self._engine.get_sync_state()

    def subscribe_sync_state(self, observer: StateObserver) -> Callable[[], None]:
        """Register an observer of sync state changes."""
        return self.sync_engine.subscribe_sync_state(observer)

    def last_sync(self) -> datetime | None:
        """Completion time of the last successful pull."""
        return self.config.get_last_sync()

    def reset_sync_watermark(self) -> bool:
        """Forget the last sync time.

        Returns:
            True if a stored timestamp was removed.
        """
        removed = self.config.clear_last_sync()
        if removed:
            logger.info("Sync watermark cleared")
        return removed

    def close(self) -> None:
        """Stop background work and close connections."""
        if self._engine is not None:
            self._engine.close()
            self._engine = None
        if self._remote is not None:
            self._remote.close()
            self._remote = None
        self.store.close()

    def __enter__(self) -> "KnowledgeBase":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit."""
        self.close()
