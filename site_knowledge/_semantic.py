"""Vector index of local records for semantic search."""

import logging
from collections.abc import Iterable
from pathlib import Path

import chromadb
from chromadb.config import Settings

from site_knowledge._embedding import EmbeddingService
from site_knowledge.models import Record
from site_knowledge.utils import compute_content_hash

logger = logging.getLogger(__name__)


class SemanticIndex:
    """Keeps a ChromaDB collection in step with the local records.

    Entries are keyed by local id. Each entry stores a hash of the embedded
    text so refresh() only re-embeds records whose question or answer
    changed since they were indexed.
    """

    COLLECTION_NAME = "records"
    # Chroma query results are capped at the collection size
    MAX_QUERY_RESULTS = 50

    def __init__(
        self,
        chroma_path: Path,
        embedding_service: EmbeddingService,
    ) -> None:
        """Initialize the index.

        Args:
            chroma_path: Directory for the persistent ChromaDB store.
            embedding_service: Service used to embed record and query text.
        """
        self._embedding = embedding_service
        self.chroma_client = chromadb.PersistentClient(
            path=str(chroma_path),
            settings=Settings(anonymized_telemetry=False),
        )
        self.collection = self.chroma_client.get_or_create_collection(
            name=self.COLLECTION_NAME,
            metadata={"hnsw:space": "cosine"},
        )

    def refresh(self, records: Iterable[Record]) -> int:
        """Bring the index up to date with the given records.

        Records missing from the index or whose content hash changed are
        (re)embedded; index entries with no matching record are removed.

        Args:
            records: The full current set of local records.

        Returns:
            Number of records embedded.
        """
        existing = self.collection.get(include=["metadatas"])
        indexed_hashes = {
            entry_id: (metadata or {}).get("content_hash")
            for entry_id, metadata in zip(existing["ids"], existing["metadatas"] or [])
        }

        ids: list[str] = []
        texts: list[str] = []
        hashes: list[str] = []
        current: set[str] = set()
        for record in records:
            entry_id = str(record.local_id)
            current.add(entry_id)
            text = self._embedding.create_embedding_text(
                record.question, record.answer, record.additional_info
            )
            content_hash = compute_content_hash(text)
            if indexed_hashes.get(entry_id) == content_hash:
                continue
            if not text.strip():
                continue
            ids.append(entry_id)
            texts.append(text)
            hashes.append(content_hash)

        stale = [entry_id for entry_id in indexed_hashes if entry_id not in current]
        if stale:
            self.collection.delete(ids=stale)
            logger.debug("Removed %d stale index entries", len(stale))

        if ids:
            embeddings = self._embedding.generate_embeddings(texts)
            self.collection.upsert(
                ids=ids,
                embeddings=embeddings,
                metadatas=[{"content_hash": h} for h in hashes],
                documents=texts,
            )
            logger.info("Embedded %d record(s)", len(ids))

        return len(ids)

    def query(self, text: str, n_results: int) -> list[tuple[int, float]]:
        """Find the records nearest to a query.

        Args:
            text: Query text.
            n_results: Maximum number of results.

        Returns:
            List of (local_id, score) pairs, best first. Score is cosine
            similarity (1 - distance).
        """
        count = self.collection.count()
        if count == 0 or n_results <= 0:
            return []

        query_embedding = self._embedding.generate_embedding(text)
        results = self.collection.query(
            query_embeddings=[query_embedding],
            n_results=min(n_results, count, self.MAX_QUERY_RESULTS),
            include=["distances"],
        )

        if not results["ids"] or not results["ids"][0]:
            return []

        ids = results["ids"][0]
        distances = results["distances"][0] if results["distances"] else []
        matches = []
        for i, entry_id in enumerate(ids):
            distance = distances[i] if i < len(distances) else 1.0
            matches.append((int(entry_id), 1 - distance))
        return matches

    def count(self) -> int:
        """Number of indexed records."""
        return self.collection.count()
