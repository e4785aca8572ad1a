"""Tests for the semantic index and embedding service."""

import pytest

from site_knowledge._embedding import EmbeddingError, EmbeddingService
from site_knowledge._semantic import SemanticIndex
from site_knowledge.models import Record


def make_record(local_id, question, answer="Some answer"):
    return Record(
        local_id=local_id,
        site_name="Lab A",
        category="General",
        subcategory="Misc",
        question=question,
        answer=answer,
    )


@pytest.fixture
def index(temp_dir, embedding_service):
    return SemanticIndex(temp_dir / "chroma", embedding_service)


class TestEmbeddingText:
    """Tests for embedding text construction."""

    def test_question_and_answer_joined(self):
        """Question and answer are joined by a newline."""
        assert EmbeddingService().create_embedding_text("Q?", "A.") == "Q?\nA."

    def test_empty_text_rejected(self):
        """Empty text cannot be embedded."""
        with pytest.raises(EmbeddingError):
            EmbeddingService(model=object()).generate_embedding("  @#$ ")

    def test_additional_info_appended(self):
        """Extra details are indexed after the answer when present."""
        service = EmbeddingService()
        assert service.create_embedding_text("Q?", "A.", "Ask IT.") == "Q?\nA.\nAsk IT."
        assert service.create_embedding_text("Q?", "A.", "   ") == "Q?\nA."

    def test_question_answer_model_by_default(self):
        """The default model is a question/answer retrieval model."""
        assert EmbeddingService().model_name == "multi-qa-MiniLM-L6-cos-v1"
        assert EmbeddingService(model_name="custom").model_name == "custom"

    def test_vectors_are_normalized(self):
        """The model is asked for normalized vectors in one batch."""
        calls = []

        class Vector(list):
            def tolist(self):
                return list(self)

        class RecordingModel:
            def encode(self, texts, **kwargs):
                calls.append((texts, kwargs))
                return [Vector([1.0, 1.0, 1.0]) for _ in texts]

        service = EmbeddingService(model=RecordingModel())
        assert service.generate_embeddings(["one", "two"]) == [[1.0, 1.0, 1.0]] * 2
        assert calls[0][0] == ["one", "two"]
        assert calls[0][1]["normalize_embeddings"] is True


class TestRefresh:
    """Tests for keeping the index current."""

    def test_refresh_embeds_only_changes(self, index, embedding_service):
        """Unchanged records are not embedded again."""
        records = [make_record(1, "How do I reset the VPN?"), make_record(2, "Where are backups?")]
        assert index.refresh(records) == 2
        assert index.count() == 2

        calls = embedding_service.calls
        assert index.refresh(records) == 0
        assert embedding_service.calls == calls

        records[0] = make_record(1, "How do I reset the VPN?", answer="Changed answer")
        assert index.refresh(records) == 1

    def test_refresh_removes_stale_entries(self, index):
        """Entries for deleted records are dropped."""
        index.refresh([make_record(1, "Q one"), make_record(2, "Q two")])
        index.refresh([make_record(2, "Q two")])
        assert index.count() == 1
        assert [local_id for local_id, _ in index.query("Q two", 5)] == [2]


class TestQuery:
    """Tests for nearest-neighbour queries."""

    def test_empty_index(self, index):
        """An empty index returns no matches."""
        assert index.query("anything", 5) == []

    def test_best_match_first(self, index):
        """The closest record has the highest score."""
        index.refresh(
            [
                make_record(1, "How do I reset the VPN password?", "Use the portal."),
                make_record(2, "Where are the database backups?", "On the NAS."),
            ]
        )
        matches = index.query("reset VPN password portal", 2)
        assert matches[0][0] == 1
        assert matches[0][1] > matches[1][1]

    def test_n_results_capped_by_count(self, index):
        """Asking for more results than indexed returns what exists."""
        index.refresh([make_record(1, "Only question")])
        assert len(index.query("question", 10)) == 1
