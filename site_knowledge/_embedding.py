"""Sentence embeddings for question/answer records and search queries."""

from sentence_transformers import SentenceTransformer

from site_knowledge.utils import sanitize_for_embedding


class EmbeddingError(Exception):
    """Raised when a text cannot be embedded."""

    pass


class EmbeddingService:
    """Embeds records and queries with a sentence-transformers model.

    The default model is trained on question/answer pairs, so a user's
    question lands close to the records that answer it. Vectors are
    normalized, matching the cosine space of the semantic index. The model
    is loaded on first use.
    """

    EMBEDDING_MODEL = "multi-qa-MiniLM-L6-cos-v1"

    def __init__(
        self,
        model: SentenceTransformer | None = None,
        model_name: str | None = None,
    ) -> None:
        """Initialize the embedding service.

        Args:
            model: Optional pre-loaded SentenceTransformer model.
            model_name: Model to load when none is given.
                Defaults to EMBEDDING_MODEL.
        """
        self._model: SentenceTransformer | None = model
        self.model_name = model_name or self.EMBEDDING_MODEL

    @property
    def model(self) -> SentenceTransformer:
        """The sentence-transformers model, loaded on first access.

        Raises:
            EmbeddingError: If the model cannot be loaded (e.g. no network
                on first download).
        """
        if self._model is None:
            try:
                self._model = SentenceTransformer(self.model_name)
            except Exception as e:
                raise EmbeddingError(
                    f"Failed to load embedding model '{self.model_name}': {e}"
                ) from e
        return self._model

    def generate_embedding(self, text: str) -> list[float]:
        """Embed a single text, typically a search query."""
        return self.generate_embeddings([text])[0]

    def generate_embeddings(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts in one batch.

        Args:
            texts: Texts to embed.

        Returns:
            One normalized vector per text, in order.

        Raises:
            EmbeddingError: If a text is empty after sanitization or
                encoding fails.
        """
        clean_texts = [sanitize_for_embedding(text) for text in texts]
        if not all(clean_texts):
            raise EmbeddingError("Cannot generate embedding for empty text")
        if not clean_texts:
            return []

        try:
            embeddings = self.model.encode(
                clean_texts, convert_to_numpy=True, normalize_embeddings=True
            )
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Failed to encode text: {e}") from e
        return [embedding.tolist() for embedding in embeddings]

    def create_embedding_text(
        self, question: str, answer: str, additional_info: str = ""
    ) -> str:
        """Build the text indexed for a record.

        The question comes first; it is what users' queries resemble most.
        """
        parts = [question, answer]
        if additional_info and additional_info.strip():
            parts.append(additional_info)
        return "\n".join(parts)
