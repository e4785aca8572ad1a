"""Utility functions for the site knowledge base."""

import hashlib
import re
from datetime import datetime, timezone


def levenshtein_distance(s1: str, s2: str) -> int:
    """Calculate the Levenshtein (edit) distance between two strings.

    Args:
        s1: First string.
        s2: Second string.

    Returns:
        The minimum number of single-character edits needed to transform s1 into s2.
    """
    if len(s1) < len(s2):
        return levenshtein_distance(s2, s1)

    if len(s2) == 0:
        return len(s1)

    previous_row = range(len(s2) + 1)
    for i, c1 in enumerate(s1):
        current_row = [i + 1]
        for j, c2 in enumerate(s2):
            # Cost is 0 if characters match, 1 otherwise
            insertions = previous_row[j + 1] + 1
            deletions = current_row[j] + 1
            substitutions = previous_row[j] + (c1 != c2)
            current_row.append(min(insertions, deletions, substitutions))
        previous_row = current_row

    return previous_row[-1]


def normalize_text(value: object) -> str:
    """Normalize a value for identity comparison.

    Args:
        value: Any value; None becomes an empty string.

    Returns:
        The value as a trimmed, lower-cased string.
    """
    if value is None:
        return ""
    return str(value).strip().lower()


def clean_field(value: object) -> str:
    """Convert a field value to a trimmed string (None becomes "")."""
    if value is None:
        return ""
    return str(value).strip()


def tokenize(text: str) -> list[str]:
    """Split text into lower-cased word tokens.

    Args:
        text: Raw text.

    Returns:
        List of alphanumeric tokens.
    """
    return re.findall(r"\w+", text.lower())


def max_edit_distance(token: str) -> int:
    """Edit distance tolerated when fuzzy matching a token of this length."""
    if len(token) <= 3:
        return 0
    if len(token) <= 6:
        return 1
    return 2


def fuzzy_match_token(query_token: str, tokens: list[str]) -> bool:
    """Check if a query token fuzzy-matches any of the given tokens.

    Args:
        query_token: The lower-cased token to search for.
        tokens: Lower-cased tokens to match against.

    Returns:
        True if query_token is a prefix of, or within the tolerated edit
        distance of, any token.
    """
    allowed = max_edit_distance(query_token)
    for token in tokens:
        # Exact or prefix match
        if token.startswith(query_token):
            return True
        # Fuzzy match with edit distance
        if allowed and abs(len(token) - len(query_token)) <= allowed:
            if levenshtein_distance(query_token, token) <= allowed:
                return True
    return False


def fuzzy_score(query: str, text: str) -> float:
    """Score how well a query matches a piece of text.

    A query contained verbatim in the text scores 1.0. Otherwise the score is
    the fraction of query tokens that fuzzy-match a token of the text.

    Args:
        query: Search query.
        text: Text to match against.

    Returns:
        Score between 0.0 and 1.0.
    """
    query_clean = query.strip().lower()
    if not query_clean:
        return 0.0
    if query_clean in text.lower():
        return 1.0

    query_tokens = tokenize(query_clean)
    if not query_tokens:
        return 0.0
    text_tokens = tokenize(text)
    matched = sum(1 for qt in query_tokens if fuzzy_match_token(qt, text_tokens))
    return matched / len(query_tokens)


def create_brief(content: str, max_length: int = 200) -> str:
    """Create a brief version of content.

    Args:
        content: The full content text.
        max_length: Maximum length of the brief.

    Returns:
        Truncated content with ellipsis if needed.
    """
    if len(content) <= max_length:
        return content
    # Try to break at a word boundary
    truncated = content[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > max_length // 2:
        truncated = truncated[:last_space]
    return truncated.rstrip() + "..."


def sanitize_for_embedding(text: str) -> str:
    """Clean text for embedding generation.

    Args:
        text: Raw text input.

    Returns:
        Cleaned text suitable for embedding.
    """
    # Remove excessive whitespace
    text = re.sub(r"\s+", " ", text)
    # Remove special characters that might confuse embeddings
    text = re.sub(r"[^\w\s.,!?;:\-()]", " ", text)
    return text.strip()


def compute_content_hash(text: str) -> str:
    """Compute SHA-256 hash of text for change detection.

    Args:
        text: Text to hash.

    Returns:
        SHA-256 hash as hex string.
    """
    return hashlib.sha256(text.encode()).hexdigest()


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 or PocketBase style timestamp.

    PocketBase serializes timestamps as ``2024-05-01 10:20:30.123Z``. Naive
    values are assumed to be UTC.

    Args:
        value: Timestamp string, or None/empty.

    Returns:
        Timezone-aware datetime, or None if the value is empty or invalid.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
