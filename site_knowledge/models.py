"""Record types shared by the local store, the remote client and the sync engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from site_knowledge.utils import clean_field

# Content fields, in display order
CONTENT_FIELDS = (
    "site_name",
    "category",
    "subcategory",
    "question",
    "answer",
    "additional_info",
)

# Fields that must be non-empty for a record to be accepted by the remote store
REQUIRED_FIELDS = ("site_name", "category", "subcategory", "question", "answer")

# Fields that make up the natural key
NATURAL_KEY_FIELDS = ("site_name", "category", "subcategory", "question")


@dataclass
class Record:
    """A question/answer record in the local store."""

    local_id: int
    site_name: str
    category: str
    subcategory: str
    question: str
    answer: str
    additional_info: str = ""
    approved: bool = False
    remote_id: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> Record:
        """Build a record from a sqlite3.Row."""
        return cls(
            local_id=row["local_id"],
            site_name=row["site_name"] or "",
            category=row["category"] or "",
            subcategory=row["subcategory"] or "",
            question=row["question"] or "",
            answer=row["answer"] or "",
            additional_info=row["additional_info"] or "",
            approved=bool(row["approved"]),
            remote_id=row["remote_id"],
        )

    def content(self) -> dict[str, Any]:
        """Return content fields plus the approval flag."""
        data: dict[str, Any] = {name: getattr(self, name) for name in CONTENT_FIELDS}
        data["approved"] = self.approved
        return data

    def search_text(self) -> str:
        """Concatenate content fields for text matching."""
        return " ".join(getattr(self, name) or "" for name in CONTENT_FIELDS)

    def missing_fields(self) -> list[str]:
        """Return required fields that are empty after trimming."""
        return [name for name in REQUIRED_FIELDS if not clean_field(getattr(self, name))]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dictionary."""
        data = {"local_id": self.local_id, "remote_id": self.remote_id}
        data.update(self.content())
        return data


@dataclass
class RemoteRecord:
    """A record as held by the remote store."""

    id: str
    site_name: str = ""
    category: str = ""
    subcategory: str = ""
    question: str = ""
    answer: str = ""
    additional_info: str = ""
    approved: bool = False
    is_deleted: bool = False
    updated_at: datetime | None = None
    created_at: datetime | None = None

    def content(self) -> dict[str, Any]:
        """Return content fields plus the approval flag."""
        data: dict[str, Any] = {name: getattr(self, name) for name in CONTENT_FIELDS}
        data["approved"] = self.approved
        return data


def publish_payload(record: Record) -> dict[str, Any]:
    """Build the remote payload for a local record.

    String fields are trimmed and the tombstone flag is always cleared, so
    publishing a record also revives a soft-deleted remote copy.

    Args:
        record: Local record.

    Returns:
        Dictionary of remote fields.
    """
    payload: dict[str, Any] = {
        name: clean_field(getattr(record, name)) for name in CONTENT_FIELDS
    }
    payload["approved"] = bool(record.approved)
    payload["is_deleted"] = False
    return payload


def payload_differs(payload: dict[str, Any], remote: RemoteRecord) -> bool:
    """Check whether a publish payload differs from the remote record."""
    for name in CONTENT_FIELDS:
        if payload[name] != (getattr(remote, name) or ""):
            return True
    if payload["approved"] != bool(remote.approved):
        return True
    return payload["is_deleted"] != bool(remote.is_deleted)
