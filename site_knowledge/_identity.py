"""Identity resolution between local and remote records.

A record is identified across the two stores by its remote id once linked.
Before a link exists, the natural key (site, category, subcategory and
question, trimmed and lower-cased) is used to pair records that were created
independently on both sides. These functions are pure; they only look at the
records and lookup tables they are given.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from site_knowledge.models import NATURAL_KEY_FIELDS, Record, RemoteRecord
from site_knowledge.utils import normalize_text

NaturalKey = tuple[str, str, str, str]


class MatchKind(str, Enum):
    """How a record was paired with its counterpart."""

    REMOTE_ID = "remote_id"
    NATURAL_KEY = "natural_key"
    NONE = "none"


@dataclass(frozen=True)
class RemoteMatch:
    """Result of resolving a local record against the remote set."""

    kind: MatchKind
    remote: RemoteRecord | None = None


@dataclass(frozen=True)
class LocalMatch:
    """Result of resolving a remote record against the local set."""

    kind: MatchKind
    record: Record | None = None


def natural_key(item: Record | RemoteRecord) -> NaturalKey:
    """Compute the normalized natural key of a local or remote record."""
    site, category, subcategory, question = (
        normalize_text(getattr(item, name)) for name in NATURAL_KEY_FIELDS
    )
    return (site, category, subcategory, question)


def index_remote_by_key(
    remote_records: Iterable[RemoteRecord],
    exclude_ids: Iterable[str] = (),
) -> dict[NaturalKey, RemoteRecord]:
    """Index remote records by natural key.

    When several remote records share a key, a live record wins over a
    tombstoned one, otherwise the first seen is kept.

    Args:
        remote_records: Remote records to index.
        exclude_ids: Remote ids already claimed by a linked local record.

    Returns:
        Mapping of natural key to remote record.
    """
    excluded = set(exclude_ids)
    index: dict[NaturalKey, RemoteRecord] = {}
    for remote in remote_records:
        if remote.id in excluded:
            continue
        key = natural_key(remote)
        current = index.get(key)
        if current is None or (current.is_deleted and not remote.is_deleted):
            index[key] = remote
    return index


def index_unlinked_by_key(records: Iterable[Record]) -> dict[NaturalKey, Record]:
    """Index local records that have no remote id by natural key."""
    index: dict[NaturalKey, Record] = {}
    for record in records:
        if not record.remote_id:
            index.setdefault(natural_key(record), record)
    return index


def resolve_remote(
    record: Record,
    remote_by_id: dict[str, RemoteRecord],
    remote_by_key: dict[NaturalKey, RemoteRecord],
    claimed: set[str] | frozenset[str] = frozenset(),
) -> RemoteMatch:
    """Find the remote counterpart of a local record.

    A linked record is resolved by its remote id only; if that id is gone
    from the remote set there is no match. An unlinked record falls back to
    the natural key, skipping remote records already claimed by another
    local record.

    Args:
        record: Local record.
        remote_by_id: Remote records keyed by id.
        remote_by_key: Remote records keyed by natural key.
        claimed: Remote ids already paired with other local records.

    Returns:
        The match and how it was found.
    """
    if record.remote_id:
        remote = remote_by_id.get(record.remote_id)
        if remote is not None:
            return RemoteMatch(MatchKind.REMOTE_ID, remote)
        return RemoteMatch(MatchKind.NONE)

    remote = remote_by_key.get(natural_key(record))
    if remote is not None and remote.id not in claimed:
        return RemoteMatch(MatchKind.NATURAL_KEY, remote)
    return RemoteMatch(MatchKind.NONE)


def resolve_local(
    remote: RemoteRecord,
    local_by_remote_id: dict[str, Record],
    unlinked_by_key: dict[NaturalKey, Record],
) -> LocalMatch:
    """Find the local counterpart of a remote record.

    Args:
        remote: Remote record.
        local_by_remote_id: Linked local records keyed by remote id.
        unlinked_by_key: Unlinked local records keyed by natural key.

    Returns:
        The match and how it was found.
    """
    record = local_by_remote_id.get(remote.id)
    if record is not None:
        return LocalMatch(MatchKind.REMOTE_ID, record)

    record = unlinked_by_key.get(natural_key(remote))
    if record is not None:
        return LocalMatch(MatchKind.NATURAL_KEY, record)
    return LocalMatch(MatchKind.NONE)
