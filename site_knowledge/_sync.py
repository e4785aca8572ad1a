"""Sync engine reconciling the local record store with the remote store."""

import logging
import sqlite3
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from site_knowledge._config import ConfigManager
from site_knowledge._identity import (
    MatchKind,
    index_remote_by_key,
    index_unlinked_by_key,
    natural_key,
    resolve_local,
    resolve_remote,
)
from site_knowledge._sync_state import (
    StateObserver,
    SyncPhase,
    SyncState,
    SyncStateBroadcaster,
)
from site_knowledge.models import Record, RemoteRecord, payload_differs, publish_payload
from site_knowledge.record_store import RecordStore
from site_knowledge.remote import RemoteError, RemoteStoreClient
from site_knowledge.utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class SyncConflict:
    """A record changed remotely since the last successful pull."""

    local_id: int
    remote_id: str
    remote_updated_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dictionary."""
        return {
            "local_id": self.local_id,
            "remote_id": self.remote_id,
            "remote_updated_at": (
                self.remote_updated_at.isoformat() if self.remote_updated_at else None
            ),
        }


@dataclass
class PendingUpdate:
    """A local record whose remote counterpart differs from it."""

    record: Record
    target: RemoteRecord
    match: MatchKind


@dataclass
class PublishPlan:
    """Mutations a publish would send, computed from one pair of snapshots."""

    creates: list[Record] = field(default_factory=list)
    updates: list[PendingUpdate] = field(default_factory=list)
    soft_deletes: list[RemoteRecord] = field(default_factory=list)

    @property
    def pending_local_ids(self) -> frozenset[int]:
        """Local ids with changes not yet on the remote store."""
        ids = [record.local_id for record in self.creates]
        ids.extend(pending.record.local_id for pending in self.updates)
        return frozenset(ids)

    @property
    def is_empty(self) -> bool:
        """True when there is nothing to send."""
        return not (self.creates or self.updates or self.soft_deletes)


@dataclass
class PublishResult:
    """Result of a publish operation."""

    ok: bool
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    skipped: int = 0
    conflicts: list[SyncConflict] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dictionary."""
        if not self.ok:
            data: dict[str, Any] = {
                "ok": False,
                "conflicts": [c.to_dict() for c in self.conflicts],
            }
            if self.error:
                data["error"] = self.error
            return data
        return {
            "ok": True,
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "failed": self.failed,
            "skipped": self.skipped,
        }


def plan_publish(
    local_records: Iterable[Record],
    remote_records: Iterable[RemoteRecord],
) -> PublishPlan:
    """Diff the local set against a remote snapshot.

    Each local record is paired with a remote target by remote id, or by
    natural key among remote records no linked local record claims. Paired
    records that differ become updates; unpaired ones become creates. A live
    remote record nobody claims was removed locally and becomes a soft delete.

    Args:
        local_records: Current local records.
        remote_records: Remote snapshot, tombstones included.

    Returns:
        The publish plan.
    """
    local_records = list(local_records)
    remote_records = list(remote_records)

    remote_by_id = {remote.id: remote for remote in remote_records}
    linked_ids = {record.remote_id for record in local_records if record.remote_id}
    remote_by_key = index_remote_by_key(remote_records, exclude_ids=linked_ids)

    plan = PublishPlan()
    claimed: set[str] = set()

    for record in local_records:
        match = resolve_remote(record, remote_by_id, remote_by_key, claimed)
        if match.remote is None:
            plan.creates.append(record)
            continue

        claimed.add(match.remote.id)
        if payload_differs(publish_payload(record), match.remote):
            plan.updates.append(PendingUpdate(record, match.remote, match.kind))

    for remote in remote_records:
        if remote.id not in claimed and not remote.is_deleted:
            plan.soft_deletes.append(remote)

    return plan


def detect_conflicts(plan: PublishPlan, watermark: datetime) -> list[SyncConflict]:
    """Find queued updates whose remote target changed after the watermark.

    Targets that are themselves queued for soft delete are not conflicts.

    Args:
        plan: The publish plan.
        watermark: Completion time of the last successful pull.

    Returns:
        List of conflicts, empty if the plan is safe to apply.
    """
    deleting = {remote.id for remote in plan.soft_deletes}
    conflicts = []
    for pending in plan.updates:
        target = pending.target
        if target.id in deleting:
            continue
        if target.updated_at is not None and target.updated_at > watermark:
            conflicts.append(
                SyncConflict(
                    local_id=pending.record.local_id,
                    remote_id=target.id,
                    remote_updated_at=target.updated_at,
                )
            )
    return conflicts


class SyncEngine:
    """Reconciles the local record store with the remote store.

    Pull copies remote records into the local store and never deletes.
    Publish sends local creates, updates and deletions to the remote store,
    refusing to send anything when a record it would update changed remotely
    since the last successful pull. Neither operation raises: pull reports
    through the sync state, publish through its PublishResult.

    The engine does not serialize overlapping operations; callers check
    ``is_busy`` before starting one.
    """

    # Broadcast a progress message every N records during a pull
    PROGRESS_INTERVAL = 25

    def __init__(
        self,
        store: RecordStore,
        remote: RemoteStoreClient,
        config: ConfigManager,
        identity: str | None = None,
        password: str | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the sync engine.

        Args:
            store: Local record store.
            remote: Remote store client.
            config: Configuration manager holding the last-sync watermark.
            identity: Optional service-account identity for the remote store.
            password: Optional service-account password.
            clock: Returns the current timezone-aware time. Defaults to UTC now.
        """
        self._store = store
        self._remote = remote
        self._config = config
        self._identity = identity
        self._password = password
        self._clock = clock or utc_now
        self._state = SyncStateBroadcaster()
        self._executor: ThreadPoolExecutor | None = None
        self._scheduled: "Future[None] | None" = None
        self._publishing = False

    # --- State ---

    def get_sync_state(self) -> SyncState:
        """Return the latest sync state."""
        return self._state.state

    def subscribe_sync_state(self, observer: StateObserver) -> Callable[[], None]:
        """Register an observer of sync state changes.

        Returns:
            A function that removes the observer.
        """
        return self._state.subscribe(observer)

    @property
    def pull_scheduled(self) -> bool:
        """True while a pull started with start_pull has not finished."""
        return self._scheduled is not None and not self._scheduled.done()

    @property
    def is_busy(self) -> bool:
        """True while a pull or publish is running or a pull is scheduled."""
        return self.get_sync_state().in_progress or self.pull_scheduled or self._publishing

    def last_sync(self) -> datetime | None:
        """Return the completion time of the last successful pull."""
        return self._config.get_last_sync()

    def reset_sync_watermark(self) -> None:
        """Discard the last-sync watermark.

        Until the next successful pull, publish skips conflict detection.
        """
        if self._config.clear_last_sync():
            logger.info("Sync watermark cleared")

    def _announce(self, silent: bool, **changes: Any) -> None:
        if not silent:
            self._state.set(**changes)

    def _login(self) -> None:
        """Log in with the service account if configured; failures are non-fatal."""
        if self._remote.is_authenticated or not (self._identity and self._password):
            return
        try:
            self._remote.login(self._identity, self._password)
            logger.debug("Logged in to remote store as %s", self._identity)
        except RemoteError as e:
            logger.warning("Remote login failed, continuing unauthenticated: %s", e)

    # --- Pull ---

    def start_pull(self, silent: bool = False) -> "Future[None]":
        """Schedule a pull on the engine's worker thread.

        Pulls are queued on a single worker, so they never overlap each other.

        Args:
            silent: Suppress sync state broadcasts.

        Returns:
            Future completing when the pull has finished.
        """
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="site-kb-pull"
            )
        self._scheduled = self._executor.submit(self.pull, silent)
        return self._scheduled

    def pull(self, silent: bool = False) -> None:
        """Copy remote records into the local store.

        Never raises; the outcome is reported through the sync state.

        Args:
            silent: Suppress sync state broadcasts.
        """
        self._pull(silent=silent)

    def _pull(
        self,
        silent: bool,
        protect: frozenset[int] = frozenset(),
        advance_watermark: bool = True,
    ) -> bool:
        """Run one pull attempt.

        Args:
            silent: Suppress sync state broadcasts.
            protect: Local ids whose unsent changes must not be overwritten.
            advance_watermark: Record the completion time on success.

        Returns:
            True if the pull completed.
        """
        self._announce(
            silent,
            phase=SyncPhase.CHECKING,
            message="Checking server...",
            started_at=self._clock(),
            finished_at=None,
        )

        try:
            self._remote.probe()
        except RemoteError as e:
            logger.warning("Remote store not reachable, staying offline: %s", e)
            self._announce(
                silent,
                phase=SyncPhase.OFFLINE,
                message="Offline: remote store unreachable. Using local records.",
                finished_at=self._clock(),
            )
            return False
        except Exception as e:
            logger.exception("Remote store probe failed")
            self._announce(
                silent,
                phase=SyncPhase.ERROR,
                message=f"Sync error: {e}",
                finished_at=self._clock(),
            )
            return False

        try:
            self._login()
            self._announce(silent, phase=SyncPhase.SYNCING, message="Syncing from server...")
            remote_records = self._remote.list_all(include_deleted=False)
            logger.info("Pulled %d remote record(s)", len(remote_records))
            touched = self._apply_remote_records(remote_records, silent, protect)
            finished = self._clock()
            if advance_watermark:
                self._config.set_last_sync(finished)
        except Exception as e:
            logger.exception("Pull from remote store failed")
            self._announce(
                silent,
                phase=SyncPhase.ERROR,
                message=f"Sync error: {e}",
                finished_at=self._clock(),
            )
            return False

        self._announce(
            silent,
            phase=SyncPhase.OK,
            message=f"Sync complete: {touched} record(s) updated.",
            finished_at=finished,
        )
        return True

    def _apply_remote_records(
        self,
        remote_records: list[RemoteRecord],
        silent: bool,
        protect: frozenset[int],
    ) -> int:
        """Update or insert a local record for each remote record.

        Returns:
            Number of local records written.
        """
        local_records = self._store.list_all()
        local_by_remote_id = {r.remote_id: r for r in local_records if r.remote_id}
        unlinked_by_key = index_unlinked_by_key(local_records)

        touched = 0
        for remote in remote_records:
            if remote.is_deleted:
                continue

            match = resolve_local(remote, local_by_remote_id, unlinked_by_key)
            fields = remote.content()

            if match.record is None:
                local_id = self._store.insert(fields, remote_id=remote.id)
                logger.debug("Inserted local record %s for %s", local_id, remote.id)
            elif match.record.local_id in protect:
                logger.debug(
                    "Keeping unsent local changes of record %s", match.record.local_id
                )
                continue
            else:
                record = match.record
                if match.kind is MatchKind.NATURAL_KEY:
                    self._store.attach_remote_id(record.local_id, remote.id)
                    unlinked_by_key.pop(natural_key(record), None)
                    local_by_remote_id[remote.id] = record
                    logger.debug("Linked local record %s to %s", record.local_id, remote.id)
                self._store.update_by_local_id(record.local_id, fields)

            touched += 1
            if touched % self.PROGRESS_INTERVAL == 0:
                self._announce(
                    silent, phase=SyncPhase.SYNCING, message=f"Syncing... {touched} records"
                )

        return touched

    # --- Publish ---

    def _snapshot_plan(self) -> PublishPlan:
        remote_records = self._remote.list_all(include_deleted=True)
        local_records = self._store.list_all()
        return plan_publish(local_records, remote_records)

    def plan(self) -> PublishPlan:
        """Compute what a publish would send, without changing anything.

        Returns:
            The publish plan.

        Raises:
            RemoteError: If the remote snapshot cannot be fetched.
        """
        self._login()
        return self._snapshot_plan()

    def publish(self) -> PublishResult:
        """Send local changes to the remote store.

        Never raises; failures are reported in the result.

        Returns:
            PublishResult with counts, or with conflicts/error when ok is False.
        """
        self._publishing = True
        try:
            return self._publish()
        except Exception as e:
            logger.exception("Publish failed")
            return PublishResult(ok=False, error=str(e))
        finally:
            self._publishing = False

    def _publish(self) -> PublishResult:
        self._login()
        watermark = self._config.get_last_sync()
        plan = self._snapshot_plan()

        # A preflight pull could bring back records deleted locally, so it
        # only runs when no deletion is queued.
        if not plan.soft_deletes:
            if self._pull(
                silent=True, protect=plan.pending_local_ids, advance_watermark=False
            ):
                plan = self._snapshot_plan()
        else:
            logger.info(
                "Skipping preflight pull: %d soft delete(s) queued", len(plan.soft_deletes)
            )

        if watermark is not None:
            conflicts = detect_conflicts(plan, watermark)
            if conflicts:
                logger.warning(
                    "Publish aborted: %d record(s) changed remotely since %s",
                    len(conflicts),
                    watermark.isoformat(),
                )
                return PublishResult(ok=False, conflicts=conflicts)

        result, unsent = self._apply_plan(plan)
        logger.info(
            "Published: %d created, %d updated, %d deleted, %d failed, %d skipped",
            result.created,
            result.updated,
            result.deleted,
            result.failed,
            result.skipped,
        )

        self._pull(silent=True, protect=frozenset(unsent))
        return result

    def _apply_plan(self, plan: PublishPlan) -> tuple[PublishResult, set[int]]:
        """Send the plan's mutations: soft deletes, then updates, then creates.

        Returns:
            The result counts and the local ids whose changes were not sent.
        """
        result = PublishResult(ok=True)
        unsent: set[int] = set()

        for remote in plan.soft_deletes:
            try:
                self._remote.soft_delete(remote.id)
            except RemoteError as e:
                logger.error("Soft delete failed for %s: %s", remote.id, e)
                result.failed += 1
                continue
            result.deleted += 1

        for pending in plan.updates:
            record = pending.record
            if not self._publishable(record, f"update of {pending.target.id}"):
                result.skipped += 1
                unsent.add(record.local_id)
                continue
            try:
                self._remote.update(pending.target.id, publish_payload(record))
            except RemoteError as e:
                logger.error("Update failed for %s: %s", pending.target.id, e)
                result.failed += 1
                unsent.add(record.local_id)
                continue
            result.updated += 1
            if not record.remote_id:
                self._link(record.local_id, pending.target.id)

        for record in plan.creates:
            if not self._publishable(record, f"create of local record {record.local_id}"):
                result.skipped += 1
                unsent.add(record.local_id)
                continue
            try:
                created = self._remote.create(publish_payload(record))
            except RemoteError as e:
                logger.error("Create failed for local record %s: %s", record.local_id, e)
                result.failed += 1
                unsent.add(record.local_id)
                continue
            result.created += 1
            self._link(record.local_id, created.id)

        return result, unsent

    def _publishable(self, record: Record, action: str) -> bool:
        missing = record.missing_fields()
        if missing:
            logger.warning("Skipping %s: empty required field(s) %s", action, ", ".join(missing))
            return False
        return True

    def _link(self, local_id: int, remote_id: str) -> None:
        try:
            self._store.attach_remote_id(local_id, remote_id)
        except sqlite3.Error as e:
            logger.warning("Failed to attach remote id %s to record %s: %s", remote_id, local_id, e)

    def close(self) -> None:
        """Wait for scheduled pulls and stop the worker thread."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
