"""Per-job progress records published to subscribers keyed by job identifier."""
from __future__ import annotations

import logging
import queue
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .errors import InvalidStageTransition, UnknownJobError
from .models import ImportResult, ImportStage

LOGGER = logging.getLogger(__name__)

COUNT_KEYS = ("inserted", "merged", "duplicates_in_file", "duplicates_in_db", "skipped", "errors")

SnapshotCallback = Callable[["ProgressSnapshot"], None]

_END = object()


@dataclass
class ImportJob:
    """Mutable progress record owned by the registry."""

    job_id: str
    total: int
    processed: int = 0
    counts: Dict[str, int] = field(default_factory=lambda: dict.fromkeys(COUNT_KEYS, 0))
    stage: ImportStage = ImportStage.PARSING
    percentage: int = 0
    reason: Optional[str] = None
    finished_at: Optional[float] = None
    sequence: int = 0


@dataclass(frozen=True)
class ProgressSnapshot:
    """Full state of a job at the moment it was published."""

    job_id: str
    total: int
    processed: int
    percentage: int
    inserted: int
    merged: int
    duplicates: int
    errors: int
    remaining: int
    stage: ImportStage
    reason: Optional[str] = None

    @classmethod
    def of(cls, job: ImportJob) -> "ProgressSnapshot":
        counts = job.counts
        return cls(
            job_id=job.job_id,
            total=job.total,
            processed=job.processed,
            percentage=job.percentage,
            inserted=counts["inserted"],
            merged=counts["merged"],
            duplicates=counts["duplicates_in_file"] + counts["duplicates_in_db"],
            errors=counts["skipped"],
            remaining=job.total - job.processed,
            stage=job.stage,
            reason=job.reason,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uploadId": self.job_id,
            "total": self.total,
            "processed": self.processed,
            "percentage": self.percentage,
            "inserted": self.inserted,
            "merged": self.merged,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "remaining": self.remaining,
            "stage": self.stage.value,
            "reason": self.reason,
        }


class Subscription:
    """Queue of snapshots for one job; iteration ends after the terminal event."""

    def __init__(
        self,
        registry: "ProgressRegistry",
        job_id: str,
        callback: Optional[SnapshotCallback] = None,
        *,
        deadline: Optional[float] = None,
    ) -> None:
        self.job_id = job_id
        self._registry = registry
        self._callback = callback
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._lock = threading.RLock()
        self._sequence = 0
        self._ended = False
        self._deadline = deadline

    @property
    def ended(self) -> bool:
        return self._ended

    def get(self, timeout: Optional[float] = None) -> Optional[ProgressSnapshot]:
        """Return the next snapshot, or ``None`` once the stream has ended.

        Raises :class:`queue.Empty` when ``timeout`` elapses first. A
        subscription waiting for a job that is never created ends once the
        registry's retention window has passed.
        """

        if self._ended:
            return None
        give_up = None if timeout is None else time.monotonic() + timeout
        while True:
            wait = None if give_up is None else max(give_up - time.monotonic(), 0.0)
            pending = self._registry._pending_wait(self)
            if pending is not None:
                wait = pending if wait is None else min(wait, pending)
            try:
                item = self._queue.get(timeout=wait)
            except queue.Empty:
                if self._registry._expire_pending(self):
                    continue
                if give_up is not None and time.monotonic() >= give_up:
                    raise
                continue
            if item is _END:
                self._ended = True
                return None
            return item  # type: ignore[return-value]

    def drain(self) -> List[ProgressSnapshot]:
        """Return every snapshot already queued without blocking."""

        snapshots: List[ProgressSnapshot] = []
        while True:
            try:
                item = self.get(timeout=0)
            except queue.Empty:
                return snapshots
            if item is None:
                return snapshots
            snapshots.append(item)

    def close(self) -> None:
        self._registry._unsubscribe(self)
        self._finish()

    def __iter__(self):
        while True:
            snapshot = self.get()
            if snapshot is None:
                return
            yield snapshot

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, exc_tb) -> None:
        self.close()

    def _deliver(self, snapshot: ProgressSnapshot, sequence: int) -> None:
        with self._lock:
            # Publishers deliver outside the registry lock, so an older
            # snapshot can arrive after a newer one.
            if sequence <= self._sequence:
                return
            self._sequence = sequence
            if self._callback is not None:
                try:
                    self._callback(snapshot)
                except Exception:  # pragma: no cover - subscriber bugs must not stop the import
                    LOGGER.exception("Progress callback failed for job %s", self.job_id)
            self._queue.put(snapshot)

    def _finish(self) -> None:
        with self._lock:
            self._sequence = sys.maxsize
            self._queue.put(_END)


class ProgressRegistry:
    """Holds one :class:`ImportJob` per job identifier and publishes every change.

    Each mutation publishes the full snapshot, so a subscriber that missed
    earlier events is consistent again after the next one. Percentages never
    decrease and only reach 100 when the job is done.

    Identifiers of retired or discarded jobs are remembered for the retention
    window; subscribing to one ends the subscription at once. Snapshots are
    delivered after the registry lock is released.
    """

    def __init__(self, *, retention_seconds: float = 3600.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._retention_seconds = retention_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._jobs: Dict[str, ImportJob] = {}
        self._ended: Dict[str, float] = {}
        self._subscribers: Dict[str, List[Subscription]] = {}

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def create(self, job_id: str, total: int) -> ProgressSnapshot:
        if total < 0:
            raise ValueError("total must not be negative")
        self.purge_expired()
        with self._lock:
            if job_id in self._jobs:
                raise ValueError(f"Import job {job_id} already exists")
            self._ended.pop(job_id, None)
            job = ImportJob(job_id=job_id, total=total)
            self._jobs[job_id] = job
            for subscription in self._subscribers.get(job_id, []):
                subscription._deadline = None
            delivery = self._publish(job)
        return self._deliver(*delivery)

    def advance_stage(self, job_id: str, stage: ImportStage) -> ProgressSnapshot:
        stage = ImportStage(stage)
        if stage.is_terminal:
            raise InvalidStageTransition(f"Use complete() or fail() to move job {job_id} to '{stage.value}'")
        with self._lock:
            job = self._active(job_id)
            if stage.order <= job.stage.order:
                raise InvalidStageTransition(
                    f"Job {job_id} cannot move from '{job.stage.value}' to '{stage.value}'"
                )
            job.stage = stage
            delivery = self._publish(job)
        return self._deliver(*delivery)

    def record_progress(
        self,
        job_id: str,
        processed_delta: int,
        bucket_deltas: Optional[Mapping[str, int]] = None,
    ) -> ProgressSnapshot:
        deltas = dict(bucket_deltas or {})
        unknown = set(deltas) - set(COUNT_KEYS)
        if unknown:
            raise ValueError(f"Unknown progress counters: {', '.join(sorted(unknown))}")
        if processed_delta < 0:
            raise ValueError("processed_delta must not be negative")
        with self._lock:
            job = self._active(job_id)
            if job.processed + processed_delta > job.total:
                raise ValueError(
                    f"Job {job_id} cannot process {job.processed + processed_delta} of {job.total} rows"
                )
            job.processed += processed_delta
            for key, delta in deltas.items():
                job.counts[key] += delta
            delivery = self._publish(job)
        return self._deliver(*delivery)

    def complete(self, job_id: str, result: ImportResult) -> ProgressSnapshot:
        with self._lock:
            job = self._active(job_id)
            job.processed = job.total
            job.counts.update(
                inserted=result.successful,
                merged=result.merged,
                duplicates_in_file=result.duplicates_in_file,
                duplicates_in_db=result.duplicates_in_db,
                skipped=result.skipped_rows,
                errors=result.total_errors,
            )
            job.stage = ImportStage.DONE
            delivery = self._finish(job)
        return self._deliver(*delivery, final=True)

    def fail(self, job_id: str, reason: str) -> ProgressSnapshot:
        with self._lock:
            job = self._active(job_id)
            job.stage = ImportStage.FAILED
            job.reason = reason
            delivery = self._finish(job)
        return self._deliver(*delivery, final=True)

    # ------------------------------------------------------------------
    # Queries and subscriptions
    # ------------------------------------------------------------------
    def get(self, job_id: str) -> ProgressSnapshot:
        with self._lock:
            return ProgressSnapshot.of(self._require(job_id))

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs

    def subscribe(
        self,
        job_id: str,
        callback: Optional[SnapshotCallback] = None,
        *,
        wait_for_create: bool = False,
    ) -> Subscription:
        """Receive every snapshot published for ``job_id`` from now on.

        Subscribing to a finished, retired or discarded job returns a
        subscription that has already ended. An identifier the registry has
        never seen raises :class:`UnknownJobError` unless ``wait_for_create``
        is set; such a subscription ends if the job is not created within the
        retention window.
        """

        with self._lock:
            job = self._jobs.get(job_id)
            if (job is not None and job.stage.is_terminal) or job_id in self._ended:
                subscription = Subscription(self, job_id, callback)
                subscription._finish()
                return subscription
            if job is None and not wait_for_create:
                raise UnknownJobError(job_id)
            deadline = None if job is not None else self._clock() + self._retention_seconds
            subscription = Subscription(self, job_id, callback, deadline=deadline)
            self._subscribers.setdefault(job_id, []).append(subscription)
        return subscription

    def discard(self, job_id: str) -> None:
        """Drop a job and end all of its subscriptions, including later ones."""

        with self._lock:
            self._jobs.pop(job_id, None)
            self._ended[job_id] = self._clock()
            subscribers = self._subscribers.pop(job_id, [])
        for subscription in subscribers:
            subscription._finish()

    def purge_expired(self) -> int:
        """Remove finished jobs older than the retention window.

        Remembered identifiers of retired jobs and subscriptions still waiting
        for a job that was never created expire with them.
        """

        now = self._clock()
        stale: List[Subscription] = []
        with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.finished_at is not None and now - job.finished_at >= self._retention_seconds
            ]
            for job_id in expired:
                del self._jobs[job_id]
            for job_id, ended_at in list(self._ended.items()):
                if now - ended_at >= self._retention_seconds:
                    del self._ended[job_id]
            for job_id, subscribers in list(self._subscribers.items()):
                waiting = [s for s in subscribers if s._deadline is not None and now >= s._deadline]
                if not waiting:
                    continue
                stale.extend(waiting)
                remaining = [s for s in subscribers if s not in waiting]
                if remaining:
                    self._subscribers[job_id] = remaining
                else:
                    del self._subscribers[job_id]
        for subscription in stale:
            subscription._finish()
        if expired:
            LOGGER.debug("Purged %s expired import jobs", len(expired))
        return len(expired)

    # ------------------------------------------------------------------
    def _require(self, job_id: str) -> ImportJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise UnknownJobError(job_id)
        return job

    def _active(self, job_id: str) -> ImportJob:
        job = self._require(job_id)
        if job.stage.is_terminal:
            raise InvalidStageTransition(f"Job {job_id} already finished with stage '{job.stage.value}'")
        return job

    def _publish(self, job: ImportJob) -> Tuple[ProgressSnapshot, int, List[Subscription]]:
        job.percentage = self._percentage(job)
        job.sequence += 1
        return ProgressSnapshot.of(job), job.sequence, list(self._subscribers.get(job.job_id, []))

    def _finish(self, job: ImportJob) -> Tuple[ProgressSnapshot, int, List[Subscription]]:
        snapshot, sequence, _ = self._publish(job)
        job.finished_at = self._clock()
        subscribers = self._subscribers.pop(job.job_id, [])
        if subscribers:
            del self._jobs[job.job_id]
            self._ended[job.job_id] = job.finished_at
        LOGGER.debug("Job %s finished with stage %s", job.job_id, job.stage.value)
        return snapshot, sequence, subscribers

    @staticmethod
    def _deliver(
        snapshot: ProgressSnapshot,
        sequence: int,
        subscribers: List[Subscription],
        *,
        final: bool = False,
    ) -> ProgressSnapshot:
        for subscription in subscribers:
            subscription._deliver(snapshot, sequence)
            if final:
                subscription._finish()
        return snapshot

    @staticmethod
    def _percentage(job: ImportJob) -> int:
        if job.stage is ImportStage.DONE:
            return 100
        if job.total <= 0:
            return 0
        current = int(job.processed * 100 / job.total)
        return max(job.percentage, min(current, 99))

    def _pending_wait(self, subscription: Subscription) -> Optional[float]:
        with self._lock:
            if subscription._deadline is None:
                return None
            return max(subscription._deadline - self._clock(), 0.0)

    def _expire_pending(self, subscription: Subscription) -> bool:
        with self._lock:
            deadline = subscription._deadline
            if deadline is None or self._clock() < deadline or subscription.job_id in self._jobs:
                return False
            subscription._deadline = None
        self._unsubscribe(subscription)
        subscription._finish()
        LOGGER.debug("Subscription to job %s expired before the job was created", subscription.job_id)
        return True

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscribers.get(subscription.job_id)
            if subscribers and subscription in subscribers:
                subscribers.remove(subscription)
                if not subscribers:
                    del self._subscribers[subscription.job_id]


__all__ = ["COUNT_KEYS", "ImportJob", "ProgressRegistry", "ProgressSnapshot", "Subscription"]
