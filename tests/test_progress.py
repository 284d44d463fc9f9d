import queue
import threading

import pytest

from lead_importer.errors import InvalidStageTransition, UnknownJobError
from lead_importer.models import ImportResult, ImportStage
from lead_importer.progress import ProgressRegistry


def _result(**counts):
    return ImportResult(**counts)


def test_full_lifecycle_is_published_in_order():
    registry = ProgressRegistry()
    subscription = registry.subscribe("job-1", wait_for_create=True)

    registry.create("job-1", 4)
    registry.record_progress("job-1", 1, {"skipped": 1, "errors": 1})
    registry.advance_stage("job-1", ImportStage.DEDUPING)
    registry.record_progress("job-1", 3, {"duplicates_in_file": 1, "merged": 1})
    registry.advance_stage("job-1", ImportStage.INSERTING)
    registry.complete(
        "job-1", _result(total=4, successful=1, merged=1, duplicates_in_file=1, skipped_rows=1, total_errors=1)
    )

    snapshots = list(subscription)
    assert [snapshot.stage for snapshot in snapshots] == [
        ImportStage.PARSING,
        ImportStage.PARSING,
        ImportStage.DEDUPING,
        ImportStage.DEDUPING,
        ImportStage.INSERTING,
        ImportStage.DONE,
    ]
    assert [snapshot.percentage for snapshot in snapshots] == [0, 25, 25, 99, 99, 100]
    final = snapshots[-1]
    assert final.to_dict() == {
        "uploadId": "job-1",
        "total": 4,
        "processed": 4,
        "percentage": 100,
        "inserted": 1,
        "merged": 1,
        "duplicates": 1,
        "errors": 1,
        "remaining": 0,
        "stage": "done",
        "reason": None,
    }
    assert subscription.ended


def test_job_is_retired_after_terminal_event_reaches_a_subscriber():
    registry = ProgressRegistry()
    registry.create("job-1", 0)
    subscription = registry.subscribe("job-1")

    registry.complete("job-1", _result())

    assert [snapshot.percentage for snapshot in subscription] == [100]
    assert "job-1" not in registry


def test_unobserved_job_is_kept_until_retention_expires():
    now = [100.0]
    registry = ProgressRegistry(retention_seconds=30, clock=lambda: now[0])
    registry.create("job-1", 0)
    assert registry.get("job-1").percentage == 0
    registry.complete("job-1", _result())

    assert registry.get("job-1").stage is ImportStage.DONE
    now[0] += 29
    assert registry.purge_expired() == 0
    now[0] += 1
    assert registry.purge_expired() == 1
    with pytest.raises(UnknownJobError):
        registry.get("job-1")


def test_stages_only_move_forward():
    registry = ProgressRegistry()
    registry.create("job-1", 1)
    registry.advance_stage("job-1", ImportStage.INSERTING)

    with pytest.raises(InvalidStageTransition):
        registry.advance_stage("job-1", ImportStage.DEDUPING)
    with pytest.raises(InvalidStageTransition):
        registry.advance_stage("job-1", ImportStage.DONE)


def test_failed_is_terminal_and_keeps_partial_counts():
    registry = ProgressRegistry()
    registry.create("job-1", 2)
    registry.record_progress("job-1", 1, {"merged": 1})

    snapshot = registry.fail("job-1", "cancelled")

    assert snapshot.stage is ImportStage.FAILED
    assert snapshot.reason == "cancelled"
    assert snapshot.merged == 1
    assert snapshot.percentage == 50
    with pytest.raises(InvalidStageTransition):
        registry.record_progress("job-1", 1)
    with pytest.raises(InvalidStageTransition):
        registry.complete("job-1", _result())


def test_processed_never_exceeds_total():
    registry = ProgressRegistry()
    registry.create("job-1", 2)

    with pytest.raises(ValueError):
        registry.record_progress("job-1", 3)
    with pytest.raises(ValueError):
        registry.record_progress("job-1", 1, {"bogus": 1})


def test_unknown_job_and_duplicate_create():
    registry = ProgressRegistry()

    with pytest.raises(UnknownJobError):
        registry.advance_stage("missing", ImportStage.DEDUPING)
    registry.create("job-1", 1)
    with pytest.raises(ValueError):
        registry.create("job-1", 1)


def test_callbacks_receive_snapshots_and_failures_are_contained():
    registry = ProgressRegistry()
    seen = []

    def broken(snapshot):
        raise RuntimeError("boom")

    registry.subscribe("job-1", callback=broken, wait_for_create=True)
    with registry.subscribe("job-1", callback=seen.append, wait_for_create=True) as subscription:
        registry.create("job-1", 1)
        registry.record_progress("job-1", 1)
        assert [snapshot.processed for snapshot in subscription.drain()] == [0, 1]

    assert [snapshot.processed for snapshot in seen] == [0, 1]
    registry.fail("job-1", "stopped")
    assert len(seen) == 2


def test_subscribing_to_finished_job_ends_immediately():
    registry = ProgressRegistry()
    registry.create("job-1", 0)
    registry.complete("job-1", _result())

    subscription = registry.subscribe("job-1")

    assert subscription.get(timeout=1) is None


def test_discard_ends_waiting_subscriptions():
    registry = ProgressRegistry()
    subscription = registry.subscribe("job-1", wait_for_create=True)

    registry.discard("job-1")

    assert list(subscription) == []


def test_subscribing_to_retired_job_ends_immediately():
    registry = ProgressRegistry()
    registry.create("job-1", 0)
    early = registry.subscribe("job-1")
    registry.complete("job-1", _result())
    assert "job-1" not in registry

    late = registry.subscribe("job-1")

    assert late.get(timeout=0.5) is None
    assert late.ended
    assert [snapshot.stage for snapshot in early] == [ImportStage.DONE]


def test_subscribing_to_discarded_job_ends_immediately():
    registry = ProgressRegistry()
    registry.discard("upload-1")

    subscription = registry.subscribe("upload-1", wait_for_create=True)

    assert subscription.get(timeout=0.5) is None


def test_unknown_job_requires_wait_for_create():
    registry = ProgressRegistry()

    with pytest.raises(UnknownJobError):
        registry.subscribe("missing")


def test_waiting_subscription_expires_when_job_never_appears():
    now = [0.0]
    registry = ProgressRegistry(retention_seconds=10, clock=lambda: now[0])
    subscription = registry.subscribe("missing", wait_for_create=True)

    with pytest.raises(queue.Empty):
        subscription.get(timeout=0.05)
    now[0] += 10

    assert subscription.get(timeout=0.5) is None
    assert subscription.ended


def test_purge_ends_waiting_subscriptions_and_forgets_retired_ids():
    now = [0.0]
    registry = ProgressRegistry(retention_seconds=10, clock=lambda: now[0])
    waiting = registry.subscribe("missing", wait_for_create=True)
    registry.discard("gone")
    now[0] += 10

    registry.purge_expired()

    assert waiting.drain() == []
    assert waiting.ended
    with pytest.raises(UnknownJobError):
        registry.subscribe("gone")


def test_slow_callback_does_not_block_other_jobs():
    registry = ProgressRegistry()
    registry.create("slow", 2)
    registry.create("fast", 2)
    entered = threading.Event()
    release = threading.Event()

    def slow(snapshot):
        entered.set()
        release.wait(timeout=5)

    registry.subscribe("slow", callback=slow)
    worker = threading.Thread(target=registry.record_progress, args=("slow", 1))
    worker.start()
    try:
        assert entered.wait(timeout=5)
        assert registry.record_progress("fast", 1).processed == 1
        assert registry.get("slow").processed == 1
    finally:
        release.set()
        worker.join(timeout=5)
