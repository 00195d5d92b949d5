import asyncio
from pathlib import Path

from sqlmodel import Session, select

from hazard_intel.classification import HazardClassifier
from hazard_intel.database import ReportRecord, SQLiteStore
from hazard_intel.offline_queue import OfflineQueue, ReportSubmitter
from hazard_intel.pipeline import HazardPipeline

REPORT = {"text": "Tsunami waves hitting Chennai beach", "lat": 13.05, "lon": 80.28}


class FlakyUploader:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls: list[dict] = []

    async def __call__(self, payload: dict) -> None:
        self.calls.append(payload)
        if len(self.calls) <= self.failures:
            raise ConnectionError("upload endpoint unreachable")


def test_failed_uploads_are_retained_with_attempt_counts(tmp_path: Path, clock) -> None:
    uploader = FlakyUploader(failures=3)
    queue = OfflineQueue(uploader, path=tmp_path / "queue.db", clock=clock)
    item_id = queue.enqueue({"id": "r1"})

    async def run() -> None:
        for _ in range(3):
            result = await queue.flush(force=True)
            assert result.failed == 1

    asyncio.run(run())

    row = queue.get(item_id)
    assert row is not None
    assert row.attempts == 3
    assert row.next_retry_at == clock.now + 8.0
    assert "unreachable" in row.last_error
    assert len(queue) == 1


def test_timer_pass_waits_for_backoff_but_forced_pass_does_not(tmp_path: Path, clock) -> None:
    uploader = FlakyUploader(failures=1)
    queue = OfflineQueue(uploader, path=tmp_path / "queue.db", clock=clock)
    queue.enqueue({"id": "r1"})

    first = asyncio.run(queue.flush())
    assert (first.attempted, first.failed) == (1, 1)

    deferred = asyncio.run(queue.flush())
    assert (deferred.attempted, deferred.deferred) == (0, 1)

    clock.now += 2.0
    retried = asyncio.run(queue.flush())
    assert retried.succeeded == 1
    assert len(queue) == 0


def test_forced_flush_ignores_retry_time(tmp_path: Path, clock) -> None:
    uploader = FlakyUploader(failures=1)
    queue = OfflineQueue(uploader, path=tmp_path / "queue.db", clock=clock)
    queue.enqueue({"id": "r1"})
    asyncio.run(queue.flush())

    result = asyncio.run(queue.on_connectivity_restored())
    assert result.succeeded == 1
    assert uploader.calls == [{"id": "r1"}, {"id": "r1"}]
    assert queue.pending() == []


def test_offline_flush_is_skipped(tmp_path: Path) -> None:
    uploader = FlakyUploader(failures=0)
    queue = OfflineQueue(uploader, path=tmp_path / "queue.db", is_online=lambda: False)
    queue.enqueue({"id": "r1"})

    result = asyncio.run(queue.flush(force=True))
    assert result.skipped_reason == "offline"
    assert uploader.calls == []
    assert len(queue) == 1


def test_only_one_flush_runs_at_a_time(tmp_path: Path) -> None:
    async def run():
        gate = asyncio.Event()

        async def uploader(payload: dict) -> None:
            await gate.wait()

        queue = OfflineQueue(uploader, path=tmp_path / "queue.db")
        queue.enqueue({"id": "r1"})
        first = asyncio.create_task(queue.flush())
        await asyncio.sleep(0)
        second = await queue.flush()
        gate.set()
        return await first, second

    first, second = asyncio.run(run())
    assert first.succeeded == 1
    assert second.attempted == 0
    assert second.skipped_reason == "flush already running"


def test_queue_survives_restart_in_insertion_order(tmp_path: Path) -> None:
    path = tmp_path / "queue.db"
    queue = OfflineQueue(FlakyUploader(0), path=path)
    queue.enqueue({"id": "first"})
    queue.enqueue({"id": "second"})

    reopened = OfflineQueue(FlakyUploader(0), path=path)
    assert [row.payload_json for row in reopened.pending()] == ['{"id": "first"}', '{"id": "second"}']


def _submitter(tmp_path: Path, online: dict, store: SQLiteStore | None = None) -> ReportSubmitter:
    store = store or SQLiteStore(tmp_path / "reports.db")
    pipeline = HazardPipeline(HazardClassifier(), store=store)
    return ReportSubmitter(pipeline, store, is_online=lambda: online["value"])


def test_online_report_is_submitted_and_alerted(tmp_path: Path) -> None:
    submitter = _submitter(tmp_path, {"value": True})

    result = asyncio.run(submitter.submit_report(REPORT))

    assert result.status == "submitted"
    assert result.item.source == "report"
    assert result.item.hazard_label.value == "Tsunami"
    assert result.item.priority_score == 13.5
    assert len(result.alerts) == 1
    assert submitter.store.recent_alerts()[0]["source"] == "report"
    assert len(submitter.queue) == 0


def test_offline_report_is_queued_then_flushed(tmp_path: Path) -> None:
    online = {"value": False}
    submitter = _submitter(tmp_path, online)

    result = asyncio.run(submitter.submit_report(REPORT))
    assert result.status == "queued"
    assert result.error == "offline"
    assert result.queue_id is not None
    assert submitter.store.recent_alerts() == []

    online["value"] = True
    flushed = asyncio.run(submitter.queue.on_connectivity_restored())
    assert flushed.succeeded == 1
    assert len(submitter.queue) == 0
    assert len(submitter.store.recent_alerts()) == 1


class BrokenStore(SQLiteStore):
    def save_report(self, item):
        raise ConnectionError("server unavailable")


def test_failed_upload_is_queued_with_error(tmp_path: Path) -> None:
    submitter = _submitter(tmp_path, {"value": True}, BrokenStore(tmp_path / "reports.db"))

    result = asyncio.run(submitter.submit_report(REPORT))

    assert result.status == "queued"
    assert result.error == "server unavailable"
    assert len(submitter.queue) == 1


class AlertOnceBrokenStore(SQLiteStore):
    failures = 1

    def save_alert(self, alert):
        if self.failures:
            self.failures -= 1
            raise ConnectionError("alert table locked")
        return super().save_alert(alert)


def test_replayed_delivery_neither_duplicates_report_nor_loses_alert(tmp_path: Path) -> None:
    store = AlertOnceBrokenStore(tmp_path / "reports.db")
    submitter = _submitter(tmp_path, {"value": True}, store)

    result = asyncio.run(submitter.submit_report(REPORT))
    assert result.status == "queued"

    flushed = asyncio.run(submitter.queue.on_connectivity_restored())
    assert flushed.succeeded == 1

    with Session(store.engine) as session:
        reports = session.exec(select(ReportRecord)).all()
    assert [r.report_id for r in reports] == [result.item.id]
    assert len(store.recent_alerts()) == 1
