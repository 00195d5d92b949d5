"""Durable offline submission queue and the user-facing report submitter.

Queued reports live in the ``OfflineQueueItem`` SQLite table, ordered by
insertion id.  A failed upload is never discarded: its attempt count grows
and it becomes eligible again after a capped exponential backoff.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Literal, Mapping

from sqlmodel import Session, SQLModel, select

from .database import OfflineQueueItem, SQLiteStore, build_engine
from .models import ClassifiedItem
from .rate_limit import capped_exponential_backoff_ms

if TYPE_CHECKING:
    from .pipeline import HazardPipeline

_log = logging.getLogger(__name__)

Uploader = Callable[[Dict[str, Any]], Awaitable[Any]]

DEFAULT_FLUSH_INTERVAL_SECONDS = 10.0


@dataclass
class FlushResult:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    deferred: int = 0
    skipped_reason: str = ""


class OfflineQueue:
    def __init__(
        self,
        uploader: Uploader,
        *,
        path: Path | None = None,
        engine=None,
        is_online: Callable[[], bool] = lambda: True,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.uploader = uploader
        self.engine = engine or build_engine(path)
        SQLModel.metadata.create_all(self.engine)
        self.is_online = is_online
        self._clock = clock
        self._sleep = sleep
        self._flushing = False
        self._stopped = asyncio.Event()

    def enqueue(self, report: Mapping[str, Any]) -> int:
        row = OfflineQueueItem(
            payload_json=json.dumps(dict(report), ensure_ascii=True, default=str),
            enqueued_at=self._clock(),
            attempts=0,
            next_retry_at=0.0,
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            _log.info("Queued report %s for later upload", row.id)
            return int(row.id or 0)

    def pending(self) -> List[OfflineQueueItem]:
        with Session(self.engine) as session:
            return list(session.exec(select(OfflineQueueItem).order_by(OfflineQueueItem.id)).all())

    def get(self, item_id: int) -> OfflineQueueItem | None:
        with Session(self.engine) as session:
            return session.get(OfflineQueueItem, item_id)

    def __len__(self) -> int:
        return len(self.pending())

    async def flush(self, force: bool = False) -> FlushResult:
        """One sequential pass over eligible items; ``force`` ignores retry times."""
        if self._flushing:
            return FlushResult(skipped_reason="flush already running")
        if not self.is_online():
            return FlushResult(skipped_reason="offline")

        self._flushing = True
        result = FlushResult()
        try:
            for row in self.pending():
                if not force and row.next_retry_at > self._clock():
                    result.deferred += 1
                    continue
                result.attempted += 1
                if await self._attempt(row):
                    result.succeeded += 1
                else:
                    result.failed += 1
        finally:
            self._flushing = False
        if result.attempted:
            _log.info(
                "Queue flush: %d attempted, %d uploaded, %d failed",
                result.attempted,
                result.succeeded,
                result.failed,
            )
        return result

    async def _attempt(self, row: OfflineQueueItem) -> bool:
        try:
            await self.uploader(json.loads(row.payload_json))
        except Exception as exc:
            self._record_failure(int(row.id or 0), exc)
            return False
        with Session(self.engine) as session:
            stored = session.get(OfflineQueueItem, row.id)
            if stored is not None:
                session.delete(stored)
                session.commit()
        return True

    def _record_failure(self, item_id: int, exc: Exception) -> None:
        with Session(self.engine) as session:
            stored = session.get(OfflineQueueItem, item_id)
            if stored is None:
                return
            stored.attempts += 1
            delay = capped_exponential_backoff_ms(stored.attempts) / 1000
            stored.next_retry_at = self._clock() + delay
            stored.last_error = f"{type(exc).__name__}: {exc}"
            session.add(stored)
            session.commit()
            _log.warning(
                "Upload of queued report %s failed (attempt %d, retry in %.0fs): %s",
                item_id,
                stored.attempts,
                delay,
                exc,
            )

    async def run(self, interval: float = DEFAULT_FLUSH_INTERVAL_SECONDS) -> None:
        self._stopped.clear()
        while not self._stopped.is_set():
            await self.flush()
            await self._sleep(interval)

    def stop(self) -> None:
        self._stopped.set()

    async def on_connectivity_restored(self) -> FlushResult:
        return await self.flush(force=True)


@dataclass
class SubmissionResult:
    status: Literal["submitted", "queued"]
    item: ClassifiedItem
    queue_id: int | None = None
    error: str = ""
    alerts: List[dict] = field(default_factory=list)


class ReportSubmitter:
    """Outermost submission path: classify and score inline, upload or queue.

    Delivery saves the report to the store and runs the alert trigger over
    it; the queue replays the same delivery when connectivity returns.
    """

    def __init__(
        self,
        pipeline: "HazardPipeline",
        store: SQLiteStore,
        *,
        queue: OfflineQueue | None = None,
        is_online: Callable[[], bool] = lambda: True,
    ) -> None:
        self.pipeline = pipeline
        self.store = store
        self.is_online = is_online
        self.queue = queue or OfflineQueue(self.deliver, engine=store.engine, is_online=is_online)
        self._last_alerts: list[dict] = []

    async def deliver(self, payload: Dict[str, Any]) -> None:
        item = ClassifiedItem.model_validate(payload)
        self.store.save_report(item)
        self._last_alerts = self.pipeline.alert_trigger.evaluate([item])

    async def submit_report(self, report: Mapping[str, Any]) -> SubmissionResult:
        item = await self.pipeline.process_report(report)
        payload = item.model_dump(mode="json")

        if self.is_online():
            try:
                await self.deliver(payload)
            except Exception as exc:
                _log.warning("Report %s upload failed; queueing: %s", item.id, exc)
                queue_id = self.queue.enqueue(payload)
                return SubmissionResult(status="queued", item=item, queue_id=queue_id, error=str(exc))
            return SubmissionResult(status="submitted", item=item, alerts=self._last_alerts)

        queue_id = self.queue.enqueue(payload)
        return SubmissionResult(status="queued", item=item, queue_id=queue_id, error="offline")
