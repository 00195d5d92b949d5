"""SQLite persistence for classified items, alerts, reports and the offline queue using SQLModel."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Sequence

from sqlmodel import Field, Session, SQLModel, create_engine, select

from .models import ClassifiedItem


class CycleRun(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    run_at: str = Field(index=True)
    connector_count: int
    item_count: int
    alert_count: int
    hotspot_count: int
    summary: str = ""


class ClassifiedItemRecord(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    cycle_id: int | None = Field(default=None, index=True)
    item_id: str = Field(index=True)
    source: str = Field(index=True)
    hazard_label: str
    confidence: float
    priority_score: float
    timestamp: str | None = None
    lat: float | None = None
    lon: float | None = None
    payload_json: str


class AlertRecord(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    created_at: str = Field(index=True)
    type: str
    priority: float
    reason: str
    source: str
    payload_json: str


class ReportRecord(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    report_id: str = Field(index=True)
    submitted_at: str
    hazard_label: str
    priority_score: float
    payload_json: str


class OfflineQueueItem(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    payload_json: str
    enqueued_at: float
    attempts: int = 0
    next_retry_at: float = 0.0
    last_error: str = ""


def default_db_path() -> Path:
    return Path.home() / ".hazard-intel" / "hazard_intel.db"


def build_engine(path: Path | None = None):
    db_path = path or default_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(f"sqlite:///{db_path}")


def init_db(path: Path | None = None):
    engine = build_engine(path)
    SQLModel.metadata.create_all(engine)
    return engine


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteStore:
    """Store collaborator: persisted items, alert records and submitted reports."""

    def __init__(self, path: Path | None = None, *, engine=None) -> None:
        self.engine = engine or build_engine(path)
        SQLModel.metadata.create_all(self.engine)

    def persist_items(self, items: Sequence[ClassifiedItem], cycle_id: int | None = None) -> int:
        with Session(self.engine) as session:
            for item in items:
                session.add(
                    ClassifiedItemRecord(
                        cycle_id=cycle_id,
                        item_id=item.id,
                        source=item.source,
                        hazard_label=item.hazard_label.value,
                        confidence=item.confidence,
                        priority_score=item.priority_score,
                        timestamp=item.timestamp,
                        lat=item.coordinate.lat if item.coordinate else None,
                        lon=item.coordinate.lon if item.coordinate else None,
                        payload_json=item.model_dump_json(),
                    )
                )
            session.commit()
        return len(items)

    def save_alert(self, alert: Dict[str, Any]) -> int:
        record = AlertRecord(
            created_at=str(alert.get("created_at") or _now()),
            type=str(alert.get("type", "hazard")),
            priority=float(alert.get("priority", 0.0)),
            reason=str(alert.get("reason", "")),
            source=str(alert.get("source", "")),
            payload_json=json.dumps(alert.get("payload") or {}, ensure_ascii=True, default=str),
        )
        with Session(self.engine) as session:
            session.add(record)
            session.commit()
            session.refresh(record)
            return int(record.id or 0)

    def save_report(self, item: ClassifiedItem) -> int:
        """Insert or update the report row keyed by ``report_id``; replays never duplicate."""
        with Session(self.engine) as session:
            record = session.exec(select(ReportRecord).where(ReportRecord.report_id == item.id)).first()
            if record is None:
                record = ReportRecord(report_id=item.id, submitted_at=_now())
            record.hazard_label = item.hazard_label.value
            record.priority_score = item.priority_score
            record.payload_json = item.model_dump_json()
            session.add(record)
            session.commit()
            session.refresh(record)
            return int(record.id or 0)

    def recent_alerts(self, limit: int = 20) -> List[Dict[str, Any]]:
        with Session(self.engine) as session:
            rows = session.exec(select(AlertRecord).order_by(AlertRecord.id.desc()).limit(limit)).all()
        return [
            {
                "id": row.id,
                "created_at": row.created_at,
                "type": row.type,
                "priority": row.priority,
                "reason": row.reason,
                "source": row.source,
                "payload": json.loads(row.payload_json or "{}"),
            }
            for row in rows
        ]

    def record_cycle(
        self,
        *,
        connector_count: int,
        item_count: int,
        alert_count: int,
        hotspot_count: int,
        summary: str = "",
    ) -> int:
        cycle = CycleRun(
            run_at=_now(),
            connector_count=connector_count,
            item_count=item_count,
            alert_count=alert_count,
            hotspot_count=hotspot_count,
            summary=summary,
        )
        with Session(self.engine) as session:
            session.add(cycle)
            session.commit()
            session.refresh(cycle)
            return int(cycle.id or 0)

    def item_count(self) -> int:
        with Session(self.engine) as session:
            return len(session.exec(select(ClassifiedItemRecord.id)).all())
