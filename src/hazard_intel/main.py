"""CLI entrypoint for collection, classification, live streaming, reports and scheduling."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List

from .alerts import AlertTrigger, build_alert_contract
from .config import PipelineConfig, load_pipeline_config
from .database import SQLiteStore
from .live import LiveConnection
from .offline_queue import ReportSubmitter
from .pipeline import build_default_pipeline
from .scheduler import SchedulerOptions, start_scheduler
from .settings import get_live_ws_url, load_environment
from .spatial import compute_hotspots, dominant_label, to_hotspot_features


def _resolve_config(args: argparse.Namespace) -> PipelineConfig:
    config = load_pipeline_config(Path(args.config) if args.config else None)
    overrides: dict = {}
    if getattr(args, "location", None):
        overrides["default_location"] = args.location
    if getattr(args, "limit", None):
        overrides["max_results"] = args.limit
    if getattr(args, "sources", None):
        overrides["enabled_sources"] = [s.strip() for s in args.sources.split(",") if s.strip()]
    if getattr(args, "cell_size", None):
        overrides["hotspot_cell_size"] = args.cell_size
    if not overrides:
        return config
    return PipelineConfig.model_validate({**config.model_dump(), **overrides})


def _db_path(args: argparse.Namespace) -> Path | None:
    return Path(args.db) if args.db else None


def _print(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def cmd_fetch(args: argparse.Namespace) -> int:
    config = _resolve_config(args)

    async def run() -> dict:
        pipeline = build_default_pipeline(config, persist=False)
        try:
            result = await pipeline.collect()
        finally:
            await pipeline.aclose()
        return {
            "item_count": len(result.items),
            "items": [item.model_dump(mode="json") for item in result.items],
            "connector_metrics": result.connector_metrics,
        }

    _print(asyncio.run(run()))
    return 0


def cmd_classify(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    text = args.text if args.text is not None else sys.stdin.read()

    async def run() -> dict:
        pipeline = build_default_pipeline(config, persist=False)
        try:
            item = await pipeline.process_item({"id": "cli", "source": "cli", "text": text})
        finally:
            await pipeline.aclose()
        return item.model_dump(mode="json")

    _print(asyncio.run(run()))
    return 0


def cmd_hotspots(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    representative = "centroid" if args.centroid else "first"

    async def run() -> dict:
        pipeline = build_default_pipeline(config, persist=False)
        try:
            collected = await pipeline.collect()
            items = await pipeline.process_batch(collected.items)
        finally:
            await pipeline.aclose()
        hotspots = compute_hotspots(items, config.hotspot_cell_size, representative)
        return {
            "located_items": sum(1 for i in items if i.coordinate is not None),
            "dominant_labels": [dominant_label(h).value for h in hotspots],
            "hotspots": to_hotspot_features(items, config.hotspot_cell_size, representative),
        }

    _print(asyncio.run(run()))
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    interval = args.interval or config.cycle_interval_minutes
    db_path = _db_path(args)
    trigger = AlertTrigger(config.alert_threshold, SQLiteStore(db_path))

    async def run_once() -> None:
        pipeline = build_default_pipeline(config, db_path=db_path, alert_trigger=trigger)
        try:
            result = await pipeline.run_cycle()
        finally:
            await pipeline.aclose()
        contract = build_alert_contract(result.items, interval_minutes=interval, threshold=config.alert_threshold)
        print(
            json.dumps(
                {
                    "cycle_id": result.cycle_id,
                    "summary": result.summary,
                    "item_count": result.item_count,
                    "alert_count": result.alert_count,
                    "critical_count": len(contract["critical_alerts"]),
                    "high_count": len(contract["high_priority"]),
                    "connector_metrics": result.connector_metrics,
                },
                ensure_ascii=False,
            )
        )

    start_scheduler(run_once, SchedulerOptions(interval_minutes=interval, max_runs=args.max_runs))
    return 0


def cmd_listen(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    url = args.url if args.url is not None else get_live_ws_url()

    async def run() -> None:
        pipeline = build_default_pipeline(config, persist=False)

        def on_post(item) -> None:
            print(json.dumps(item.model_dump(mode="json"), ensure_ascii=False))

        connection = LiveConnection(
            url,
            pipeline.process_payload,
            on_post,
            poll_interval=config.poll_interval_seconds,
        )
        try:
            await connection.connect()
            await asyncio.sleep(args.duration)
        finally:
            await connection.disconnect()
            await pipeline.aclose()

    asyncio.run(run())
    return 0


def _build_submitter(config: PipelineConfig, args: argparse.Namespace, online: bool):
    pipeline = build_default_pipeline(config, db_path=_db_path(args))
    store = pipeline.store or SQLiteStore(_db_path(args))
    return pipeline, ReportSubmitter(pipeline, store, is_online=lambda: online)


def cmd_submit(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    report = {
        "text": args.text,
        "lat": args.lat,
        "lon": args.lon,
        "photo_lat": args.photo_lat,
        "photo_lon": args.photo_lon,
        "captured_at": args.captured_at,
        "location": args.place,
    }

    async def run() -> dict:
        pipeline, submitter = _build_submitter(config, args, online=not args.offline)
        try:
            result = await submitter.submit_report(report)
        finally:
            await pipeline.aclose()
        return {
            "status": result.status,
            "queue_id": result.queue_id,
            "error": result.error,
            "alerts": result.alerts,
            "report": result.item.model_dump(mode="json"),
        }

    payload = asyncio.run(run())
    _print(payload)
    return 0 if payload["status"] == "submitted" else 2


def cmd_flush_queue(args: argparse.Namespace) -> int:
    config = _resolve_config(args)

    async def run() -> dict:
        pipeline, submitter = _build_submitter(config, args, online=True)
        try:
            result = await submitter.queue.on_connectivity_restored()
        finally:
            await pipeline.aclose()
        return {
            "attempted": result.attempted,
            "succeeded": result.succeeded,
            "failed": result.failed,
            "remaining": len(submitter.queue),
        }

    _print(asyncio.run(run()))
    return 0


def cmd_alerts(args: argparse.Namespace) -> int:
    _print(SQLiteStore(_db_path(args)).recent_alerts(limit=args.limit))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hazard-intel")
    parser.add_argument("--config", help="Path to pipeline_config.json")
    parser.add_argument("--db", help="Path to the SQLite database")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, WARNING, ...)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch_parser = subparsers.add_parser("fetch", help="Fetch hazard content from all enabled sources")
    fetch_parser.add_argument("--location", help="Location hint, e.g. 'Chennai'")
    fetch_parser.add_argument("--limit", type=int, help="Max merged items")
    fetch_parser.add_argument("--sources", help="Comma-separated sources (twitter,youtube,facebook,rss)")
    fetch_parser.set_defaults(func=cmd_fetch)

    classify_parser = subparsers.add_parser("classify", help="Classify and score one text (stdin if --text omitted)")
    classify_parser.add_argument("--text")
    classify_parser.set_defaults(func=cmd_classify)

    hotspot_parser = subparsers.add_parser("hotspots", help="Fetch, classify and print grid hotspots as GeoJSON")
    hotspot_parser.add_argument("--location")
    hotspot_parser.add_argument("--limit", type=int)
    hotspot_parser.add_argument("--sources")
    hotspot_parser.add_argument("--cell-size", type=float, help="Grid cell size in degrees")
    hotspot_parser.add_argument("--centroid", action="store_true", help="Use cell centroids as hotspot points")
    hotspot_parser.set_defaults(func=cmd_hotspots)

    run_parser = subparsers.add_parser("run", help="Run collection cycles on an interval")
    run_parser.add_argument("--location")
    run_parser.add_argument("--limit", type=int)
    run_parser.add_argument("--sources")
    run_parser.add_argument("--interval", type=int, help="Interval minutes (defaults to config)")
    run_parser.add_argument("--max-runs", type=int, default=None, help="Stop after N cycles")
    run_parser.set_defaults(func=cmd_run)

    listen_parser = subparsers.add_parser("listen", help="Stream live posts (polling demo feed without a URL)")
    listen_parser.add_argument("--url", help="Websocket URL (defaults to LIVE_WS_URL)")
    listen_parser.add_argument("--duration", type=float, default=60.0, help="Seconds to listen")
    listen_parser.set_defaults(func=cmd_listen)

    submit_parser = subparsers.add_parser("submit", help="Submit a field report, queueing it when offline")
    submit_parser.add_argument("--text", required=True)
    submit_parser.add_argument("--lat", type=float)
    submit_parser.add_argument("--lon", type=float)
    submit_parser.add_argument("--place", help="Place name for geocoding when no coordinate is given")
    submit_parser.add_argument("--photo-lat", type=float)
    submit_parser.add_argument("--photo-lon", type=float)
    submit_parser.add_argument("--captured-at", help="Photo capture time (ISO 8601)")
    submit_parser.add_argument("--offline", action="store_true", help="Queue without attempting upload")
    submit_parser.set_defaults(func=cmd_submit)

    flush_parser = subparsers.add_parser("flush-queue", help="Retry every queued report now")
    flush_parser.set_defaults(func=cmd_flush_queue)

    alerts_parser = subparsers.add_parser("alerts", help="Show recent alert records")
    alerts_parser.add_argument("--limit", type=int, default=20)
    alerts_parser.set_defaults(func=cmd_alerts)

    return parser


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    load_environment()
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
