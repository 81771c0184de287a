from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from dataclasses import dataclass
from datetime import datetime, time as dt_time
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from .api import DEFAULT_MANIFEST_URL, DEFAULT_TIMEOUT, FeedDiscoverer, fetch_json
from .archive import ArchiveClient, GitHubArchive, LocalArchive
from .db import SnapshotStore
from .export import DEFAULT_OWNER, DEFAULT_REPO, DEFAULT_TIMEZONE, Exporter, yesterday
from .ingest import Ingestor
from .scheduler import DEFAULT_EXPORT_AT, Scheduler, parse_time_of_day
from .snapshots import ENTITIES


DEFAULT_DUCKDB = "data/bikeshare_snapshots.duckdb"


@dataclass
class RunConfig:
    command: str
    duckdb_path: Path
    manifest_url: str
    archive_owner: str
    archive_repo: str
    timezone: str
    github_token: Optional[str] = None
    out_dir: Optional[Path] = None
    day: Optional[str] = None
    interval: float = 1.0
    export_at: dt_time = DEFAULT_EXPORT_AT
    http_timeout: float = DEFAULT_TIMEOUT
    language: str = "en"
    debug: bool = False


def _archive(cfg: RunConfig) -> ArchiveClient:
    if cfg.out_dir is not None:
        return LocalArchive(cfg.out_dir)
    if not cfg.github_token:
        raise ValueError("GITHUB_TOKEN is required to upload exports (or pass --out-dir)")
    return GitHubArchive(cfg.github_token)


def _build_ingestor(cfg: RunConfig, store: SnapshotStore) -> Ingestor:
    def fetch(url: str):
        return fetch_json(url, timeout=cfg.http_timeout)

    return Ingestor(
        cfg.manifest_url,
        store,
        discoverer=FeedDiscoverer(fetch=fetch, language=cfg.language),
        fetch=fetch,
    )


def _build_exporter(cfg: RunConfig, store: SnapshotStore) -> Exporter:
    return Exporter(
        store,
        _archive(cfg),
        owner=cfg.archive_owner,
        repo=cfg.archive_repo,
        tz=ZoneInfo(cfg.timezone),
    )


def run_daemon(cfg: RunConfig, store: SnapshotStore) -> int:
    ingestor = _build_ingestor(cfg, store)
    exporter = _build_exporter(cfg, store)
    scheduler = Scheduler(
        ingestor.run_cycle,
        exporter.export_yesterday,
        interval=cfg.interval,
        export_at=cfg.export_at,
        tz=ZoneInfo(cfg.timezone),
    )

    def _terminate(signum, _frame):
        raise KeyboardInterrupt(f"signal {signum}")

    signal.signal(signal.SIGTERM, _terminate)
    print(
        f"[INFO] ingesting every {cfg.interval}s from {cfg.manifest_url}; "
        f"export daily at {cfg.export_at.strftime('%H:%M')} {cfg.timezone}"
    )
    try:
        scheduler.run_forever()
    finally:
        ingestor.close()
    return 0


def run_ingest_once(cfg: RunConfig, store: SnapshotStore) -> int:
    ingestor = _build_ingestor(cfg, store)
    try:
        result = ingestor.run_cycle()
    finally:
        ingestor.close()
    detail = " ".join(f"{o.feed}={o.rows if o.ok else 'failed'}" for o in result.outcomes)
    print(f"cycle={result.status} {detail or result.error}")
    return {"success": 0, "partial": 1}.get(result.status, 2)


def run_export(cfg: RunConfig, store: SnapshotStore) -> int:
    exporter = _build_exporter(cfg, store)
    if cfg.day:
        day = datetime.strptime(cfg.day, "%d-%m-%Y").date()
    else:
        day = yesterday(datetime.now(exporter.tz), exporter.tz)
    exported = exporter.export_day(day)
    for path, rows in exported.items():
        print(f"exported rows={rows} path={path}")
    if len(exported) < len(ENTITIES):
        print(f"[ERROR] {len(ENTITIES) - len(exported)} export(s) failed for {day:%d-%m-%Y}", file=sys.stderr)
        return 1
    return 0


def run_status(cfg: RunConfig, store: SnapshotStore) -> int:
    tz = ZoneInfo(cfg.timezone)
    for entity in ENTITIES:
        cov = store.coverage_stats(entity)
        if cov is None:
            print(f"{entity.table}: empty")
            continue
        tmin, tmax, cnt = cov
        first = datetime.fromtimestamp(tmin, tz).isoformat()
        last = datetime.fromtimestamp(tmax, tz).isoformat()
        print(f"{entity.table}: rows={cnt:,} range=[{first}..{last}]")
    return 0


COMMANDS = {
    "run": run_daemon,
    "ingest-once": run_ingest_once,
    "export": run_export,
    "status": run_status,
}


def parse_args(argv: Optional[list[str]] = None) -> RunConfig:
    env = os.environ
    p = argparse.ArgumentParser(description="GBFS station snapshot feed: ingest every second, export daily to CSV")
    p.add_argument(
        "--duckdb",
        type=Path,
        default=Path(env.get("BIKESHARE_DUCKDB", DEFAULT_DUCKDB)),
        help="Path to DuckDB file",
    )
    p.add_argument("--manifest-url", default=env.get("GBFS_MANIFEST_URL", DEFAULT_MANIFEST_URL), help="GBFS gbfs.json URL")
    p.add_argument("--language", default=env.get("GBFS_LANGUAGE", "en"), help="Preferred manifest language")
    p.add_argument("--owner", default=env.get("ARCHIVE_OWNER", DEFAULT_OWNER), help="Archive repository owner")
    p.add_argument("--repo", default=env.get("ARCHIVE_REPO", DEFAULT_REPO), help="Archive repository name")
    p.add_argument("--timezone", default=env.get("PUBLICATION_TZ", DEFAULT_TIMEZONE), help="Publication timezone")
    p.add_argument("--http-timeout", type=float, default=DEFAULT_TIMEOUT, help="Timeout for feed requests (seconds)")
    p.add_argument("--debug", action="store_true", help="Verbose logging")
    sub = p.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Ingest every interval and export once a day")
    run.add_argument("--interval", type=float, default=1.0, help="Seconds between ingestion cycles")
    run.add_argument("--export-at", type=parse_time_of_day, default=DEFAULT_EXPORT_AT, help="Daily export time HH:MM")
    run.add_argument("--out-dir", type=Path, default=None, help="Write exports locally instead of uploading")

    sub.add_parser("ingest-once", help="Run a single ingestion cycle")

    exp = sub.add_parser("export", help="Export one day of snapshots")
    exp.add_argument("--day", default=None, help="Day to export as DD-MM-YYYY (default: yesterday)")
    exp.add_argument("--out-dir", type=Path, default=None, help="Write exports locally instead of uploading")

    sub.add_parser("status", help="Show stored snapshot coverage")

    args = p.parse_args(argv)
    return RunConfig(
        command=args.command,
        duckdb_path=args.duckdb,
        manifest_url=args.manifest_url,
        archive_owner=args.owner,
        archive_repo=args.repo,
        timezone=args.timezone,
        github_token=env.get("GITHUB_TOKEN"),
        out_dir=getattr(args, "out_dir", None),
        day=getattr(args, "day", None),
        interval=getattr(args, "interval", 1.0),
        export_at=getattr(args, "export_at", DEFAULT_EXPORT_AT),
        http_timeout=args.http_timeout,
        language=args.language,
        debug=args.debug,
    )


def main(argv: Optional[list[str]] = None) -> int:
    cfg = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if cfg.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        store = SnapshotStore(cfg.duckdb_path)
        store.ensure_tables()
        return COMMANDS[cfg.command](cfg, store)
    except Exception as e:  # surface clear error message
        print(f"[ERROR] {e}", file=sys.stderr)
        if cfg.debug:
            raise
        return 3


if __name__ == "__main__":
    raise SystemExit(main())
