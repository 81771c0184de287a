from __future__ import annotations

from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable, Iterator, Optional, Tuple
from zoneinfo import ZoneInfo
import base64
import io
import logging

import pandas as pd

from .archive import ArchiveClient
from .db import SnapshotStore
from .errors import FeedError
from .snapshots import ENTITIES, Entity


DEFAULT_TIMEZONE = "Europe/Paris"
DEFAULT_OWNER = "BrokenSwing"
DEFAULT_REPO = "tam-velomagg-dataset"


def day_window(day: date, tz: tzinfo) -> Tuple[int, int]:
    """Inclusive [start, end] unix seconds covering `day` in `tz`.

    End is one second before the next local midnight, so DST days span
    23 or 25 hours.
    """
    start = datetime.combine(day, time(0, 0), tzinfo=tz)
    next_start = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=tz)
    return int(start.timestamp()), int(next_start.timestamp()) - 1


def yesterday(now: datetime, tz: tzinfo) -> date:
    if now.tzinfo is None:
        now = now.replace(tzinfo=tz)
    return now.astimezone(tz).date() - timedelta(days=1)


def export_path(entity: Entity, day: date) -> str:
    return f"dataset/{entity.export_dir}/{day.strftime('%d-%m-%Y')}.csv"


def iter_csv_text(entity: Entity, chunks: Iterable[pd.DataFrame]) -> Iterator[str]:
    """Yield CSV text: the header line, then one block per DataFrame chunk."""
    yield ",".join(entity.columns) + "\n"
    for chunk in chunks:
        if chunk.empty:
            continue
        yield chunk.loc[:, entity.columns].to_csv(index=False, header=False, lineterminator="\n")


class Base64Writer:
    """Incremental base64 encoder; holds back at most two unencoded bytes."""

    def __init__(self) -> None:
        self._out = io.StringIO()
        self._pending = b""

    def write(self, data: bytes) -> None:
        data = self._pending + data
        cut = len(data) - len(data) % 3
        self._pending = data[cut:]
        if cut:
            self._out.write(base64.b64encode(data[:cut]).decode("ascii"))

    def getvalue(self) -> str:
        if self._pending:
            self._out.write(base64.b64encode(self._pending).decode("ascii"))
            self._pending = b""
        return self._out.getvalue()


def encode_csv(entity: Entity, chunks: Iterable[pd.DataFrame]) -> Tuple[str, int]:
    """Stream CSV text into base64; returns (encoded content, data row count)."""
    writer = Base64Writer()
    rows = 0

    def counted() -> Iterator[pd.DataFrame]:
        nonlocal rows
        for chunk in chunks:
            rows += len(chunk)
            yield chunk

    for text in iter_csv_text(entity, counted()):
        writer.write(text.encode("utf-8"))
    return writer.getvalue(), rows


class Exporter:
    """Exports one day of snapshots per entity to the archive as CSV."""

    def __init__(
        self,
        store: SnapshotStore,
        archive: ArchiveClient,
        owner: str = DEFAULT_OWNER,
        repo: str = DEFAULT_REPO,
        tz: Optional[tzinfo] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.archive = archive
        self.owner = owner
        self.repo = repo
        self.tz = tz or ZoneInfo(DEFAULT_TIMEZONE)
        self._log = logger or logging.getLogger(__name__)

    def export_yesterday(self, now: Optional[datetime] = None) -> None:
        now = now or datetime.now(self.tz)
        self.export_day(yesterday(now, self.tz))

    def export_day(self, day: date) -> dict[str, int]:
        """Export `day` for every entity; returns {path: rows} for successful uploads."""
        start, end = day_window(day, self.tz)
        exported: dict[str, int] = {}
        for entity in ENTITIES:
            try:
                path, rows = self._export_entity(entity, day, start, end)
            except FeedError as e:
                self._log.error("export of %s for %s failed: %s", entity.table, day.isoformat(), e)
            except Exception:
                self._log.exception("export of %s for %s failed", entity.table, day.isoformat())
            else:
                exported[path] = rows
        return exported

    def _export_entity(self, entity: Entity, day: date, start: int, end: int) -> Tuple[str, int]:
        content, rows = encode_csv(entity, self.store.query_window(entity, start, end))
        path = export_path(entity, day)
        self.archive.put_file(self.owner, self.repo, path, f"chore: add {path}", content)
        self._log.info("exported %d %s rows to %s", rows, entity.table, path)
        return path, rows
