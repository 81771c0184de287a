from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, time as dt_time, timedelta, tzinfo
from typing import Any, Callable, List, Optional
from zoneinfo import ZoneInfo
import logging
import math
import threading
import time


# One hour past midnight absorbs the Paris/UTC offset, one minute lets the last
# ingestion writes of the day land.
DEFAULT_EXPORT_AT = dt_time(1, 1)


def next_daily_run(now: datetime, at: dt_time, tz: tzinfo) -> datetime:
    """First occurrence of wall-clock `at` in `tz` strictly after `now`."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=tz)
    local = now.astimezone(tz)
    candidate = datetime.combine(local.date(), at, tzinfo=tz)
    if candidate <= local:
        candidate = datetime.combine(local.date() + timedelta(days=1), at, tzinfo=tz)
    return candidate


def seconds_until(run_at: datetime, now: Optional[datetime] = None) -> float:
    """Real seconds from `now` (default: current time) until `run_at`.

    Computed on unix timestamps: subtracting two datetimes that share a tzinfo
    is wall-clock arithmetic and drifts by an hour across DST changes.
    """
    current = now.timestamp() if now is not None else time.time()
    return run_at.timestamp() - current


def parse_time_of_day(value: str) -> dt_time:
    parts = value.split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time format: {value!r}")
    try:
        hour, minute = int(parts[0]), int(parts[1])
        second = int(parts[2]) if len(parts) == 3 else 0
    except ValueError as exc:
        raise ValueError(f"Invalid time components in {value!r}") from exc
    if not (0 <= hour < 24 and 0 <= minute < 60 and 0 <= second < 60):
        raise ValueError(f"Time out of range: {value!r}")
    return dt_time(hour=hour, minute=minute, second=second)


class Scheduler:
    """Drives ingestion every `interval` seconds and the export once a day.

    Ingestion ticks never wait for earlier cycles: each tick submits a new
    cycle to a pool and overlapping cycles are expected. At most
    `max_concurrent_cycles` cycles are in flight; a tick that finds them all
    busy is skipped rather than queued. Every invocation is guarded so a
    failing callback never stops its timer.
    """

    def __init__(
        self,
        ingest: Callable[[], Any],
        export: Callable[[], Any],
        interval: float = 1.0,
        export_at: dt_time = DEFAULT_EXPORT_AT,
        tz: Optional[tzinfo] = None,
        max_concurrent_cycles: int = 8,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._ingest = ingest
        self._export = export
        self.interval = interval
        self.export_at = export_at
        self.tz = tz or ZoneInfo("Europe/Paris")
        self._cycles = ThreadPoolExecutor(max_workers=max_concurrent_cycles, thread_name_prefix="gbfs-cycle")
        self._slots = threading.BoundedSemaphore(max_concurrent_cycles)
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._log = logger or logging.getLogger(__name__)

    def _guarded(self, name: str, fn: Callable[[], Any]) -> None:
        try:
            fn()
        except Exception:
            self._log.exception("%s raised", name)

    def _run_cycle(self) -> None:
        try:
            self._guarded("ingestion cycle", self._ingest)
        finally:
            self._slots.release()

    def _tick_loop(self) -> None:
        next_tick = time.monotonic()
        while not self._stop.is_set():
            if self._slots.acquire(blocking=False):
                self._cycles.submit(self._run_cycle)
            else:
                self._log.warning("all ingestion cycles still running, skipping tick")
            next_tick += self.interval
            delay = next_tick - time.monotonic()
            if delay < 0:
                missed = math.ceil(-delay / self.interval)
                self._log.warning("ingestion ticker fell behind, skipping %d tick(s)", missed)
                next_tick += missed * self.interval
                delay = next_tick - time.monotonic()
            self._stop.wait(max(0.0, delay))

    def _daily_loop(self) -> None:
        last_run: Optional[datetime] = None
        while not self._stop.is_set():
            now = datetime.now(self.tz)
            if last_run is not None and now.timestamp() < last_run.timestamp():
                now = last_run
            run_at = next_daily_run(now, self.export_at, self.tz)
            self._log.info("next export at %s", run_at.isoformat())
            if self._stop.wait(max(0.0, seconds_until(run_at))):
                break
            self._guarded("daily export", self._export)
            last_run = run_at

    def start(self) -> None:
        if self._threads:
            return
        self._stop.clear()
        for target, name in ((self._tick_loop, "gbfs-ticker"), (self._daily_loop, "gbfs-export-timer")):
            t = threading.Thread(target=target, name=name, daemon=True)
            t.start()
            self._threads.append(t)

    def stop(self, wait: bool = True) -> None:
        self._stop.set()
        for t in self._threads:
            t.join()
        self._threads = []
        self._cycles.shutdown(wait=wait, cancel_futures=True)

    def run_forever(self) -> None:
        self.start()
        try:
            while not self._stop.wait(1.0):
                pass
        except KeyboardInterrupt:
            self._log.info("interrupted, stopping")
        finally:
            self.stop()
