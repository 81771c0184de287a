from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import List, Optional
import logging

from .api import FeedDiscoverer, FetchJson, fetch_json
from .db import SnapshotStore
from .errors import FeedError
from .snapshots import STATION_INFORMATION, STATION_STATUS, Entity


@dataclass(frozen=True)
class FeedOutcome:
    feed: str
    ok: bool
    rows: int = 0
    error: str = ""


@dataclass(frozen=True)
class CycleResult:
    outcomes: List[FeedOutcome] = field(default_factory=list)
    error: str = ""

    @property
    def status(self) -> str:
        if self.outcomes and all(o.ok for o in self.outcomes):
            return "success"
        if any(o.ok for o in self.outcomes):
            return "partial"
        return "failure"


class Ingestor:
    """Runs one fetch-transform-persist cycle over both station sub-feeds.

    Each sub-feed runs in its own pipeline on a shared pool; a failure in one
    pipeline is logged and recorded without affecting the other.
    """

    def __init__(
        self,
        manifest_url: str,
        store: SnapshotStore,
        discoverer: Optional[FeedDiscoverer] = None,
        fetch: Optional[FetchJson] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.manifest_url = manifest_url
        self.store = store
        self._fetch = fetch or fetch_json
        self._discoverer = discoverer or FeedDiscoverer(fetch=self._fetch)
        self._executor = executor or ThreadPoolExecutor(max_workers=16, thread_name_prefix="gbfs-feed")
        self._log = logger or logging.getLogger(__name__)

    def run_cycle(self) -> CycleResult:
        try:
            urls = self._discoverer.resolve(self.manifest_url)
        except FeedError as e:
            self._log.error("feed discovery failed: %s", e)
            return CycleResult(error=str(e))

        futures = [
            (STATION_INFORMATION, self._executor.submit(self._pipeline, STATION_INFORMATION, urls.information_url)),
            (STATION_STATUS, self._executor.submit(self._pipeline, STATION_STATUS, urls.status_url)),
        ]
        wait([f for _, f in futures])

        outcomes: List[FeedOutcome] = []
        for entity, fut in futures:
            exc = fut.exception()
            if exc is None:
                outcomes.append(fut.result())
            else:
                self._log.error("unexpected error in %s pipeline", entity.feed_name, exc_info=exc)
                outcomes.append(FeedOutcome(entity.feed_name, ok=False, error=repr(exc)))

        result = CycleResult(outcomes=outcomes)
        self._log.debug(
            "cycle %s: %s",
            result.status,
            " ".join(f"{o.feed}={o.rows if o.ok else 'failed'}" for o in outcomes),
        )
        return result

    def _pipeline(self, entity: Entity, url: str) -> FeedOutcome:
        try:
            payload = self._fetch(url)
            records = entity.parse(payload)
            saved = self.store.upsert_batch(entity, records)
        except FeedError as e:
            self._log.error("%s pipeline failed: %s", entity.feed_name, e)
            return FeedOutcome(entity.feed_name, ok=False, error=str(e))
        self._log.debug("saved %d %s snapshots", saved, entity.feed_name)
        return FeedOutcome(entity.feed_name, ok=True, rows=saved)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
