from __future__ import annotations

from pathlib import Path
from typing import Iterator, Optional, Sequence
import threading

import duckdb  # type: ignore
import pandas as pd

from .errors import StoreError
from .snapshots import ENTITIES, Entity, Snapshot, snapshots_to_dataframe


DEFAULT_CHUNK_SIZE = 50_000


def _connect(db_path: Path):
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(str(db_path))


class SnapshotStore:
    """DuckDB-backed store for station information and status snapshots.

    Both tables are keyed by `(updated_time, station_id)`. Writes insert with
    ON CONFLICT DO NOTHING so overlapping cycles that observe the same feed
    update collapse into one row. Writers are serialized in-process; DuckDB
    would otherwise abort one of two transactions racing on the same key.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._write_lock = threading.Lock()

    def _open(self):
        try:
            return _connect(self.db_path)
        except duckdb.Error as e:
            raise StoreError(f"cannot open {self.db_path}: {e}") from e

    def ensure_tables(self) -> None:
        con = self._open()
        try:
            for entity in ENTITIES:
                cols = ",\n  ".join(f"{name} {sql_type} NOT NULL" for name, sql_type in entity.column_types)
                con.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {entity.table} (
                      {cols},
                      PRIMARY KEY (updated_time, station_id)
                    );
                    """
                )
        except duckdb.Error as e:
            raise StoreError(f"cannot create tables: {e}") from e
        finally:
            con.close()

    def upsert_batch(self, entity: Entity, records: Sequence[Snapshot]) -> int:
        """Insert all records; keys already present are silently skipped.

        Returns the number of records submitted.
        """
        if not records:
            return 0
        batch = snapshots_to_dataframe(entity, records)
        cols = ", ".join(entity.columns)
        with self._write_lock:
            con = self._open()
            try:
                con.register("snapshot_batch", batch)
                con.execute(
                    f"""
                    INSERT INTO {entity.table} ({cols})
                    SELECT {cols} FROM snapshot_batch
                    ON CONFLICT DO NOTHING;
                    """
                )
            except duckdb.Error as e:
                raise StoreError(f"cannot write {entity.table}: {e}") from e
            finally:
                con.close()
        return len(records)

    def query_window(
        self,
        entity: Entity,
        start: int,
        end: int,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> Iterator[pd.DataFrame]:
        """Yield rows with start <= updated_time <= end as DataFrame chunks.

        Rows are ordered by (updated_time, station_id) across chunks.
        """
        cols = ", ".join(entity.columns)
        con = self._open()
        try:
            res = con.execute(
                f"""
                SELECT {cols}
                FROM {entity.table}
                WHERE updated_time BETWEEN ? AND ?
                ORDER BY updated_time ASC, station_id ASC
                """,
                [int(start), int(end)],
            )
            while True:
                rows = res.fetchmany(chunk_size)
                if not rows:
                    break
                yield pd.DataFrame.from_records(rows, columns=entity.columns)
        except duckdb.Error as e:
            raise StoreError(f"cannot read {entity.table}: {e}") from e
        finally:
            con.close()

    def coverage_stats(self, entity: Entity) -> Optional[tuple[int, int, int]]:
        con = self._open()
        try:
            q = f"SELECT MIN(updated_time), MAX(updated_time), COUNT(*) FROM {entity.table}"
            res = con.execute(q).fetchone()
        except duckdb.Error as e:
            raise StoreError(f"cannot read {entity.table}: {e}") from e
        finally:
            con.close()
        if res is None or res[0] is None:
            return None
        return int(res[0]), int(res[1]), int(res[2])
