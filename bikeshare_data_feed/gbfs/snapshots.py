from __future__ import annotations

from dataclasses import astuple, dataclass
from typing import Any, Callable, List, Sequence, Tuple, Union

import pandas as pd

from .errors import SchemaError


@dataclass(frozen=True)
class StationInformationSnapshot:
    updated_time: int
    station_id: str
    name: str
    lat: float
    lon: float
    capacity: int


@dataclass(frozen=True)
class StationStatusSnapshot:
    updated_time: int
    station_id: str
    num_bikes_available: int
    num_bikes_disabled: int
    num_docks_available: int
    is_installed: int
    is_renting: int
    is_returning: int
    last_reported: int


Snapshot = Union[StationInformationSnapshot, StationStatusSnapshot]


@dataclass(frozen=True)
class Entity:
    """One snapshot table: its feed name, DuckDB schema and export directory.

    `column_types` follows the record's field declaration order, which is also
    the CSV header order.
    """

    feed_name: str
    table: str
    export_dir: str
    record_type: type
    column_types: Tuple[Tuple[str, str], ...]
    parse: Callable[[dict[str, Any]], List[Any]]

    @property
    def columns(self) -> List[str]:
        return [name for name, _ in self.column_types]


def payload_timestamp(payload: dict[str, Any]) -> int:
    """Return the feed's own `last_updated` as integer epoch seconds.

    GBFS 1.x/2.x publish an integer; 3.x publishes an RFC3339 string.
    """
    raw = payload.get("last_updated")
    if raw is None or isinstance(raw, bool):
        raise SchemaError("payload has no last_updated timestamp")
    if isinstance(raw, (int, float)):
        return int(raw)
    if isinstance(raw, str):
        if raw.isdigit():
            return int(raw)
        try:
            ts = pd.Timestamp(raw)
        except ValueError as exc:
            raise SchemaError(f"unparseable last_updated: {raw!r}") from exc
        if ts.tzinfo is None:
            ts = ts.tz_localize("UTC")
        return int(ts.timestamp())
    raise SchemaError(f"unexpected last_updated type: {type(raw).__name__}")


def payload_stations(payload: dict[str, Any]) -> List[dict[str, Any]]:
    data = payload.get("data")
    if not isinstance(data, dict):
        raise SchemaError("payload has no data object")
    stations = data.get("stations")
    if not isinstance(stations, list):
        raise SchemaError("payload has no data.stations list")
    return stations


def _field(station: dict[str, Any], key: str) -> Any:
    if not isinstance(station, dict):
        raise SchemaError(f"station entry is not an object: {station!r}")
    if station.get(key) is None:
        raise SchemaError(f"station {station.get('station_id')!r} is missing {key}")
    return station[key]


def _count(station: dict[str, Any], key: str) -> int:
    value = _field(station, key)
    try:
        count = int(value)
    except (TypeError, ValueError) as exc:
        raise SchemaError(f"{key} is not an integer: {value!r}") from exc
    if count < 0:
        raise SchemaError(f"{key} is negative for station {station.get('station_id')!r}")
    return count


def _flag(station: dict[str, Any], key: str) -> int:
    # 1.x publishes 0/1, 2.x publishes booleans
    value = _field(station, key)
    if value in (0, 1):
        return int(value)
    raise SchemaError(f"{key} is not a 0/1 flag: {value!r}")


def _coordinate(station: dict[str, Any], key: str) -> float:
    value = _field(station, key)
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise SchemaError(f"{key} is not a number: {value!r}") from exc


def information_snapshots(payload: dict[str, Any]) -> List[StationInformationSnapshot]:
    updated_time = payload_timestamp(payload)
    return [
        StationInformationSnapshot(
            updated_time=updated_time,
            station_id=str(_field(station, "station_id")),
            name=str(_field(station, "name")),
            lat=_coordinate(station, "lat"),
            lon=_coordinate(station, "lon"),
            capacity=_count(station, "capacity"),
        )
        for station in payload_stations(payload)
    ]


def status_snapshots(payload: dict[str, Any]) -> List[StationStatusSnapshot]:
    updated_time = payload_timestamp(payload)
    return [
        StationStatusSnapshot(
            updated_time=updated_time,
            station_id=str(_field(station, "station_id")),
            num_bikes_available=_count(station, "num_bikes_available"),
            num_bikes_disabled=_count(station, "num_bikes_disabled"),
            num_docks_available=_count(station, "num_docks_available"),
            is_installed=_flag(station, "is_installed"),
            is_renting=_flag(station, "is_renting"),
            is_returning=_flag(station, "is_returning"),
            last_reported=_count(station, "last_reported"),
        )
        for station in payload_stations(payload)
    ]


STATION_INFORMATION = Entity(
    feed_name="station_information",
    table="station_information",
    export_dir="stations_information",
    record_type=StationInformationSnapshot,
    column_types=(
        ("updated_time", "BIGINT"),
        ("station_id", "VARCHAR"),
        ("name", "VARCHAR"),
        ("lat", "DOUBLE"),
        ("lon", "DOUBLE"),
        ("capacity", "INTEGER"),
    ),
    parse=information_snapshots,
)

STATION_STATUS = Entity(
    feed_name="station_status",
    table="station_status",
    export_dir="stations_statuses",
    record_type=StationStatusSnapshot,
    column_types=(
        ("updated_time", "BIGINT"),
        ("station_id", "VARCHAR"),
        ("num_bikes_available", "INTEGER"),
        ("num_bikes_disabled", "INTEGER"),
        ("num_docks_available", "INTEGER"),
        ("is_installed", "INTEGER"),
        ("is_renting", "INTEGER"),
        ("is_returning", "INTEGER"),
        ("last_reported", "BIGINT"),
    ),
    parse=status_snapshots,
)

ENTITIES: Tuple[Entity, ...] = (STATION_INFORMATION, STATION_STATUS)

_PANDAS_DTYPES = {"BIGINT": "int64", "INTEGER": "int64", "VARCHAR": "object", "DOUBLE": "float64"}


def snapshots_to_dataframe(entity: Entity, records: Sequence[Snapshot]) -> pd.DataFrame:
    """Map snapshot records into a DataFrame with the entity's column order.

    - one row per record, columns as declared on the record dataclass
    - duplicate `(updated_time, station_id)` keys keep the first occurrence
    """
    dtypes = {name: _PANDAS_DTYPES[sql_type] for name, sql_type in entity.column_types}
    if not records:
        return pd.DataFrame(columns=entity.columns).astype(dtypes)
    df = pd.DataFrame([astuple(r) for r in records], columns=entity.columns).astype(dtypes)
    df = df.drop_duplicates(subset=["updated_time", "station_id"], keep="first")
    return df.reset_index(drop=True)
