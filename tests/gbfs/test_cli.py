from __future__ import annotations

from datetime import date
from zoneinfo import ZoneInfo

import pandas as pd

import bikeshare_data_feed.gbfs.cli as cli_mod
from bikeshare_data_feed.gbfs.errors import FetchError
from bikeshare_data_feed.gbfs.export import day_window


MANIFEST_URL = "https://example.test/gbfs.json"
STATUS_URL = "https://example.test/station_status.json"
INFO_URL = "https://example.test/station_information.json"


def _fake_feeds(last_updated: int, fail_info: bool = False):
    responses = {
        MANIFEST_URL: {
            "data": {
                "fr": {
                    "feeds": [
                        {"name": "station_information", "url": INFO_URL},
                        {"name": "station_status", "url": STATUS_URL},
                    ]
                }
            }
        },
        STATUS_URL: {
            "last_updated": last_updated,
            "data": {
                "stations": [
                    {
                        "station_id": "001",
                        "num_bikes_available": 5,
                        "num_bikes_disabled": 1,
                        "num_docks_available": 6,
                        "is_installed": True,
                        "is_renting": True,
                        "is_returning": False,
                        "last_reported": last_updated - 40,
                    }
                ]
            },
        },
        INFO_URL: {
            "last_updated": last_updated,
            "data": {"stations": [{"station_id": "001", "name": "Rives du Lez", "lat": 43.603, "lon": 3.898, "capacity": 12}]},
        },
    }

    def fetch(url, timeout=None):
        if fail_info and url == INFO_URL:
            raise FetchError("HTTP 502", url=url, status_code=502)
        return responses[url]

    return fetch


def test_ingest_once_then_export_day_locally(monkeypatch, tmp_path, capsys) -> None:
    day = date(2024, 3, 14)
    start, _ = day_window(day, ZoneInfo("Europe/Paris"))
    monkeypatch.setattr(cli_mod, "fetch_json", _fake_feeds(start + 3600))
    db = tmp_path / "db" / "feed.duckdb"
    base = ["--duckdb", str(db), "--manifest-url", MANIFEST_URL]

    assert cli_mod.main(base + ["ingest-once"]) == 0
    assert "cycle=success" in capsys.readouterr().out

    out_dir = tmp_path / "exports"
    code = cli_mod.main(base + ["--owner", "o", "--repo", "r", "export", "--day", "14-03-2024", "--out-dir", str(out_dir)])
    assert code == 0

    status_csv = out_dir / "o" / "r" / "dataset" / "stations_statuses" / "14-03-2024.csv"
    info_csv = out_dir / "o" / "r" / "dataset" / "stations_information" / "14-03-2024.csv"
    df = pd.read_csv(status_csv, dtype={"station_id": str})
    assert df.to_dict("records") == [
        {
            "updated_time": start + 3600,
            "station_id": "001",
            "num_bikes_available": 5,
            "num_bikes_disabled": 1,
            "num_docks_available": 6,
            "is_installed": 1,
            "is_renting": 1,
            "is_returning": 0,
            "last_reported": start + 3560,
        }
    ]
    assert pd.read_csv(info_csv)["name"].tolist() == ["Rives du Lez"]

    assert cli_mod.main(base + ["status"]) == 0
    out = capsys.readouterr().out
    assert "station_status: rows=1" in out
    assert "station_information: rows=1" in out


def test_ingest_once_partial_failure_exit_code(monkeypatch, tmp_path, capsys) -> None:
    monkeypatch.setattr(cli_mod, "fetch_json", _fake_feeds(1000, fail_info=True))

    code = cli_mod.main(["--duckdb", str(tmp_path / "feed.duckdb"), "--manifest-url", MANIFEST_URL, "ingest-once"])

    assert code == 1
    assert "station_information=failed" in capsys.readouterr().out


def test_export_without_token_or_out_dir_reports_error(monkeypatch, tmp_path, capsys) -> None:
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)

    code = cli_mod.main(["--duckdb", str(tmp_path / "feed.duckdb"), "export"])

    assert code == 3
    assert "GITHUB_TOKEN" in capsys.readouterr().err


def test_parse_args_reads_environment_defaults(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("BIKESHARE_DUCKDB", str(tmp_path / "env.duckdb"))
    monkeypatch.setenv("GBFS_MANIFEST_URL", MANIFEST_URL)
    monkeypatch.setenv("GITHUB_TOKEN", "secret")

    cfg = cli_mod.parse_args(["run", "--interval", "2", "--export-at", "02:30"])

    assert cfg.duckdb_path == tmp_path / "env.duckdb"
    assert cfg.manifest_url == MANIFEST_URL
    assert cfg.github_token == "secret"
    assert cfg.interval == 2.0
    assert cfg.export_at.hour == 2 and cfg.export_at.minute == 30
