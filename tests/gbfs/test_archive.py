from __future__ import annotations

import base64
import io
import json
from urllib.error import HTTPError, URLError

import pytest

import bikeshare_data_feed.gbfs.archive as archive_mod
from bikeshare_data_feed.gbfs.archive import GitHubArchive, LocalArchive
from bikeshare_data_feed.gbfs.errors import ArchiveError


PATH = "dataset/stations_statuses/14-03-2024.csv"
CONTENT = base64.b64encode(b"updated_time,station_id\n1,2\n").decode("ascii")


class _FakeResponse:
    def __init__(self, payload) -> None:
        self._body = json.dumps(payload).encode("utf-8")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def read(self) -> bytes:
        return self._body


def _http_error(req, code):
    return HTTPError(req.full_url, code, "error", hdrs=None, fp=io.BytesIO(b"{}"))


class FakeGitHub:
    def __init__(self, existing_sha=None, put_status=None) -> None:
        self.existing_sha = existing_sha
        self.put_status = put_status
        self.requests = []

    def __call__(self, req, timeout):
        body = json.loads(req.data) if req.data else None
        self.requests.append((req.get_method(), req.full_url, body, req.get_header("Authorization")))
        if req.get_method() == "GET":
            if self.existing_sha is None:
                raise _http_error(req, 404)
            return _FakeResponse({"sha": self.existing_sha})
        if self.put_status is not None:
            raise _http_error(req, self.put_status)
        return _FakeResponse({"content": {"path": PATH}})


def test_put_file_creates_missing_file(monkeypatch) -> None:
    fake = FakeGitHub()
    monkeypatch.setattr(archive_mod, "urlopen", fake)

    GitHubArchive("tok").put_file("owner", "repo", PATH, f"chore: add {PATH}", CONTENT)

    assert [r[0] for r in fake.requests] == ["GET", "PUT"]
    method, url, body, auth = fake.requests[1]
    assert url == f"https://api.github.com/repos/owner/repo/contents/{PATH}"
    assert body == {"message": f"chore: add {PATH}", "content": CONTENT}
    assert auth == "Bearer tok"


def test_put_file_overwrites_existing_file_with_its_sha(monkeypatch) -> None:
    fake = FakeGitHub(existing_sha="abc123")
    monkeypatch.setattr(archive_mod, "urlopen", fake)

    GitHubArchive("tok").put_file("owner", "repo", PATH, "msg", CONTENT)

    assert fake.requests[1][2]["sha"] == "abc123"


def test_put_file_failure_raises_archive_error(monkeypatch) -> None:
    monkeypatch.setattr(archive_mod, "urlopen", FakeGitHub(put_status=422))

    with pytest.raises(ArchiveError) as info:
        GitHubArchive("tok").put_file("owner", "repo", PATH, "msg", CONTENT)
    assert info.value.status_code == 422
    assert info.value.path == PATH


def test_lookup_network_failure_raises_archive_error(monkeypatch) -> None:
    def offline(req, timeout):
        raise URLError("no route to host")

    monkeypatch.setattr(archive_mod, "urlopen", offline)

    with pytest.raises(ArchiveError):
        GitHubArchive("tok").put_file("owner", "repo", PATH, "msg", CONTENT)


def test_local_archive_overwrites_and_rejects_invalid_base64(tmp_path) -> None:
    archive = LocalArchive(tmp_path)
    archive.put_file("o", "r", PATH, "msg", base64.b64encode(b"old").decode("ascii"))
    archive.put_file("o", "r", PATH, "msg", CONTENT)

    assert archive.target("o", "r", PATH).read_bytes() == base64.b64decode(CONTENT)
    with pytest.raises(ArchiveError):
        archive.put_file("o", "r", PATH, "msg", "not*base64")
