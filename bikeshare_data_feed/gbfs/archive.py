from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen
import base64
import binascii
import json

from .api import USER_AGENT
from .errors import ArchiveError


GITHUB_API = "https://api.github.com"


class ArchiveClient(Protocol):
    def put_file(self, owner: str, repo: str, path: str, message: str, content: str) -> None:
        """Create or overwrite `path` with base64-encoded `content`."""
        ...


class GitHubArchive:
    """Uploads files through the GitHub repository contents API.

    An existing file is overwritten by sending its current blob sha with the
    PUT; a missing file (404 on lookup) is created.
    """

    def __init__(self, token: str, api_url: str = GITHUB_API, timeout: float = 300.0) -> None:
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout

    def _contents_url(self, owner: str, repo: str, path: str) -> str:
        return f"{self._api_url}/repos/{quote(owner)}/{quote(repo)}/contents/{quote(path)}"

    def _request(self, url: str, *, method: str = "GET", body: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = Request(
            url,
            data=data,
            method=method,
            headers={
                "User-Agent": USER_AGENT,
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {self._token}",
                "X-GitHub-Api-Version": "2022-11-28",
                "Content-Type": "application/json",
            },
        )
        with urlopen(req, timeout=self._timeout) as resp:
            raw = resp.read()
        return json.loads(raw) if raw else {}

    def _existing_sha(self, url: str, path: str) -> Optional[str]:
        try:
            meta = self._request(url)
        except HTTPError as e:
            if e.code == 404:
                return None
            raise ArchiveError(f"lookup of {path} failed: HTTP {e.code}", path=path, status_code=e.code) from e
        except (URLError, OSError, ValueError) as e:
            raise ArchiveError(f"lookup of {path} failed: {e}", path=path) from e
        sha = meta.get("sha") if isinstance(meta, dict) else None
        return str(sha) if sha else None

    def put_file(self, owner: str, repo: str, path: str, message: str, content: str) -> None:
        url = self._contents_url(owner, repo, path)
        body: dict[str, Any] = {"message": message, "content": content}
        sha = self._existing_sha(url, path)
        if sha:
            body["sha"] = sha
        try:
            self._request(url, method="PUT", body=body)
        except HTTPError as e:
            raise ArchiveError(f"upload of {path} failed: HTTP {e.code}", path=path, status_code=e.code) from e
        except (URLError, OSError, ValueError) as e:
            raise ArchiveError(f"upload of {path} failed: {e}", path=path) from e


class LocalArchive:
    """Writes archive files under a local directory: <root>/<owner>/<repo>/<path>."""

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = Path(root_dir)

    def target(self, owner: str, repo: str, path: str) -> Path:
        return self.root_dir / owner / repo / path

    def put_file(self, owner: str, repo: str, path: str, message: str, content: str) -> None:
        out = self.target(owner, repo, path)
        try:
            payload = base64.b64decode(content, validate=True)
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_bytes(payload)
        except (binascii.Error, OSError) as e:
            raise ArchiveError(f"cannot write {out}: {e}", path=path) from e
