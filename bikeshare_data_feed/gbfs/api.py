from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen
from http.client import HTTPException
import json
import logging

from .errors import FetchError, SchemaError


# Stable data.gouv.fr URL for the Montpellier Velomagg GBFS manifest; it
# redirects to the operator's current gbfs.json.
DEFAULT_MANIFEST_URL = "https://www.data.gouv.fr/fr/datasets/r/732c582d-8815-4892-98fd-4446b7ba13d5"
USER_AGENT = "bikeshare-data-feed/0.1"
DEFAULT_TIMEOUT = 10.0

STATION_STATUS_FEED = "station_status"
STATION_INFORMATION_FEED = "station_information"

FetchJson = Callable[[str], dict[str, Any]]


def fetch_json(url: str, timeout: float = DEFAULT_TIMEOUT) -> dict[str, Any]:
    """GET a JSON document, mapping every transport failure to FetchError."""
    req = Request(url, headers={"User-Agent": USER_AGENT, "Accept": "application/json"})
    try:
        with urlopen(req, timeout=timeout) as resp:
            body = resp.read()
    except HTTPError as e:
        raise FetchError(f"HTTP {e.code} from {url}", url=url, status_code=e.code) from e
    except (URLError, HTTPException, OSError) as e:
        raise FetchError(f"cannot reach {url}: {e}", url=url) from e
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise FetchError(f"invalid JSON from {url}", url=url) from e
    if not isinstance(payload, dict):
        raise SchemaError(f"expected a JSON object from {url}")
    return payload


@dataclass(frozen=True)
class FeedUrls:
    status_url: str
    information_url: str


def manifest_feeds(manifest: dict[str, Any], language: str = "en") -> List[dict[str, Any]]:
    """Return the feed list of a GBFS manifest.

    1.x/2.x nest feeds per language (`data.<lang>.feeds`); 3.x has `data.feeds`.
    The preferred language wins, otherwise the first language listed is used.
    """
    data = manifest.get("data")
    if not isinstance(data, dict):
        raise SchemaError("manifest has no data object")
    if isinstance(data.get("feeds"), list):
        return data["feeds"]
    preferred = data.get(language)
    if isinstance(preferred, dict) and isinstance(preferred.get("feeds"), list):
        return preferred["feeds"]
    localized = [v for v in data.values() if isinstance(v, dict) and isinstance(v.get("feeds"), list)]
    if localized:
        return localized[0]["feeds"]
    raise SchemaError("manifest lists no feeds")


def find_feed_url(feeds: List[dict[str, Any]], name: str) -> str:
    for feed in feeds:
        if isinstance(feed, dict) and feed.get("name") == name and feed.get("url"):
            return str(feed["url"])
    raise SchemaError(f"manifest has no {name} feed")


class FeedDiscoverer:
    """Resolves the manifest URL into the two sub-feed URLs used by a cycle."""

    def __init__(
        self,
        fetch: Optional[FetchJson] = None,
        language: str = "en",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._fetch = fetch or fetch_json
        self._language = language
        self._log = logger or logging.getLogger(__name__)

    def resolve(self, manifest_url: str) -> FeedUrls:
        manifest = self._fetch(manifest_url)
        feeds = manifest_feeds(manifest, self._language)
        urls = FeedUrls(
            status_url=find_feed_url(feeds, STATION_STATUS_FEED),
            information_url=find_feed_url(feeds, STATION_INFORMATION_FEED),
        )
        self._log.debug("resolved status=%s information=%s", urls.status_url, urls.information_url)
        return urls
