"""
Minimal TheTVDB v4 client.

Covers exactly what the renamer needs:
- login with an API key (and optional subscriber PIN)
- series search
- absolute episode number -> (season, in-season number, title)

GET responses are cached on disk as JSON for a configurable number of minutes.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

logger = logging.getLogger(__name__)

TVDB_API_BASE = "https://api4.thetvdb.com/v4"
DEFAULT_LANGUAGE = "eng"
DEFAULT_TIMEOUT = 10.0

# Retry settings
TVDB_MAX_RETRIES = 3
TVDB_RETRY_DELAY = 1.0  # seconds, doubled on every attempt


class TVDBError(Exception):
    """Raised when a TVDB lookup cannot be completed."""


class TVDBAuthError(TVDBError):
    """Raised when TVDB rejects our credentials."""


@dataclass
class Series:
    tvdb_id: str
    name: str
    year: str = ""
    translations: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Series:
        translations = data.get("translations") or {}
        return cls(
            tvdb_id=str(data.get("tvdb_id") or data.get("id") or ""),
            name=str(data.get("name") or ""),
            year=str(data.get("year") or ""),
            translations={str(k): str(v) for k, v in translations.items() if v},
        )

    def display_name(self, language: str = DEFAULT_LANGUAGE) -> str:
        """Series name in the preferred language, falling back to the primary name."""
        return self.translations.get(language) or self.name


@dataclass(frozen=True)
class EpisodeInfo:
    season_number: int
    seasonal_episode_number: int
    title: str


# ─────────────────────────── Response Cache ───────────────────────────


def get_cache_path(cache_dir: Path, cache_key: str) -> Path:
    """Get the cache file path for a given key."""
    cache_dir.mkdir(parents=True, exist_ok=True)
    key_hash = hashlib.md5(cache_key.encode()).hexdigest()[:16]
    return cache_dir / f"{key_hash}.json"


def get_cached_response(cache_dir: Path, cache_key: str, expiration_minutes: int) -> Any | None:
    """Get cached response if it is younger than expiration_minutes."""
    try:
        cache_path = get_cache_path(cache_dir, cache_key)
    except OSError:
        return None
    if not cache_path.exists():
        return None

    try:
        with open(cache_path) as f:
            cached = json.load(f)
    except (OSError, json.JSONDecodeError):
        return None

    age_minutes = (time.time() - cached.get("_cached_at", 0)) / 60
    if age_minutes < expiration_minutes:
        return cached.get("data")
    return None


def save_to_cache(cache_dir: Path, cache_key: str, data: Any) -> None:
    try:
        cache_path = get_cache_path(cache_dir, cache_key)
        with open(cache_path, "w") as f:
            json.dump({"_cached_at": time.time(), "data": data}, f)
    except OSError as e:
        logger.debug("Cache write failed for %s: %s", cache_key, e)


def cleanup_expired_cache(cache_dir: Path, max_age_hours: int = 24) -> int:
    """
    Remove cache files older than max_age_hours.
    Returns the number of files removed.
    """
    if not cache_dir.exists():
        return 0

    cleaned = 0
    max_age_seconds = max_age_hours * 3600
    now = time.time()

    for cache_file in cache_dir.glob("*.json"):
        try:
            if now - cache_file.stat().st_mtime > max_age_seconds:
                cache_file.unlink()
                cleaned += 1
        except OSError as e:
            logger.debug("Could not remove cache file %s: %s", cache_file, e)

    return cleaned


# ─────────────────────────── Client ───────────────────────────


class TVDBClient:
    """Blocking TVDB v4 client. One request at a time, no concurrency."""

    def __init__(
        self,
        api_key: str,
        pin: str | None = None,
        base_url: str = TVDB_API_BASE,
        language: str = DEFAULT_LANGUAGE,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = TVDB_MAX_RETRIES,
        retry_delay: float = TVDB_RETRY_DELAY,
        cache_dir: Path | None = None,
        cache_expiration: int = 0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_key = api_key
        self.pin = pin
        self.base_url = base_url.rstrip("/")
        self.language = language
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.cache_dir = cache_dir
        self.cache_expiration = cache_expiration
        self.token: str | None = None
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> TVDBClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -- transport ---------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Perform a request with retry/backoff and return the decoded JSON body.

        Timeouts, 429 and 5xx are retried; other 4xx fail immediately.
        """
        url = f"{self.base_url}{path}"
        cache_dir = self.cache_dir
        use_cache = method == "GET" and cache_dir is not None and self.cache_expiration > 0
        cache_key = f"{url}?{json.dumps(params or {}, sort_keys=True)}:{self.language}"

        if use_cache and cache_dir is not None:
            cached = get_cached_response(cache_dir, cache_key, self.cache_expiration)
            if isinstance(cached, dict):
                logger.debug("Cache hit: %s", cache_key)
                return cached

        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            delay = self.retry_delay * (2**attempt)
            try:
                resp = self._client.request(
                    method, url, params=params, json=payload, headers=self._headers()
                )
                resp.raise_for_status()
                data = resp.json()
                if not isinstance(data, dict):
                    raise TVDBError(f"Unexpected response from {path}")
                if use_cache and cache_dir is not None:
                    save_to_cache(cache_dir, cache_key, data)
                return data

            except httpx.TimeoutException as e:
                last_error = e
                logger.debug(
                    "TVDB timeout (attempt %d/%d) for %s", attempt + 1, self.max_retries, path
                )

            except httpx.HTTPStatusError as e:
                last_error = e
                status = e.response.status_code
                if status == 401:
                    raise TVDBAuthError(
                        "TVDB rejected the credentials (401 Unauthorized)"
                    ) from e
                if 400 <= status < 500 and status != 429:
                    raise TVDBError(f"TVDB request {path} failed with HTTP {status}") from e
                logger.debug(
                    "TVDB HTTP %d (attempt %d/%d) for %s",
                    status,
                    attempt + 1,
                    self.max_retries,
                    path,
                )

            except httpx.HTTPError as e:
                last_error = e
                logger.debug(
                    "TVDB error (attempt %d/%d) for %s: %s",
                    attempt + 1,
                    self.max_retries,
                    path,
                    e,
                )

            except ValueError as e:
                raise TVDBError(f"TVDB returned invalid JSON for {path}") from e

            if attempt < self.max_retries - 1:
                time.sleep(delay)

        raise TVDBError(
            f"TVDB request {path} failed after {self.max_retries} attempts: {last_error}"
        )

    # -- API ---------------------------------------------------------------

    def login(self) -> None:
        payload: dict[str, Any] = {"apikey": self.api_key}
        if self.pin:
            payload["pin"] = self.pin

        try:
            data = self._request("POST", "/login", payload=payload)
        except TVDBAuthError:
            raise
        except TVDBError as e:
            raise TVDBAuthError(f"TVDB login failed: {e}") from e

        token = (data.get("data") or {}).get("token")
        if not token:
            raise TVDBAuthError("TVDB login response did not contain a token")
        self.token = token
        logger.info("Logged in to TVDB")

    def search_series(self, query: str) -> list[Series]:
        data = self._request("GET", "/search", params={"query": query, "type": "series"})
        results = data.get("data") or []
        series = [Series.from_api(item) for item in results if isinstance(item, dict)]
        logger.info("Series search %r returned %d result(s)", query, len(series))
        return series

    def find_episode_id(self, series: Series, absolute_number: int) -> int:
        """Resolve an absolute episode number to a TVDB episode id."""
        data = self._request(
            "GET",
            f"/series/{series.tvdb_id}/episodes/absolute",
            params={"page": "1", "season": "1", "episodeNumber": str(absolute_number)},
        )
        episodes = (data.get("data") or {}).get("episodes") or []
        if not episodes:
            raise TVDBError(f"No episodes found for absolute episode {absolute_number}")
        try:
            return int(episodes[0]["id"])
        except (KeyError, TypeError, ValueError) as e:
            raise TVDBError(
                f"Malformed episode record for absolute episode {absolute_number}"
            ) from e

    def get_episode_info(self, episode_id: int) -> EpisodeInfo:
        data = self._request(
            "GET", f"/episodes/{episode_id}/extended", params={"meta": "translations"}
        )
        ep = data.get("data") or {}

        title = ""
        translations = (ep.get("translations") or {}).get("nameTranslations") or []
        for t in translations:
            if t.get("language") == self.language:
                title = t.get("name") or ""
                break

        seasons = ep.get("seasons") or []
        if seasons:
            season_number = seasons[0].get("number")
        else:
            season_number = ep.get("seasonNumber")

        number = ep.get("number")
        if season_number is None or number is None:
            raise TVDBError(f"Episode {episode_id} is missing season/episode numbers")

        try:
            return EpisodeInfo(
                season_number=int(season_number),
                seasonal_episode_number=int(number),
                title=title,
            )
        except (TypeError, ValueError) as e:
            raise TVDBError(f"Episode {episode_id} has non-numeric season/episode numbers") from e

    def lookup_episode(self, series: Series, absolute_number: int) -> EpisodeInfo:
        episode_id = self.find_episode_id(series, absolute_number)
        info = self.get_episode_info(episode_id)
        logger.debug(
            "Absolute %d -> S%02dE%d %r",
            absolute_number,
            info.season_number,
            info.seasonal_episode_number,
            info.title,
        )
        return info
