"""TMDB metadata lookups (titles, posters, episode counts).

Metadata is display-only: lookups are cached, and any failure falls back to
what the library unit already knows so progress operations never wait on it.
"""

import logging
import time
from typing import Any, Optional

import requests
from pydantic import BaseModel

from .base_client import BaseAPIClient
from .constants import METADATA_CACHE_TTL_SECONDS, ExternalType, UnitKind
from .models import TrackableUnit

logger = logging.getLogger(__name__)

IMAGE_BASE_URL = "https://image.tmdb.org/t/p"


def poster_url(path: Optional[str], size: str = "w500") -> Optional[str]:
    if not path:
        return None
    return f"{IMAGE_BASE_URL}/{size}{path}"


class MediaSummary(BaseModel):
    """Display data for a library unit."""

    title: str
    image_url: Optional[str] = None
    type: ExternalType
    total_episodes: Optional[int] = None


def _fallback_type(unit: TrackableUnit) -> ExternalType:
    if unit.external_type:
        return unit.external_type
    if unit.kind in (UnitKind.MOVIE, UnitKind.SPECIAL):
        return ExternalType.MOVIE
    return ExternalType.SERIES


class MetadataClient(BaseAPIClient):
    """Client for the TMDB v3 API with an in-memory TTL cache."""

    BASE_URL = "https://api.themoviedb.org/3"

    def __init__(
        self,
        api_key: str,
        base_url: str = BASE_URL,
        cache_ttl_seconds: int = METADATA_CACHE_TTL_SECONDS,
    ):
        """Initialize TMDB client with an API key."""
        super().__init__(base_url=base_url, headers={"Accept": "application/json"})
        self.api_key = (api_key or "").strip()
        self.cache_ttl_seconds = cache_ttl_seconds
        self._cache: dict[str, tuple[float, Any]] = {}
        self._summaries: dict[str, MediaSummary] = {}

    def _request(self, endpoint: str, params: Optional[dict] = None) -> Any:
        """GET an endpoint, serving repeated requests from the cache."""
        query = {"api_key": self.api_key, "language": "en-US"}
        if params:
            query.update(params)

        cache_id = endpoint + "?" + "&".join(f"{k}={v}" for k, v in sorted(query.items()) if k != "api_key")
        cached = self._cache.get(cache_id)
        if cached and time.monotonic() - cached[0] <= self.cache_ttl_seconds:
            return cached[1]

        response = self.session.get(f"{self.base_url}{endpoint}", params=query, timeout=self.timeout)
        self._handle_auth_error(response, "TMDB")
        response.raise_for_status()

        data = response.json()
        self._cache[cache_id] = (time.monotonic(), data)
        return data

    def search(self, query: str) -> list[dict]:
        """Search movies and series; people are filtered out."""
        if not query.strip() or not self.api_key:
            return []
        try:
            data = self._request("/search/multi", {"query": query, "include_adult": "false", "page": "1"})
        except requests.RequestException as e:
            logger.error(f"TMDB search failed for '{query}': {e}")
            return []
        return [item for item in data.get("results", []) if item.get("media_type") in ("movie", "tv")]

    def get_movie(self, movie_id: int) -> dict:
        return self._request(f"/movie/{movie_id}")

    def get_tv(self, tv_id: int) -> dict:
        return self._request(f"/tv/{tv_id}")

    def get_season_episodes(self, tv_id: int, season: int) -> list[int]:
        """Episode numbers of one season, or an empty list if unavailable."""
        if not self.api_key:
            return []
        try:
            data = self._request(f"/tv/{tv_id}/season/{season}")
        except requests.RequestException as e:
            logger.warning(f"Failed to load season {season} of TMDB series {tv_id}: {e}")
            return []
        return sorted(episode["episode_number"] for episode in data.get("episodes", []))

    def get_summary(self, unit: TrackableUnit) -> MediaSummary:
        """Title, poster and episode count for a unit. Never raises."""
        key = f"{unit.origin.value}:{unit.external_type}:{unit.external_id or unit.id}"
        cached = self._summaries.get(key)
        if cached:
            return cached

        local = MediaSummary(title=unit.title, image_url=unit.image_url, type=_fallback_type(unit))
        if not self.api_key or not unit.external_id or not unit.external_type:
            self._summaries[key] = local
            return local

        try:
            if unit.external_type == ExternalType.MOVIE:
                details = self.get_movie(unit.external_id)
                summary = MediaSummary(
                    title=details.get("title") or unit.title,
                    image_url=poster_url(details.get("poster_path")) or unit.image_url,
                    type=ExternalType.MOVIE,
                )
            else:
                details = self.get_tv(unit.external_id)
                summary = MediaSummary(
                    title=details.get("name") or unit.title,
                    image_url=poster_url(details.get("poster_path")) or unit.image_url,
                    type=ExternalType.SERIES,
                    total_episodes=details.get("number_of_episodes"),
                )
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Metadata lookup failed for {unit.title}: {e}")
            return local

        self._summaries[key] = summary
        return summary
