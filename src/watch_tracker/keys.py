"""Remote identity keys for trackable units.

The same logical unit always maps to the same remote row: keys depend only on
the external id (when known) or the local unit id, never on title or order.
"""

import re
from typing import Optional

from .models import TrackableUnit

_REMOTE_EPISODE_RE = re.compile(r":s(\d+):e(\d+)$")


def movie_key(unit: TrackableUnit) -> str:
    if unit.external_id:
        return f"movie:{unit.external_id}"
    return f"local:{unit.id}"


def series_key(unit: TrackableUnit) -> str:
    if unit.external_id:
        return f"tv:{unit.external_id}"
    return f"local:{unit.id}:series"


def episode_key_prefix(unit: TrackableUnit) -> str:
    if unit.external_id:
        return f"tv:{unit.external_id}:s"
    return f"local:{unit.id}:s"


def episode_key(unit: TrackableUnit, season: int, episode: int) -> str:
    return f"{episode_key_prefix(unit)}{season}:e{episode}"


def parse_remote_episode_key(item_key: str) -> Optional[tuple[int, int]]:
    """Extract (season, episode) from a remote episode key."""
    match = _REMOTE_EPISODE_RE.search(item_key)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def local_episode_key(season: int, episode: int) -> str:
    """Key used inside EpisodeProgressSet.episodes."""
    return f"{season}:{episode}"


def parse_local_episode_key(key: str) -> tuple[int, int]:
    season, episode = key.split(":", 1)
    return int(season), int(episode)
