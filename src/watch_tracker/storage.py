"""Durable JSON snapshot of the application state, plus import/export."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from .constants import EXPORT_VERSION, SUPPORTED_IMPORT_VERSIONS
from .errors import ImportFormatError
from .models import AppState, ExportPayload, now_utc
from .seed import seed_library

logger = logging.getLogger(__name__)

# Older snapshots used the metadata provider's vocabulary
LEGACY_KINDS = {"tv_season": "series", "tv_episode": "episode", "tv_range": "episode_range"}
LEGACY_ORIGINS = {"tmdb": "search"}
LEGACY_EXTERNAL_TYPES = {"tv": "series"}


def default_state() -> AppState:
    """Fresh state with the seed library and no progress."""
    return AppState(library=seed_library())


def _first(raw: dict, *names: str) -> Any:
    """Return the first non-None value among several candidate keys."""
    for name in names:
        value = raw.get(name)
        if value is not None:
            return value
    return None


def _normalize_unit(raw: dict, index: int) -> dict:
    external_type = _first(raw, "externalType", "external_type", "tmdbType", "customType")
    external_type = LEGACY_EXTERNAL_TYPES.get(external_type, external_type)

    kind = _first(raw, "kind")
    kind = LEGACY_KINDS.get(kind, kind)
    if kind is None:
        kind = "series" if external_type == "series" else "movie"

    origin = _first(raw, "origin", "source") or "seed"
    origin = LEGACY_ORIGINS.get(origin, origin)

    now = now_utc()
    return {
        "id": raw["id"],
        "origin": origin,
        "kind": kind,
        "externalType": external_type,
        "externalId": _first(raw, "externalId", "external_id", "tmdbId"),
        "season": raw.get("season"),
        "episode": raw.get("episode"),
        "rangeStart": _first(raw, "rangeStart", "range_start"),
        "rangeEnd": _first(raw, "rangeEnd", "range_end"),
        "title": raw.get("title") or f"Item {index + 1}",
        "imageUrl": _first(raw, "imageUrl", "image_url"),
        "note": raw.get("note"),
        "orderIndex": _first(raw, "orderIndex", "order_index") or index + 1,
        "createdAt": _first(raw, "createdAt", "created_at", "addedAt") or now,
        "lastUpdatedAt": _first(raw, "lastUpdatedAt", "last_updated_at", "lastUpdated") or now,
    }


def _normalize_pending(raw: dict) -> dict:
    pending = {}
    for key, entry in raw.items():
        pending[key] = {
            "remoteKey": _first(entry, "remoteKey", "remote_key", "itemKey") or key,
            "watched": bool(entry.get("watched")),
            "watchedAt": _first(entry, "watchedAt", "watched_at"),
            "updatedAt": _first(entry, "updatedAt", "updated_at") or now_utc(),
        }
    return pending


def normalize_state(raw: dict) -> AppState:
    """Validate a raw snapshot dict, filling defaults and mapping legacy fields.

    Raises ValueError/KeyError/TypeError when the payload cannot be salvaged.
    """
    library = raw.get("library")
    if not isinstance(library, list):
        raise ValueError("library is missing or not a list")

    settings = raw.get("settings") or {}
    theme = settings.get("theme")
    normalized = {
        "settings": {
            "apiKey": _first(settings, "apiKey", "api_key", "tmdbApiKey") or "",
            "theme": "light" if theme == "light" else "dark",
        },
        "library": [_normalize_unit(item, index) for index, item in enumerate(library)],
        "movieProgress": _first(raw, "movieProgress", "movie_progress") or {},
        "seriesProgress": _first(raw, "seriesProgress", "series_progress") or {},
        "episodeProgress": _first(raw, "episodeProgress", "episode_progress", "tvProgress") or {},
        "pendingWrites": _normalize_pending(_first(raw, "pendingWrites", "pending_writes", "pendingSync") or {}),
    }
    state = AppState.model_validate(normalized)

    # Re-derive a dense 1..N order in case the snapshot had gaps or duplicates
    library = [
        unit.model_copy(update={"order_index": position})
        for position, unit in enumerate(state.library, start=1)
    ]
    return state.model_copy(update={"library": library})


class SnapshotStorage:
    """Reads and writes the single state snapshot file."""

    def __init__(self, path: Path):
        """Initialize storage with the snapshot file path."""
        self.path = Path(path)

    def load(self) -> AppState:
        """Load state, falling back to the seed state when missing or corrupt."""
        if not self.path.exists():
            logger.info(f"No state snapshot at {self.path}, starting from seed library")
            return default_state()

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("snapshot is not an object")
            state = normalize_state(raw)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to load state snapshot {self.path}, using seed library: {e}")
            return default_state()

        logger.debug(f"Loaded state snapshot with {len(state.library)} library items")
        return state

    def save(self, state: AppState) -> None:
        """Write the snapshot atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        data = state.model_dump(mode="json", by_alias=True)
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)
        logger.debug(f"State saved to {self.path}")

    def reset(self) -> AppState:
        """Replace the snapshot with the seed state."""
        state = default_state()
        self.save(state)
        logger.info("State reset to seed library")
        return state


def export_state(state: AppState, include_key: bool = False) -> ExportPayload:
    """Build an export payload, blanking the API key unless asked to keep it."""
    settings = state.settings
    if not include_key:
        settings = settings.model_copy(update={"api_key": ""})
    return ExportPayload(version=EXPORT_VERSION, state=state.model_copy(update={"settings": settings}))


def export_json(state: AppState, include_key: bool = False) -> str:
    return export_state(state, include_key).model_dump_json(by_alias=True, indent=2)


def import_state(content: str) -> AppState:
    """Parse an export file. Raises ImportFormatError on any invalid payload."""
    try:
        parsed: Optional[Any] = json.loads(content)
    except ValueError as e:
        raise ImportFormatError(f"Not valid JSON: {e}") from e

    if not isinstance(parsed, dict) or not isinstance(parsed.get("state"), dict):
        raise ImportFormatError("Missing state.")
    version = parsed.get("version")
    # JSON true would otherwise compare equal to 1
    if isinstance(version, bool) or not isinstance(version, int) or version not in SUPPORTED_IMPORT_VERSIONS:
        raise ImportFormatError(f"Unsupported version: {version!r}.")

    try:
        return normalize_state(parsed["state"])
    except ValidationError as e:
        raise ImportFormatError(f"{e.error_count()} invalid field(s).") from e
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise ImportFormatError(str(e)) from e
