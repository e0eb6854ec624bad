"""Tests for snapshot persistence and import/export."""

import json
from datetime import datetime, timezone

import pytest
from watch_tracker.constants import ExternalType, ThemeMode, UnitKind, UnitOrigin
from watch_tracker.errors import ImportFormatError
from watch_tracker.models import AppState, WatchedState
from watch_tracker.seed import SEED_CHRONOLOGY, seed_library
from watch_tracker.stats import compute_stats
from watch_tracker.storage import (
    SnapshotStorage,
    export_json,
    import_state,
    normalize_state,
)

from conftest import T0


def test_load_missing_file_returns_seed(tmp_path):
    """First run starts from the seed chronology with no progress."""
    state = SnapshotStorage(tmp_path / "state.json").load()

    assert len(state.library) == len(SEED_CHRONOLOGY)
    assert all(unit.origin == UnitOrigin.SEED for unit in state.library)
    assert not state.has_local_progress()
    assert state.pending_writes == {}


def test_load_corrupt_file_returns_seed(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")

    state = SnapshotStorage(path).load()
    assert len(state.library) == len(SEED_CHRONOLOGY)


def test_load_snapshot_without_library_returns_seed(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"settings": {"theme": "light"}}), encoding="utf-8")

    state = SnapshotStorage(path).load()
    assert len(state.library) == len(SEED_CHRONOLOGY)


def test_save_and_load(tmp_path):
    """A saved snapshot loads back unchanged."""
    storage = SnapshotStorage(tmp_path / "nested" / "state.json")
    state = AppState(
        library=seed_library(at=T0),
        movie_progress={"seed-thor": WatchedState.mark(True, T0)},
    )

    storage.save(state)
    assert storage.load() == state

    raw = json.loads((tmp_path / "nested" / "state.json").read_text(encoding="utf-8"))
    assert "movieProgress" in raw
    assert raw["library"][0]["orderIndex"] == 1
    assert not (tmp_path / "nested" / "state.json.tmp").exists()


def test_reset(tmp_path):
    storage = SnapshotStorage(tmp_path / "state.json")
    storage.save(AppState(library=seed_library(at=T0)[:2]))

    state = storage.reset()
    assert len(state.library) == len(SEED_CHRONOLOGY)
    assert len(storage.load().library) == len(SEED_CHRONOLOGY)


def test_normalize_legacy_snapshot():
    """Older snapshots using provider-specific field names are migrated."""
    raw = {
        "settings": {"tmdbApiKey": " abc ", "theme": "light"},
        "library": [
            {
                "id": "tmdb-1",
                "source": "tmdb",
                "kind": "tv_season",
                "tmdbType": "tv",
                "tmdbId": 1403,
                "season": 2,
                "title": "Agents of S.H.I.E.L.D.",
                "orderIndex": 5,
                "addedAt": "2023-05-01T10:00:00Z",
            },
            {
                "id": "custom-1",
                "source": "custom",
                "customType": "movie",
                "title": "Short film",
                "orderIndex": 2,
            },
        ],
        "tvProgress": {
            "tmdb-1": {"episodes": {"2:1": {"watched": True, "watchedAt": "2023-05-02T10:00:00Z"}}},
        },
        "pendingSync": {
            "tv:1403:s2:e1": {"itemKey": "tv:1403:s2:e1", "watched": True, "updatedAt": "2023-05-02T10:00:00Z"},
        },
    }

    state = normalize_state(raw)

    assert state.settings.api_key == "abc"
    assert state.settings.theme == ThemeMode.LIGHT
    assert [unit.id for unit in state.library] == ["custom-1", "tmdb-1"]
    assert [unit.order_index for unit in state.library] == [1, 2]

    series = state.get_unit("tmdb-1")
    assert series.origin == UnitOrigin.SEARCH
    assert series.kind == UnitKind.SERIES
    assert series.external_type == ExternalType.SERIES
    assert series.external_id == 1403
    assert series.created_at.year == 2023

    custom = state.get_unit("custom-1")
    assert custom.kind == UnitKind.MOVIE
    assert custom.external_id is None

    assert state.episode_progress["tmdb-1"].episodes["2:1"].watched
    assert state.pending_writes["tv:1403:s2:e1"].remote_key == "tv:1403:s2:e1"


def test_normalize_fills_missing_fields():
    state = normalize_state({"library": [{"id": "x"}]})

    unit = state.library[0]
    assert unit.title == "Item 1"
    assert unit.order_index == 1
    assert unit.kind == UnitKind.MOVIE
    assert state.settings.theme == ThemeMode.DARK


def test_load_naive_timestamps_as_utc(tmp_path):
    """Offset-less legacy timestamps mix with defaulted ones without breaking stats."""
    path = tmp_path / "state.json"
    path.write_text(
        json.dumps(
            {
                "library": [
                    {"id": "a", "title": "Old", "lastUpdated": "2024-01-01T00:00:00"},
                    {"id": "b", "title": "New"},
                ],
                "movieProgress": {"a": {"watched": True, "watchedAt": "2024-01-01T00:00:00"}},
            }
        ),
        encoding="utf-8",
    )

    state = SnapshotStorage(path).load()

    old = state.get_unit("a")
    assert old.last_updated_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert state.movie_progress["a"].watched_at.tzinfo is not None

    stats = compute_stats(state)
    assert stats.last_activity.tzinfo is not None
    assert stats.last_activity == state.get_unit("b").last_updated_at


def test_export_blanks_api_key():
    state = AppState(library=seed_library(at=T0))
    state = state.model_copy(update={"settings": state.settings.model_copy(update={"api_key": "secret"})})

    exported = json.loads(export_json(state))
    assert exported["version"] == 2
    assert exported["state"]["settings"]["apiKey"] == ""
    assert "exportedAt" in exported

    exported = json.loads(export_json(state, include_key=True))
    assert exported["state"]["settings"]["apiKey"] == "secret"


def test_export_import_keeps_progress():
    """Importing an export restores library and progress."""
    state = AppState(
        library=seed_library(at=T0),
        movie_progress={"seed-iron-man": WatchedState.mark(True, T0)},
    )

    imported = import_state(export_json(state))
    assert imported.library == state.library
    assert imported.movie_progress == state.movie_progress


def test_import_version_1():
    content = json.dumps({"version": 1, "state": {"library": [{"id": "a", "title": "A", "orderIndex": 1}]}})
    assert import_state(content).library[0].id == "a"


@pytest.mark.parametrize(
    "content",
    [
        "not json",
        json.dumps([1, 2, 3]),
        json.dumps({"version": 2}),
        json.dumps({"version": 99, "state": {"library": []}}),
        json.dumps({"version": True, "state": {"library": []}}),
        json.dumps({"version": "2", "state": {"library": []}}),
        json.dumps({"version": 2, "state": {"library": "nope"}}),
        json.dumps({"version": 2, "state": {"library": [{"title": "no id"}]}}),
        json.dumps({"version": 2, "state": {"library": [{"id": "a", "kind": "opera"}]}}),
    ],
)
def test_import_invalid(content):
    """Invalid payloads raise ImportFormatError and never a partial state."""
    with pytest.raises(ImportFormatError) as exc_info:
        import_state(content)
    assert str(exc_info.value).startswith("Invalid export format.")
