"""Tests for state transitions."""

from datetime import timedelta

import pytest
from watch_tracker.constants import ExternalType, ThemeMode, UnitKind, UnitOrigin
from watch_tracker.errors import DuplicateUnitError, UnknownUnitError
from watch_tracker.models import AppState, EpisodeProgressSet, WatchedState
from watch_tracker.pending import make_pending_write
from watch_tracker.reducer import (
    AddCustomUnit,
    AddExternalUnit,
    ApplyReconciledProgress,
    ClearEpisodeProgress,
    ClearPendingWrites,
    MarkPendingWrite,
    RemoveUnit,
    ReorderLibrary,
    ReplaceState,
    SetApiKey,
    SetEpisodesWatchedUpTo,
    SetEpisodeWatched,
    SetExternalIdentity,
    SetMovieWatched,
    SetSeasonWatched,
    SetSeriesWatched,
    SetTheme,
    Transition,
    reduce,
)
from watch_tracker.seed import seed_library

from conftest import T0

T1 = T0 + timedelta(hours=1)


@pytest.fixture
def state():
    return AppState(library=seed_library(at=T0))


def _order(state):
    return [unit.id for unit in state.library]


def _indexes(state):
    return [unit.order_index for unit in state.library]


def test_reduce_does_not_mutate_input(state):
    """The previous state is left untouched."""
    new_state = reduce(state, SetMovieWatched(unit_id="seed-thor", watched=True, at=T1))

    assert "seed-thor" not in state.movie_progress
    assert new_state.movie_progress["seed-thor"].watched


def test_set_api_key_and_theme(state):
    state = reduce(state, SetApiKey(api_key="  key-123 ", at=T1))
    state = reduce(state, SetTheme(theme=ThemeMode.LIGHT, at=T1))

    assert state.settings.api_key == "key-123"
    assert state.settings.theme == ThemeMode.LIGHT


def test_add_external_movie(state):
    action = AddExternalUnit(external_type=ExternalType.MOVIE, external_id=1724, title="Hulk", at=T1)
    state = reduce(state, action)

    unit = state.library[-1]
    assert unit.id == action.unit_id
    assert unit.id.startswith("search-")
    assert unit.origin == UnitOrigin.SEARCH
    assert unit.kind == UnitKind.MOVIE
    assert unit.order_index == len(state.library)
    assert unit.created_at == T1


def test_add_external_series_defaults(state):
    """Series get season 1 and a placeholder title when none is given."""
    state = reduce(state, AddExternalUnit(external_type=ExternalType.SERIES, external_id=1403, at=T1))

    unit = state.library[-1]
    assert unit.kind == UnitKind.SERIES
    assert unit.season == 1
    assert unit.title == "TMDB #1403"
    assert unit.is_series_scoped


def test_add_custom_units(state):
    state = reduce(state, AddCustomUnit(title="Short film", at=T1))
    state = reduce(state, AddCustomUnit(title="Web series", custom_type=ExternalType.SERIES, at=T1))

    film, web_series = state.library[-2:]
    assert film.origin == UnitOrigin.CUSTOM
    assert film.kind == UnitKind.SPECIAL
    assert film.external_id is None
    assert web_series.kind == UnitKind.SERIES
    assert web_series.season == 1
    assert _indexes(state) == list(range(1, len(state.library) + 1))


def test_add_with_existing_id_is_rejected(state):
    """Unit ids are never reused, even when the caller supplies one."""
    with pytest.raises(DuplicateUnitError):
        reduce(state, AddCustomUnit(title="Thor again", unit_id="seed-thor", at=T1))
    with pytest.raises(DuplicateUnitError):
        reduce(state, AddExternalUnit(external_type=ExternalType.MOVIE, external_id=10195, unit_id="seed-thor", at=T1))

    assert len(state.library) == 10


def test_remove_cascades_progress(state):
    """Removing a unit drops its progress and keeps the order dense."""
    state = reduce(state, SetMovieWatched(unit_id="seed-captain-marvel", watched=True, at=T1))
    state = reduce(state, SetEpisodeWatched(unit_id="seed-agent-carter-s1", season=1, episode=1, watched=True, at=T1))
    state = reduce(state, SetSeriesWatched(unit_id="seed-agent-carter-s1", watched=True, at=T1))

    state = reduce(state, RemoveUnit(unit_id="seed-agent-carter-s1", at=T1))
    state = reduce(state, RemoveUnit(unit_id="seed-captain-marvel", at=T1))

    assert state.find_unit("seed-agent-carter-s1") is None
    assert "seed-agent-carter-s1" not in state.episode_progress
    assert "seed-agent-carter-s1" not in state.series_progress
    assert "seed-captain-marvel" not in state.movie_progress
    assert _indexes(state) == list(range(1, len(state.library) + 1))


def test_remove_unknown_unit(state):
    with pytest.raises(UnknownUnitError):
        reduce(state, RemoveUnit(unit_id="missing", at=T1))


def test_reorder_library(state):
    """Listed units come first; the rest keep their relative order."""
    state = reduce(state, ReorderLibrary(unit_ids=["seed-thor", "seed-iron-man", "missing", "seed-thor"], at=T1))

    order = _order(state)
    assert order[:2] == ["seed-thor", "seed-iron-man"]
    assert order[2:4] == ["seed-captain-america-first-avenger", "seed-agent-carter-s1"]
    assert len(order) == len(set(order)) == 10
    assert _indexes(state) == list(range(1, 11))
    assert state.get_unit("seed-thor").last_updated_at == T1
    assert state.get_unit("seed-avengers").last_updated_at == T0


def test_movie_and_series_watched(state):
    state = reduce(state, SetMovieWatched(unit_id="seed-iron-man", watched=True, at=T1))
    assert state.movie_progress["seed-iron-man"] == WatchedState(watched=True, watched_at=T1)
    assert state.get_unit("seed-iron-man").last_updated_at == T1

    state = reduce(state, SetMovieWatched(unit_id="seed-iron-man", watched=False, at=T1))
    assert state.movie_progress["seed-iron-man"] == WatchedState(watched=False)

    state = reduce(state, SetSeriesWatched(unit_id="seed-agent-carter-s2", watched=True, at=T1))
    assert state.series_progress["seed-agent-carter-s2"].watched


def test_progress_for_unknown_unit(state):
    with pytest.raises(UnknownUnitError):
        reduce(state, SetMovieWatched(unit_id="missing", watched=True, at=T1))
    with pytest.raises(UnknownUnitError):
        reduce(state, SetEpisodeWatched(unit_id="missing", season=1, episode=1, watched=True, at=T1))


def test_episode_transitions(state):
    unit_id = "seed-agent-carter-s1"
    state = reduce(state, SetEpisodeWatched(unit_id=unit_id, season=1, episode=2, watched=True, at=T1))
    progress = state.episode_progress[unit_id]
    assert progress.episodes["1:2"].watched
    assert progress.last_touched_at == T1

    state = reduce(state, SetSeasonWatched(unit_id=unit_id, season=1, episodes=[1, 2, 3], watched=True, at=T1))
    assert state.episode_progress[unit_id].watched_count() == 3

    state = reduce(state, SetSeasonWatched(unit_id=unit_id, season=1, episodes=[1, 2, 3], watched=False, at=T1))
    assert state.episode_progress[unit_id].watched_count() == 0


def test_episodes_watched_up_to(state):
    """Episodes after the target are explicitly marked unwatched."""
    unit_id = "seed-agent-carter-s1"
    state = reduce(state, SetSeasonWatched(unit_id=unit_id, season=1, episodes=list(range(1, 9)), watched=True, at=T0))
    state = reduce(
        state,
        SetEpisodesWatchedUpTo(unit_id=unit_id, season=1, target_episode=3, episodes=list(range(1, 9)), at=T1),
    )

    episodes = state.episode_progress[unit_id].episodes
    assert [episodes[f"1:{n}"].watched for n in range(1, 9)] == [True] * 3 + [False] * 5
    assert episodes["1:4"].watched_at is None


def test_clear_episode_progress(state):
    unit_id = "seed-agent-carter-s1"
    state = reduce(state, SetEpisodeWatched(unit_id=unit_id, season=1, episode=1, watched=True, at=T0))
    state = reduce(state, ClearEpisodeProgress(unit_id=unit_id, at=T1))

    assert state.episode_progress[unit_id] == EpisodeProgressSet(episodes={}, last_touched_at=T1)


def test_pending_writes_newest_intent_wins(state):
    state = reduce(state, MarkPendingWrite(pending=make_pending_write("movie:1726", True, T0, T0)))
    state = reduce(state, MarkPendingWrite(pending=make_pending_write("movie:1726", False, T1, T1)))
    state = reduce(state, MarkPendingWrite(pending=make_pending_write("movie:10195", True, T1, T1)))

    assert len(state.pending_writes) == 2
    assert state.pending_writes["movie:1726"].watched is False
    assert state.pending_writes["movie:1726"].watched_at is None

    state = reduce(state, ClearPendingWrites(keys=["movie:1726", "unknown"]))
    assert list(state.pending_writes) == ["movie:10195"]


def test_apply_reconciled_progress_replaces_progress(state):
    """Reconciled progress replaces all three maps and empties the queue."""
    state = reduce(state, SetMovieWatched(unit_id="seed-thor", watched=True, at=T0))
    state = reduce(state, MarkPendingWrite(pending=make_pending_write("movie:10195", True, T0, T0)))

    state = reduce(
        state,
        ApplyReconciledProgress(movie_progress={"seed-iron-man": WatchedState.mark(True, T1)}, at=T1),
    )

    assert list(state.movie_progress) == ["seed-iron-man"]
    assert state.series_progress == {}
    assert state.episode_progress == {}
    assert state.pending_writes == {}
    assert len(state.library) == 10


def test_set_external_identity(state):
    state = reduce(
        state,
        SetExternalIdentity(unit_id="seed-consultant", external_type=ExternalType.MOVIE, external_id=76122, at=T1),
    )
    unit = state.get_unit("seed-consultant")
    assert unit.external_id == 76122
    assert unit.last_updated_at == T1

    with pytest.raises(UnknownUnitError):
        reduce(state, SetExternalIdentity(unit_id="missing", external_type=ExternalType.MOVIE, external_id=1))


def test_replace_state(state):
    replacement = AppState(library=seed_library(at=T1)[:3])
    assert reduce(state, ReplaceState(state=replacement, at=T1)) == replacement


class Rewind(Transition):
    type: str = "rewind"


def test_unknown_action(state):
    with pytest.raises(TypeError):
        reduce(state, Rewind(at=T1))


def test_mark_until_is_not_additive(state):
    unit_id = "seed-agent-carter-s1"
    episodes = [1, 2, 3, 4, 5]
    state = reduce(state, SetEpisodesWatchedUpTo(unit_id=unit_id, season=1, target_episode=3, episodes=episodes, at=T0))
    state = reduce(state, SetEpisodesWatchedUpTo(unit_id=unit_id, season=1, target_episode=1, episodes=episodes, at=T1))

    watched = {key for key, value in state.episode_progress[unit_id].episodes.items() if value.watched}
    assert watched == {"1:1"}


def test_repeated_toggle_only_touches_owner(state):
    """Retrying an identical write only bumps the owning unit."""
    state = reduce(state, SetMovieWatched(unit_id="seed-thor", watched=True, at=T0))
    before = {unit.id: unit.last_updated_at for unit in state.library}

    state = reduce(state, SetMovieWatched(unit_id="seed-thor", watched=True, at=T1))

    after = {unit.id: unit.last_updated_at for unit in state.library}
    changed = {unit_id for unit_id in after if after[unit_id] != before[unit_id]}
    assert changed == {"seed-thor"}
    assert state.movie_progress["seed-thor"].watched


def test_order_stays_dense_after_mixed_edits(state):
    state = reduce(state, AddCustomUnit(title="Extra", at=T1))
    state = reduce(state, RemoveUnit(unit_id="seed-iron-man", at=T1))
    state = reduce(state, ReorderLibrary(unit_ids=[state.library[-1].id, "seed-thor"], at=T1))
    state = reduce(state, RemoveUnit(unit_id="seed-captain-america-first-avenger", at=T1))

    assert _indexes(state) == list(range(1, len(state.library) + 1))
