"""State transitions.

Every change to AppState goes through ``reduce(state, action)``. Actions carry
their own timestamp and any generated ids, so the function is deterministic and
never touches the clock, storage or network.
"""

import uuid
from datetime import datetime
from typing import Annotated, Callable, Literal, Optional, Union

from pydantic import BaseModel, Field

from .constants import ExternalType, ThemeMode, UnitKind, UnitOrigin
from .errors import DuplicateUnitError
from .keys import local_episode_key
from .models import (
    AppState,
    EpisodeProgressSet,
    PendingWrite,
    TrackableUnit,
    WatchedState,
    now_utc,
)


def new_unit_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class Transition(BaseModel):
    """Base for all actions."""

    at: datetime = Field(default_factory=now_utc)


class SetApiKey(Transition):
    type: Literal["set_api_key"] = "set_api_key"
    api_key: str


class SetTheme(Transition):
    type: Literal["set_theme"] = "set_theme"
    theme: ThemeMode


class AddExternalUnit(Transition):
    type: Literal["add_external_unit"] = "add_external_unit"
    external_type: ExternalType
    external_id: int
    title: Optional[str] = None
    image_url: Optional[str] = None
    unit_id: str = Field(default_factory=lambda: new_unit_id("search"))


class AddCustomUnit(Transition):
    type: Literal["add_custom_unit"] = "add_custom_unit"
    title: str
    custom_type: ExternalType = ExternalType.MOVIE
    image_url: Optional[str] = None
    unit_id: str = Field(default_factory=lambda: new_unit_id("custom"))


class RemoveUnit(Transition):
    type: Literal["remove_unit"] = "remove_unit"
    unit_id: str


class ReorderLibrary(Transition):
    type: Literal["reorder_library"] = "reorder_library"
    unit_ids: list[str]


class SetMovieWatched(Transition):
    type: Literal["set_movie_watched"] = "set_movie_watched"
    unit_id: str
    watched: bool


class SetSeriesWatched(Transition):
    type: Literal["set_series_watched"] = "set_series_watched"
    unit_id: str
    watched: bool


class SetEpisodeWatched(Transition):
    type: Literal["set_episode_watched"] = "set_episode_watched"
    unit_id: str
    season: int
    episode: int
    watched: bool


class SetSeasonWatched(Transition):
    type: Literal["set_season_watched"] = "set_season_watched"
    unit_id: str
    season: int
    episodes: list[int]
    watched: bool


class SetEpisodesWatchedUpTo(Transition):
    type: Literal["set_episodes_watched_up_to"] = "set_episodes_watched_up_to"
    unit_id: str
    season: int
    target_episode: int
    episodes: list[int]


class ClearEpisodeProgress(Transition):
    type: Literal["clear_episode_progress"] = "clear_episode_progress"
    unit_id: str


class MarkPendingWrite(Transition):
    type: Literal["mark_pending_write"] = "mark_pending_write"
    pending: PendingWrite


class ClearPendingWrites(Transition):
    type: Literal["clear_pending_writes"] = "clear_pending_writes"
    keys: list[str]


class ApplyReconciledProgress(Transition):
    type: Literal["apply_reconciled_progress"] = "apply_reconciled_progress"
    movie_progress: dict[str, WatchedState] = Field(default_factory=dict)
    series_progress: dict[str, WatchedState] = Field(default_factory=dict)
    episode_progress: dict[str, EpisodeProgressSet] = Field(default_factory=dict)


class SetExternalIdentity(Transition):
    type: Literal["set_external_identity"] = "set_external_identity"
    unit_id: str
    external_type: ExternalType
    external_id: int


class ReplaceState(Transition):
    type: Literal["replace_state"] = "replace_state"
    state: AppState


Action = Annotated[
    Union[
        SetApiKey,
        SetTheme,
        AddExternalUnit,
        AddCustomUnit,
        RemoveUnit,
        ReorderLibrary,
        SetMovieWatched,
        SetSeriesWatched,
        SetEpisodeWatched,
        SetSeasonWatched,
        SetEpisodesWatchedUpTo,
        ClearEpisodeProgress,
        MarkPendingWrite,
        ClearPendingWrites,
        ApplyReconciledProgress,
        SetExternalIdentity,
        ReplaceState,
    ],
    Field(discriminator="type"),
]


def _touch(library: list[TrackableUnit], unit_id: str, at: datetime) -> list[TrackableUnit]:
    return [
        unit.model_copy(update={"last_updated_at": at}) if unit.id == unit_id else unit
        for unit in library
    ]


def _reindex(units: list[TrackableUnit]) -> list[TrackableUnit]:
    return [
        unit if unit.order_index == position else unit.model_copy(update={"order_index": position})
        for position, unit in enumerate(units, start=1)
    ]


def _set_watched(state: AppState, field: str, unit_id: str, watched: bool, at: datetime) -> AppState:
    state.get_unit(unit_id)
    progress = dict(getattr(state, field))
    progress[unit_id] = WatchedState.mark(watched, at)
    return state.model_copy(update={field: progress, "library": _touch(state.library, unit_id, at)})


def _update_episodes(
    state: AppState,
    unit_id: str,
    at: datetime,
    update: Callable[[dict[str, WatchedState]], None],
) -> AppState:
    state.get_unit(unit_id)
    existing = state.episode_progress.get(unit_id)
    episodes = dict(existing.episodes) if existing else {}
    update(episodes)
    episode_progress = dict(state.episode_progress)
    episode_progress[unit_id] = EpisodeProgressSet(episodes=episodes, last_touched_at=at)
    return state.model_copy(
        update={"episode_progress": episode_progress, "library": _touch(state.library, unit_id, at)}
    )


def _add_unit(state: AppState, unit: TrackableUnit) -> AppState:
    if state.find_unit(unit.id) is not None:
        raise DuplicateUnitError(unit.id)
    return state.model_copy(update={"library": state.library + [unit]})


def reduce(state: AppState, action: Action) -> AppState:
    """Apply one action and return the new state. The input is never mutated."""
    at = action.at

    if isinstance(action, SetApiKey):
        settings = state.settings.model_copy(update={"api_key": action.api_key.strip()})
        return state.model_copy(update={"settings": settings})

    if isinstance(action, SetTheme):
        settings = state.settings.model_copy(update={"theme": action.theme})
        return state.model_copy(update={"settings": settings})

    if isinstance(action, AddExternalUnit):
        is_series = action.external_type == ExternalType.SERIES
        unit = TrackableUnit(
            id=action.unit_id,
            origin=UnitOrigin.SEARCH,
            kind=UnitKind.SERIES if is_series else UnitKind.MOVIE,
            external_type=action.external_type,
            external_id=action.external_id,
            season=1 if is_series else None,
            title=action.title or f"TMDB #{action.external_id}",
            image_url=action.image_url,
            order_index=len(state.library) + 1,
            created_at=at,
            last_updated_at=at,
        )
        return _add_unit(state, unit)

    if isinstance(action, AddCustomUnit):
        is_series = action.custom_type == ExternalType.SERIES
        unit = TrackableUnit(
            id=action.unit_id,
            origin=UnitOrigin.CUSTOM,
            kind=UnitKind.SERIES if is_series else UnitKind.SPECIAL,
            external_type=action.custom_type,
            season=1 if is_series else None,
            title=action.title,
            image_url=action.image_url,
            order_index=len(state.library) + 1,
            created_at=at,
            last_updated_at=at,
        )
        return _add_unit(state, unit)

    if isinstance(action, RemoveUnit):
        state.get_unit(action.unit_id)
        remaining = [unit for unit in state.library if unit.id != action.unit_id]
        movie_progress = dict(state.movie_progress)
        series_progress = dict(state.series_progress)
        episode_progress = dict(state.episode_progress)
        movie_progress.pop(action.unit_id, None)
        series_progress.pop(action.unit_id, None)
        episode_progress.pop(action.unit_id, None)
        return state.model_copy(
            update={
                "library": _reindex(remaining),
                "movie_progress": movie_progress,
                "series_progress": series_progress,
                "episode_progress": episode_progress,
            }
        )

    if isinstance(action, ReorderLibrary):
        by_id = {unit.id: unit for unit in state.library}
        listed: list[TrackableUnit] = []
        seen: set[str] = set()
        for unit_id in action.unit_ids:
            if unit_id in by_id and unit_id not in seen:
                seen.add(unit_id)
                listed.append(by_id[unit_id].model_copy(update={"last_updated_at": at}))
        # Units missing from the list keep their relative order at the end
        rest = [unit for unit in state.library if unit.id not in seen]
        return state.model_copy(update={"library": _reindex(listed + rest)})

    if isinstance(action, SetMovieWatched):
        return _set_watched(state, "movie_progress", action.unit_id, action.watched, at)

    if isinstance(action, SetSeriesWatched):
        return _set_watched(state, "series_progress", action.unit_id, action.watched, at)

    if isinstance(action, SetEpisodeWatched):
        def set_one(episodes: dict[str, WatchedState]) -> None:
            episodes[local_episode_key(action.season, action.episode)] = WatchedState.mark(action.watched, at)

        return _update_episodes(state, action.unit_id, at, set_one)

    if isinstance(action, SetSeasonWatched):
        def set_all(episodes: dict[str, WatchedState]) -> None:
            for number in action.episodes:
                episodes[local_episode_key(action.season, number)] = WatchedState.mark(action.watched, at)

        return _update_episodes(state, action.unit_id, at, set_all)

    if isinstance(action, SetEpisodesWatchedUpTo):
        def set_until(episodes: dict[str, WatchedState]) -> None:
            for number in action.episodes:
                episodes[local_episode_key(action.season, number)] = WatchedState.mark(
                    number <= action.target_episode, at
                )

        return _update_episodes(state, action.unit_id, at, set_until)

    if isinstance(action, ClearEpisodeProgress):
        return _update_episodes(state, action.unit_id, at, lambda episodes: episodes.clear())

    if isinstance(action, MarkPendingWrite):
        pending_writes = dict(state.pending_writes)
        pending_writes[action.pending.remote_key] = action.pending
        return state.model_copy(update={"pending_writes": pending_writes})

    if isinstance(action, ClearPendingWrites):
        delivered = set(action.keys)
        pending_writes = {
            key: pending for key, pending in state.pending_writes.items() if key not in delivered
        }
        return state.model_copy(update={"pending_writes": pending_writes})

    if isinstance(action, ApplyReconciledProgress):
        return state.model_copy(
            update={
                "movie_progress": dict(action.movie_progress),
                "series_progress": dict(action.series_progress),
                "episode_progress": dict(action.episode_progress),
                "pending_writes": {},
            }
        )

    if isinstance(action, SetExternalIdentity):
        state.get_unit(action.unit_id)
        library = [
            unit.model_copy(
                update={
                    "external_type": action.external_type,
                    "external_id": action.external_id,
                    "last_updated_at": at,
                }
            )
            if unit.id == action.unit_id
            else unit
            for unit in state.library
        ]
        return state.model_copy(update={"library": library})

    if isinstance(action, ReplaceState):
        return action.state

    raise TypeError(f"Unknown action: {action!r}")
