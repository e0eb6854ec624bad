"""Data models for library entries, progress and remote rows."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .constants import (
    EXPORT_VERSION,
    SERIES_KINDS,
    ExternalType,
    SyncDirection,
    ThemeMode,
    UnitKind,
    UnitOrigin,
)
from .errors import UnknownUnitError


def now_utc() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class SnapshotModel(BaseModel):
    """Base for models persisted in the state snapshot (camelCase on disk)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("*")
    @classmethod
    def assume_utc(cls, v):
        """Timestamps stored without an offset are read as UTC."""
        if isinstance(v, datetime) and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class TrackableUnit(SnapshotModel):
    """One library entry that progress is tracked against."""

    id: str
    origin: UnitOrigin = UnitOrigin.SEED
    kind: UnitKind = UnitKind.MOVIE

    # External identity
    external_type: Optional[ExternalType] = None
    external_id: Optional[int] = None

    # Series scope
    season: Optional[int] = None
    episode: Optional[int] = None
    range_start: Optional[int] = None
    range_end: Optional[int] = None

    # Display
    title: str
    image_url: Optional[str] = None
    note: Optional[str] = None

    order_index: int = Field(ge=1)
    created_at: datetime = Field(default_factory=now_utc)
    last_updated_at: datetime = Field(default_factory=now_utc)

    @property
    def is_series_scoped(self) -> bool:
        """True for units whose progress lives in the series/episode maps."""
        return self.kind in SERIES_KINDS or self.external_type == ExternalType.SERIES


class WatchedState(SnapshotModel):
    """Watched flag with the time it was set."""

    watched: bool = False
    watched_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _drop_timestamp_when_unwatched(self):
        if not self.watched:
            self.watched_at = None
        return self

    @classmethod
    def mark(cls, watched: bool, at: datetime) -> "WatchedState":
        return cls(watched=watched, watched_at=at if watched else None)


class EpisodeProgressSet(SnapshotModel):
    """Per-episode progress for one unit, keyed by "season:episode"."""

    episodes: dict[str, WatchedState] = Field(default_factory=dict)
    last_touched_at: Optional[datetime] = None

    def watched_count(self) -> int:
        return sum(1 for state in self.episodes.values() if state.watched)


class PendingWrite(SnapshotModel):
    """Last undelivered write intent for one remote key."""

    remote_key: str
    watched: bool
    watched_at: Optional[datetime] = None
    updated_at: datetime


class AppSettings(SnapshotModel):
    """User settings stored alongside the library."""

    api_key: str = ""
    theme: ThemeMode = ThemeMode.DARK

    @field_validator("api_key", mode="before")
    @classmethod
    def strip_key(cls, v):
        return (v or "").strip()


class AppState(SnapshotModel):
    """Root aggregate: everything that is persisted."""

    settings: AppSettings = Field(default_factory=AppSettings)
    library: list[TrackableUnit] = Field(default_factory=list)
    movie_progress: dict[str, WatchedState] = Field(default_factory=dict)
    series_progress: dict[str, WatchedState] = Field(default_factory=dict)
    episode_progress: dict[str, EpisodeProgressSet] = Field(default_factory=dict)
    pending_writes: dict[str, PendingWrite] = Field(default_factory=dict)

    @field_validator("library")
    @classmethod
    def sort_library(cls, v: list[TrackableUnit]) -> list[TrackableUnit]:
        return sorted(v, key=lambda unit: unit.order_index)

    def find_unit(self, unit_id: str) -> Optional[TrackableUnit]:
        for unit in self.library:
            if unit.id == unit_id:
                return unit
        return None

    def get_unit(self, unit_id: str) -> TrackableUnit:
        """Return the unit with this id or raise UnknownUnitError."""
        unit = self.find_unit(unit_id)
        if unit is None:
            raise UnknownUnitError(unit_id)
        return unit

    def has_local_progress(self) -> bool:
        return bool(self.movie_progress or self.series_progress or self.episode_progress)


class RemoteProgressRow(BaseModel):
    """Wire representation of one row of the remote progress table."""

    user_id: str
    item_key: str
    watched: bool
    watched_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ExportPayload(SnapshotModel):
    """Exported state file."""

    version: int = EXPORT_VERSION
    exported_at: datetime = Field(default_factory=now_utc)
    state: AppState


class SyncResult(BaseModel):
    """Result of a sync operation."""

    success: bool
    direction: SyncDirection = SyncDirection.NOOP
    rows_fetched: int = 0
    entries_synced: int = 0
    entries_failed: int = 0
    errors: list[str] = Field(default_factory=list)
    cancelled: bool = False


class SyncStatus(BaseModel):
    """Transient sync status, never persisted."""

    user_id: Optional[str] = None
    online: bool = True
    sync_pending: bool = False
    last_reconciled_at: Optional[datetime] = None
    last_error: Optional[str] = None
