"""Constants used throughout the application."""

from enum import Enum


class UnitOrigin(str, Enum):
    """Where a library entry came from."""

    SEED = "seed"
    SEARCH = "search"
    CUSTOM = "custom"


class UnitKind(str, Enum):
    """Shape of a trackable unit."""

    MOVIE = "movie"
    SERIES = "series"
    EPISODE = "episode"
    EPISODE_RANGE = "episode_range"
    SPECIAL = "special"


class ExternalType(str, Enum):
    """External metadata namespace."""

    MOVIE = "movie"
    SERIES = "series"


class ThemeMode(str, Enum):
    """UI theme."""

    DARK = "dark"
    LIGHT = "light"


class SyncDirection(str, Enum):
    """What a sync run ended up doing."""

    PULL = "pull"
    PUSH = "push"
    FLUSH = "flush"
    WRITE = "write"
    NOOP = "noop"
    SKIPPED = "skipped"


SERIES_KINDS = frozenset({UnitKind.SERIES, UnitKind.EPISODE, UnitKind.EPISODE_RANGE})

# HTTP Status Codes
HTTP_OK = 200
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_TOO_MANY_REQUESTS = 429

# Remote store
PROGRESS_TABLE = "progress_items"
PROGRESS_CONFLICT_TARGET = "user_id,item_key"
PROGRESS_COLUMNS = "user_id,item_key,watched,watched_at,updated_at"
PAGE_SIZE = 1000

# Snapshot / export
EXPORT_VERSION = 2
SUPPORTED_IMPORT_VERSIONS = (1, 2)

# Default values
DEFAULT_STATE_FILE = "data/state.json"
DEFAULT_SESSION_FILE = "data/session.json"
METADATA_CACHE_TTL_SECONDS = 24 * 60 * 60  # 24 hours
TOKEN_EXPIRY_BUFFER_SECONDS = 300  # 5 minutes
CONNECTIVITY_PROBE_TIMEOUT_SECONDS = 5
