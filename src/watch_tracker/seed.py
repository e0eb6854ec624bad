"""Built-in chronology used on first run and after a reset."""

from datetime import datetime
from typing import Optional

from .constants import ExternalType, UnitKind, UnitOrigin
from .models import TrackableUnit, now_utc

SEED_CHRONOLOGY = [
    {
        "id": "seed-captain-america-first-avenger",
        "title": "Captain America: The First Avenger",
        "kind": UnitKind.MOVIE,
        "external_type": ExternalType.MOVIE,
        "external_id": 1771,
    },
    {
        "id": "seed-agent-carter-s1",
        "title": "Agent Carter (Season 1)",
        "kind": UnitKind.SERIES,
        "external_type": ExternalType.SERIES,
        "external_id": 61550,
        "season": 1,
    },
    {
        "id": "seed-agent-carter-s2",
        "title": "Agent Carter (Season 2)",
        "kind": UnitKind.SERIES,
        "external_type": ExternalType.SERIES,
        "external_id": 61550,
        "season": 2,
    },
    {
        "id": "seed-captain-marvel",
        "title": "Captain Marvel",
        "kind": UnitKind.MOVIE,
        "external_type": ExternalType.MOVIE,
        "external_id": 299537,
    },
    {
        "id": "seed-iron-man",
        "title": "Iron Man",
        "kind": UnitKind.MOVIE,
        "external_type": ExternalType.MOVIE,
        "external_id": 1726,
    },
    {
        "id": "seed-iron-man-2",
        "title": "Iron Man 2",
        "kind": UnitKind.MOVIE,
        "external_type": ExternalType.MOVIE,
        "external_id": 10138,
    },
    {
        "id": "seed-incredible-hulk",
        "title": "The Incredible Hulk",
        "kind": UnitKind.MOVIE,
        "external_type": ExternalType.MOVIE,
        "external_id": 1724,
    },
    {
        "id": "seed-consultant",
        "title": "The Consultant (One-Shot)",
        "kind": UnitKind.SPECIAL,
        "external_type": None,
        "external_id": None,
        "note": "Short film included on the Thor home release.",
    },
    {
        "id": "seed-thor",
        "title": "Thor",
        "kind": UnitKind.MOVIE,
        "external_type": ExternalType.MOVIE,
        "external_id": 10195,
    },
    {
        "id": "seed-avengers",
        "title": "The Avengers",
        "kind": UnitKind.MOVIE,
        "external_type": ExternalType.MOVIE,
        "external_id": 24428,
    },
]


def seed_library(at: Optional[datetime] = None) -> list[TrackableUnit]:
    """Build fresh library units from the seed chronology."""
    timestamp = at or now_utc()
    return [
        TrackableUnit(
            origin=UnitOrigin.SEED,
            order_index=position,
            created_at=timestamp,
            last_updated_at=timestamp,
            **item,
        )
        for position, item in enumerate(SEED_CHRONOLOGY, start=1)
    ]
