"""Helpers for the pending write queue.

The queue itself lives in ``AppState.pending_writes`` (one entry per remote
key, newest intent wins) so it is persisted with the rest of the state.
"""

from datetime import datetime
from typing import Iterable, Optional

from .models import PendingWrite, RemoteProgressRow


def make_pending_write(
    remote_key: str,
    watched: bool,
    watched_at: Optional[datetime],
    updated_at: datetime,
) -> PendingWrite:
    return PendingWrite(
        remote_key=remote_key,
        watched=watched,
        watched_at=watched_at if watched else None,
        updated_at=updated_at,
    )


def pending_to_row(pending: PendingWrite, user_id: str) -> RemoteProgressRow:
    """Build the upsert row that delivers a queued intent."""
    return RemoteProgressRow(
        user_id=user_id,
        item_key=pending.remote_key,
        watched=pending.watched,
        watched_at=pending.watched_at,
        updated_at=pending.updated_at,
    )


def still_pending(queue: dict[str, PendingWrite], delivered: Iterable[PendingWrite]) -> list[str]:
    """Keys whose queued intent is still exactly the one that was delivered.

    A key re-queued with a newer intent while delivery was in flight is left
    out so it stays in the queue.
    """
    keys = []
    for pending in delivered:
        current = queue.get(pending.remote_key)
        if current is not None and current == pending:
            keys.append(pending.remote_key)
    return keys
