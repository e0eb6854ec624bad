"""Reconciliation between local progress and the remote progress store."""

import logging
from datetime import datetime
from typing import Optional

from .auth import AuthSession
from .connectivity import ConnectivityMonitor
from .constants import ExternalType, SyncDirection
from .errors import RemoteSyncError
from .keys import (
    episode_key,
    episode_key_prefix,
    local_episode_key,
    movie_key,
    parse_local_episode_key,
    parse_remote_episode_key,
    series_key,
)
from .models import (
    AppState,
    EpisodeProgressSet,
    RemoteProgressRow,
    SyncResult,
    SyncStatus,
    TrackableUnit,
    WatchedState,
    now_utc,
)
from .pending import make_pending_write, still_pending
from .progress_client import ProgressStoreClient
from .reducer import (
    Action,
    ApplyReconciledProgress,
    ClearEpisodeProgress,
    ClearPendingWrites,
    MarkPendingWrite,
    SetEpisodeWatched,
    SetEpisodesWatchedUpTo,
    SetExternalIdentity,
    SetMovieWatched,
    SetSeasonWatched,
    SetSeriesWatched,
)
from .store import StateStore

logger = logging.getLogger(__name__)


def _row_state(row: RemoteProgressRow) -> WatchedState:
    # Rows written without watched_at still count as watched at their update time
    watched_at = row.watched_at or row.updated_at
    return WatchedState(watched=row.watched, watched_at=watched_at if row.watched else None)


def project_rows(library: list[TrackableUnit], rows: list[RemoteProgressRow]) -> ApplyReconciledProgress:
    """Map remote rows onto the library using each unit's derived keys.

    Movie keys are matched for plain units; the series key and episode rows are
    matched for series-scoped units. Rows that match no unit are ignored.
    """
    by_key: dict[str, RemoteProgressRow] = {}
    episode_rows: dict[str, list[tuple[int, int, RemoteProgressRow]]] = {}

    for row in rows:
        # Rows arrive newest first; keep the first one seen per key
        if row.item_key in by_key:
            continue
        by_key[row.item_key] = row

        parsed = parse_remote_episode_key(row.item_key)
        if parsed:
            season, episode = parsed
            suffix = f"{season}:e{episode}"
            if row.item_key.endswith(suffix):
                prefix = row.item_key[: -len(suffix)]
                episode_rows.setdefault(prefix, []).append((season, episode, row))

    movie_progress: dict[str, WatchedState] = {}
    series_progress: dict[str, WatchedState] = {}
    episode_progress: dict[str, EpisodeProgressSet] = {}

    for unit in library:
        if not unit.is_series_scoped:
            movie_row = by_key.get(movie_key(unit))
            if movie_row:
                movie_progress[unit.id] = _row_state(movie_row)
            continue

        series_row = by_key.get(series_key(unit))
        if series_row:
            series_progress[unit.id] = _row_state(series_row)

        matches = episode_rows.get(episode_key_prefix(unit))
        if not matches:
            continue
        touched = [row.updated_at for _, _, row in matches if row.updated_at]
        episode_progress[unit.id] = EpisodeProgressSet(
            episodes={local_episode_key(season, episode): _row_state(row) for season, episode, row in matches},
            last_touched_at=max(touched) if touched else None,
        )

    return ApplyReconciledProgress(
        movie_progress=movie_progress,
        series_progress=series_progress,
        episode_progress=episode_progress,
    )


def build_local_rows(state: AppState, user_id: str, updated_at: Optional[datetime] = None) -> list[RemoteProgressRow]:
    """Every local progress entry as an upsert row, in library order."""
    updated_at = updated_at or now_utc()
    rows: list[RemoteProgressRow] = []

    def add(item_key: str, progress: WatchedState) -> None:
        rows.append(
            RemoteProgressRow(
                user_id=user_id,
                item_key=item_key,
                watched=progress.watched,
                watched_at=progress.watched_at,
                updated_at=updated_at,
            )
        )

    for unit in state.library:
        movie = state.movie_progress.get(unit.id)
        if movie:
            add(movie_key(unit), movie)

        series = state.series_progress.get(unit.id)
        if series:
            add(series_key(unit), series)

        episodes = state.episode_progress.get(unit.id)
        if not episodes:
            continue
        for local_key, progress in episodes.episodes.items():
            season, episode = parse_local_episode_key(local_key)
            add(episode_key(unit, season, episode), progress)

    return rows


class SyncEngine:
    """Keeps the remote store in step with local progress.

    Runs the sign-in reconciliation, drains the pending write queue when
    connectivity returns, and writes every direct progress change through to
    the remote store. Remote failures never propagate out of this class: they
    end up in the pending queue and in a False/failed return value.
    """

    def __init__(
        self,
        store: StateStore,
        client: ProgressStoreClient,
        auth: AuthSession,
        connectivity: ConnectivityMonitor,
    ):
        """Initialize the engine and subscribe to identity and connectivity changes."""
        self.store = store
        self.client = client
        self.auth = auth
        self.connectivity = connectivity
        self.status = SyncStatus(
            user_id=auth.user_id,
            online=connectivity.online,
            sync_pending=bool(store.state.pending_writes),
        )
        self.last_reconcile: Optional[SyncResult] = None
        # When False, identity changes only re-target the client (session restore)
        self.auto_reconcile = True
        # Bumped on every identity change; in-flight work from an older
        # generation is discarded
        self._generation = 0
        self._unsubscribers = [
            auth.subscribe(self._on_identity_changed),
            connectivity.subscribe(self._on_connectivity_changed),
            store.subscribe(self._on_state_changed),
        ]

    def close(self) -> None:
        """Stop listening to collaborators."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    # Collaborator notifications

    def _on_identity_changed(self, user_id: Optional[str]) -> None:
        self._generation += 1
        self.status.user_id = user_id
        self.client.set_access_token(self.auth.access_token)
        if user_id and self.auto_reconcile:
            self.reconcile(user_id)
        elif not user_id:
            logger.info("Sync paused; local library and progress kept")

    def _on_connectivity_changed(self, online: bool) -> None:
        self.status.online = online
        if online:
            self.flush_pending()

    def _on_state_changed(self, state: AppState, action: Action) -> None:
        self.status.sync_pending = bool(state.pending_writes)

    def _is_stale(self, generation: int, user_id: str) -> bool:
        return generation != self._generation or self.auth.user_id != user_id

    # Reconciliation

    def reconcile(self, user_id: str) -> SyncResult:
        """One-shot merge on sign-in.

        Remote rows present: remote wins and replaces local progress.
        Remote empty with local progress: push local progress row by row.
        """
        generation = self._generation
        logger.info(f"Reconciling progress for user {user_id}")

        try:
            rows = self.client.fetch_progress_rows(user_id)
        except RemoteSyncError as e:
            logger.warning(f"Keeping local progress, remote store unavailable: {e}")
            self.status.last_error = str(e)
            self.last_reconcile = SyncResult(success=False, errors=[str(e)])
            return self.last_reconcile

        if self._is_stale(generation, user_id):
            logger.info("Identity changed during fetch, discarding remote progress")
            self.last_reconcile = SyncResult(success=False, cancelled=True, rows_fetched=len(rows))
            return self.last_reconcile

        state = self.store.state
        if rows:
            self.store.dispatch(project_rows(state.library, rows))
            result = SyncResult(
                success=True,
                direction=SyncDirection.PULL,
                rows_fetched=len(rows),
                entries_synced=len(rows),
            )
        elif state.has_local_progress():
            result = self._push_local(state, user_id, generation)
        else:
            logger.info("No progress on either side, nothing to reconcile")
            result = SyncResult(success=True, direction=SyncDirection.NOOP)

        if not result.cancelled:
            self.status.last_reconciled_at = now_utc()
        self.last_reconcile = result
        logger.info(
            f"Reconcile summary: direction={result.direction.value}, fetched={result.rows_fetched}, "
            f"synced={result.entries_synced}, failed={result.entries_failed}"
        )
        return result

    def _push_local(self, state: AppState, user_id: str, generation: int) -> SyncResult:
        result = SyncResult(success=True, direction=SyncDirection.PUSH)
        rows = build_local_rows(state, user_id)
        logger.info(f"Remote store empty, pushing {len(rows)} local progress entries")

        for row in rows:
            if self._is_stale(generation, user_id):
                logger.info("Identity changed during push, stopping")
                result.cancelled = True
                break
            if self.client.upsert_progress_row(row):
                result.entries_synced += 1
                continue
            result.entries_failed += 1
            result.errors.append(f"Failed to push: {row.item_key}")
            self.store.dispatch(
                MarkPendingWrite(
                    pending=make_pending_write(row.item_key, row.watched, row.watched_at, row.updated_at)
                )
            )

        result.success = result.entries_failed == 0 and not result.cancelled
        return result

    def flush_pending(self) -> SyncResult:
        """Deliver queued writes; only confirmed keys leave the queue."""
        user_id = self.auth.user_id
        queue = dict(self.store.state.pending_writes)
        if not user_id or not queue or not self.connectivity.online:
            return SyncResult(success=True, direction=SyncDirection.SKIPPED)

        generation = self._generation
        logger.info(f"Flushing {len(queue)} pending writes")
        synced, failed = self.client.flush_pending_rows(user_id, queue)

        if self._is_stale(generation, user_id):
            logger.info("Identity changed during flush, discarding result")
            return SyncResult(success=False, direction=SyncDirection.FLUSH, cancelled=True)

        delivered = still_pending(self.store.state.pending_writes, [queue[key] for key in synced])
        if delivered:
            self.store.dispatch(ClearPendingWrites(keys=delivered))

        if failed:
            self.status.last_error = f"{len(failed)} writes still pending"
            logger.warning(f"{len(failed)} pending writes could not be delivered, will retry later")

        return SyncResult(
            success=not failed,
            direction=SyncDirection.FLUSH,
            entries_synced=len(synced),
            entries_failed=len(failed),
            errors=[f"Failed to deliver: {key}" for key in failed],
        )

    # Direct progress operations

    def _sync_row(self, user_id: str, item_key: str, watched: bool, at: datetime) -> bool:
        watched_at = at if watched else None
        updated_at = now_utc()

        delivered = False
        if self.connectivity.online:
            delivered = self.client.upsert_progress_row(
                RemoteProgressRow(
                    user_id=user_id,
                    item_key=item_key,
                    watched=watched,
                    watched_at=watched_at,
                    updated_at=updated_at,
                )
            )

        if not delivered:
            self.store.dispatch(
                MarkPendingWrite(pending=make_pending_write(item_key, watched, watched_at, updated_at))
            )
            return False

        if item_key in self.store.state.pending_writes:
            self.store.dispatch(ClearPendingWrites(keys=[item_key]))
        return True

    def _write_through(self, writes: list[tuple[str, bool]], at: datetime) -> bool:
        user_id = self.auth.user_id
        if not user_id:
            return True

        ok = True
        for item_key, watched in writes:
            if not self._sync_row(user_id, item_key, watched, at):
                ok = False

        if not ok:
            self.status.last_error = "Some changes are pending sync"
            logger.warning("Progress saved locally; remote sync pending")
        return ok

    def toggle_movie(self, unit_id: str, watched: bool) -> bool:
        unit = self.store.get_unit(unit_id)
        action = SetMovieWatched(unit_id=unit_id, watched=watched)
        self.store.dispatch(action)
        return self._write_through([(movie_key(unit), watched)], action.at)

    def toggle_series(self, unit_id: str, watched: bool) -> bool:
        unit = self.store.get_unit(unit_id)
        action = SetSeriesWatched(unit_id=unit_id, watched=watched)
        self.store.dispatch(action)
        return self._write_through([(series_key(unit), watched)], action.at)

    def toggle_episode(self, unit_id: str, season: int, episode: int, watched: bool) -> bool:
        unit = self.store.get_unit(unit_id)
        action = SetEpisodeWatched(unit_id=unit_id, season=season, episode=episode, watched=watched)
        self.store.dispatch(action)
        return self._write_through([(episode_key(unit, season, episode), watched)], action.at)

    def mark_season(self, unit_id: str, season: int, episodes: list[int], watched: bool) -> bool:
        unit = self.store.get_unit(unit_id)
        action = SetSeasonWatched(unit_id=unit_id, season=season, episodes=episodes, watched=watched)
        self.store.dispatch(action)
        writes = [(episode_key(unit, season, number), watched) for number in episodes]
        return self._write_through(writes, action.at)

    def mark_until(self, unit_id: str, season: int, target_episode: int, episodes: list[int]) -> bool:
        """Resync a season so exactly the episodes up to the target are watched."""
        unit = self.store.get_unit(unit_id)
        action = SetEpisodesWatchedUpTo(
            unit_id=unit_id, season=season, target_episode=target_episode, episodes=episodes
        )
        self.store.dispatch(action)
        writes = [(episode_key(unit, season, number), number <= target_episode) for number in episodes]
        return self._write_through(writes, action.at)

    def clear_episodes(self, unit_id: str) -> bool:
        unit = self.store.get_unit(unit_id)
        existing = self.store.state.episode_progress.get(unit_id)
        previous_keys = list(existing.episodes) if existing else []

        action = ClearEpisodeProgress(unit_id=unit_id)
        self.store.dispatch(action)
        writes = [(episode_key(unit, *parse_local_episode_key(key)), False) for key in previous_keys]
        return self._write_through(writes, action.at)

    def resolve_external_id(self, unit_id: str, external_type: ExternalType, external_id: int) -> None:
        """Attach an external identity to a unit. Local only; no remote write."""
        self.store.dispatch(
            SetExternalIdentity(unit_id=unit_id, external_type=external_type, external_id=external_id)
        )
