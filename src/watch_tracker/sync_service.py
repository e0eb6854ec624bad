"""Service assembly: wires storage, state, collaborators and the sync engine."""

import logging
from typing import Optional

import click

from .auth import AuthSession, SessionStore
from .config import Settings, get_settings
from .connectivity import ConnectivityMonitor
from .metadata import MetadataClient
from .models import SyncResult
from .progress_client import ProgressStoreClient
from .storage import SnapshotStorage
from .store import StateStore
from .sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class TrackerService:
    """One process worth of tracker components.

    Construction loads the state snapshot; nothing touches the network until
    ``start()`` is called.
    """

    def __init__(self, settings: Optional[Settings] = None):
        """Build all components from settings."""
        self.settings = settings or get_settings()

        self.storage = SnapshotStorage(self.settings.state_file)
        self.store = StateStore(self.storage)
        self.connectivity = ConnectivityMonitor(online=True)
        self.auth = AuthSession(
            self.settings.remote_url,
            self.settings.remote_anon_key,
            SessionStore(self.settings.session_file),
        )
        # Only used once a session exists, which requires the remote config
        self.client = ProgressStoreClient(
            self.settings.remote_url or "",
            self.settings.remote_anon_key or "",
        )
        self.engine = SyncEngine(self.store, self.client, self.auth, self.connectivity)
        self.metadata = MetadataClient(
            api_key=self.store.state.settings.api_key or self.settings.tmdb_api_key,
            base_url=self.settings.tmdb_base_url,
            cache_ttl_seconds=self.settings.tmdb_cache_ttl_seconds,
        )

    def start(self, reconcile: bool = False) -> Optional[str]:
        """Probe connectivity and restore the saved session.

        A restored session is not a new sign-in, so it only triggers the
        reconciliation when ``reconcile`` is set. Returns the user id, if any.
        """
        if self.settings.remote_configured and self.settings.probe_connectivity:
            self.connectivity.probe(self.settings.remote_url)

        self.engine.auto_reconcile = reconcile
        try:
            return self.auth.restore()
        finally:
            self.engine.auto_reconcile = True

    def close(self) -> None:
        self.engine.close()


def execute_sync(service: TrackerService) -> tuple[SyncResult, Optional[SyncResult]]:
    """Drain the pending queue, then pull remote progress.

    The pull only runs once nothing is left in the queue, since applying remote
    progress replaces local progress and empties the queue.

    Returns:
        tuple: (flush_result, reconcile_result or None if skipped)
    """
    user_id = service.start()
    if not user_id:
        logger.warning("Not signed in, nothing to sync. Run: watch-tracker login")
        return SyncResult(success=False, errors=["Not signed in"]), None

    flush_result = service.engine.flush_pending()
    if service.store.state.pending_writes:
        logger.warning("Pending writes remain, skipping pull to keep local changes")
        return flush_result, None

    return flush_result, service.engine.reconcile(user_id)


def print_sync_results(result: SyncResult, label: str):
    """Print sync results to console."""
    click.echo(f"\n=== {label} ===")
    click.echo(f"Direction: {result.direction.value}")
    click.echo(f"Success: {result.success}")
    if result.rows_fetched:
        click.echo(f"Rows fetched: {result.rows_fetched}")
    click.echo(f"Entries synced: {result.entries_synced}")
    click.echo(f"Entries failed: {result.entries_failed}")
    if result.cancelled:
        click.echo("Cancelled: identity changed while syncing")

    if result.errors:
        click.echo(f"\nErrors ({len(result.errors)}):")
        for error in result.errors[:10]:  # Show first 10
            click.echo(f"  - {error}")
