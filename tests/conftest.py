"""Shared fixtures: in-memory collaborators for the sync engine."""

from datetime import datetime, timezone

import pytest
from watch_tracker.connectivity import ConnectivityMonitor
from watch_tracker.errors import RemoteSyncError
from watch_tracker.models import AppState
from watch_tracker.pending import pending_to_row
from watch_tracker.seed import seed_library
from watch_tracker.storage import SnapshotStorage
from watch_tracker.store import StateStore
from watch_tracker.sync_engine import SyncEngine

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeProgressClient:
    """Stands in for ProgressStoreClient; records every upsert."""

    def __init__(self, rows=None):
        self.rows = list(rows or [])
        self.upserts = []
        self.fail_keys = set()
        self.fail_all = False
        self.fetch_error = None
        self.access_token = None
        self.before_fetch = None
        self.before_upsert = None

    def set_access_token(self, access_token):
        self.access_token = access_token

    def fetch_progress_rows(self, user_id):
        if self.before_fetch:
            self.before_fetch()
        if self.fetch_error:
            raise RemoteSyncError(self.fetch_error)
        return [row for row in self.rows if row.user_id == user_id]

    def upsert_progress_row(self, row):
        if self.before_upsert:
            self.before_upsert(row)
        if self.fail_all or row.item_key in self.fail_keys:
            return False
        self.upserts.append(row)
        return True

    def flush_pending_rows(self, user_id, pending):
        synced, failed = [], []
        for entry in list(pending.values()):
            if self.upsert_progress_row(pending_to_row(entry, user_id)):
                synced.append(entry.remote_key)
            else:
                failed.append(entry.remote_key)
        return synced, failed


class FakeAuth:
    """Identity source with the same notification contract as AuthSession."""

    def __init__(self):
        self.user_id = None
        self.access_token = None
        self._listeners = []

    def subscribe(self, listener):
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _set(self, user_id):
        if user_id == self.user_id:
            return
        self.user_id = user_id
        self.access_token = f"token-{user_id}" if user_id else None
        for listener in list(self._listeners):
            listener(user_id)

    def sign_in(self, user_id):
        self._set(user_id)

    def sign_out(self):
        self._set(None)


@pytest.fixture
def storage(tmp_path):
    return SnapshotStorage(tmp_path / "state.json")


@pytest.fixture
def store(storage):
    return StateStore(storage, AppState(library=seed_library(at=T0)))


@pytest.fixture
def client():
    return FakeProgressClient()


@pytest.fixture
def auth():
    return FakeAuth()


@pytest.fixture
def connectivity():
    return ConnectivityMonitor(online=True)


@pytest.fixture
def engine(store, client, auth, connectivity):
    sync_engine = SyncEngine(store, client, auth, connectivity)
    yield sync_engine
    sync_engine.close()
