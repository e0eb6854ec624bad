"""Remote progress store client (PostgREST table ``progress_items``)."""

import logging
from typing import Optional

import requests

from .base_client import BaseAPIClient
from .constants import PAGE_SIZE, PROGRESS_COLUMNS, PROGRESS_CONFLICT_TARGET, PROGRESS_TABLE
from .errors import RemoteSyncError
from .models import PendingWrite, RemoteProgressRow
from .pending import pending_to_row

logger = logging.getLogger(__name__)


class ProgressStoreClient(BaseAPIClient):
    """Reads and upserts rows keyed by (user_id, item_key)."""

    SERVICE_NAME = "Progress store"

    def __init__(self, url: str, api_key: str, access_token: Optional[str] = None):
        """Initialize client for the REST endpoint of the remote project."""
        self.api_key = api_key
        super().__init__(
            base_url=f"{url.rstrip('/')}/rest/v1",
            access_token=access_token,
            headers={
                "apikey": api_key,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            # Failed writes go to the pending queue instead of blocking on backoff
            max_retries=0,
        )

    def set_access_token(self, access_token: Optional[str]) -> None:
        # Anonymous requests still authenticate with the project key
        super().set_access_token(access_token or self.api_key)

    @property
    def table_url(self) -> str:
        return f"{self.base_url}/{PROGRESS_TABLE}"

    def fetch_progress_rows(self, user_id: str) -> list[RemoteProgressRow]:
        """Fetch every progress row for a user, newest first.

        Raises RemoteSyncError if any page cannot be fetched.
        """
        rows: list[RemoteProgressRow] = []
        offset = 0

        while True:
            params = {
                "select": PROGRESS_COLUMNS,
                "user_id": f"eq.{user_id}",
                "order": "updated_at.desc",
                "offset": offset,
                "limit": PAGE_SIZE,
            }
            try:
                response = self.session.get(self.table_url, params=params, timeout=self.timeout)
                self._handle_auth_error(response, self.SERVICE_NAME)
                response.raise_for_status()
                page = [RemoteProgressRow.model_validate(item) for item in response.json()]
            except (requests.RequestException, ValueError) as e:
                raise RemoteSyncError(f"Failed to fetch progress rows: {e}") from e

            rows.extend(page)
            if len(page) < PAGE_SIZE:
                break
            offset += PAGE_SIZE

        logger.info(f"Fetched {len(rows)} progress rows from remote store")
        return rows

    def upsert_progress_row(self, row: RemoteProgressRow) -> bool:
        """Insert or replace one row. Returns False on any failure."""
        try:
            response = self.session.post(
                self.table_url,
                params={"on_conflict": PROGRESS_CONFLICT_TARGET},
                json=row.model_dump(mode="json"),
                headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
                timeout=self.timeout,
            )
            self._handle_auth_error(response, self.SERVICE_NAME)
            response.raise_for_status()
            logger.debug(f"Upserted progress row {row.item_key}")
            return True
        except requests.RequestException as e:
            logger.warning(f"Failed to upsert progress row {row.item_key}: {e}")
            return False

    def flush_pending_rows(
        self, user_id: str, pending: dict[str, PendingWrite]
    ) -> tuple[list[str], list[str]]:
        """Deliver queued writes one by one.

        Returns:
            tuple: (synced_keys, failed_keys)
        """
        synced: list[str] = []
        failed: list[str] = []

        for entry in list(pending.values()):
            if self.upsert_progress_row(pending_to_row(entry, user_id)):
                synced.append(entry.remote_key)
            else:
                failed.append(entry.remote_key)

        return synced, failed
