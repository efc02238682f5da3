"""
Remote backend clients used by the sync queue.

Contract every implementation honours: insert() is safe to repeat with a
record carrying the same id (it behaves as an upsert), and upsert() and
delete_by_id() are idempotent by id. Replaying a queue item twice therefore
leaves the remote in the same state as replaying it once.
"""
from __future__ import annotations

import copy
import logging
import threading
from typing import Callable

import httpx

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """The backend rejected or could not complete a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteBackend:
    def insert(self, table: str, record: dict) -> None:
        raise NotImplementedError

    def upsert(self, table: str, record: dict) -> None:
        raise NotImplementedError

    def delete_by_id(self, table: str, record_id: str) -> None:
        raise NotImplementedError

    def select(self, table: str, filters: dict | None = None) -> list[dict]:
        raise NotImplementedError


class HttpRemoteBackend(RemoteBackend):
    """
    PostgREST-style backend (e.g. Supabase) over httpx.

    Inserts are sent with merge-duplicates resolution on the id column, so a
    replayed create updates the row it created the first time instead of
    failing or duplicating it.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        if client is not None:
            client.headers.update(headers)
        self._client = client or httpx.Client(
            base_url=f"{base_url.rstrip('/')}/rest/v1",
            headers=headers,
            timeout=timeout,
        )

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise RemoteError(f"{method} {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise RemoteError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    def _merge(self, table: str, record: dict) -> None:
        self._send(
            "POST",
            f"/{table}",
            params={"on_conflict": "id"},
            json=[record],
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    def insert(self, table: str, record: dict) -> None:
        self._merge(table, record)

    def upsert(self, table: str, record: dict) -> None:
        self._merge(table, record)

    def delete_by_id(self, table: str, record_id: str) -> None:
        self._send("DELETE", f"/{table}", params={"id": f"eq.{record_id}"})

    def select(self, table: str, filters: dict | None = None) -> list[dict]:
        params = {"select": "*"}
        for column, value in (filters or {}).items():
            params[column] = f"eq.{value}"
        response = self._send("GET", f"/{table}", params=params)
        try:
            rows = response.json()
        except ValueError as exc:
            raise RemoteError(f"GET /{table} returned invalid JSON") from exc
        if not isinstance(rows, list):
            raise RemoteError(f"GET /{table} did not return a list")
        return rows


class InMemoryRemoteBackend(RemoteBackend):
    """
    Backend held in process memory.

    fail_with, when set, is called with (operation, table, record_id) before
    each write and may raise to simulate a remote failure.
    """

    def __init__(self, fail_with: Callable[[str, str, str | None], None] | None = None):
        self.tables: dict[str, dict[str, dict]] = {}
        self.calls: list[tuple[str, str, str | None]] = []
        self.fail_with = fail_with
        self._lock = threading.Lock()

    def _before(self, operation: str, table: str, record_id: str | None) -> None:
        self.calls.append((operation, table, record_id))
        if self.fail_with is not None:
            self.fail_with(operation, table, record_id)

    def insert(self, table: str, record: dict) -> None:
        self._before("insert", table, str(record.get("id")))
        with self._lock:
            self.tables.setdefault(table, {})[str(record["id"])] = copy.deepcopy(record)

    def upsert(self, table: str, record: dict) -> None:
        self._before("upsert", table, str(record.get("id")))
        with self._lock:
            rows = self.tables.setdefault(table, {})
            merged = dict(rows.get(str(record["id"]), {}))
            merged.update(copy.deepcopy(record))
            rows[str(record["id"])] = merged

    def delete_by_id(self, table: str, record_id: str) -> None:
        self._before("delete", table, record_id)
        with self._lock:
            self.tables.get(table, {}).pop(str(record_id), None)

    def select(self, table: str, filters: dict | None = None) -> list[dict]:
        with self._lock:
            rows = list(self.tables.get(table, {}).values())
        for column, value in (filters or {}).items():
            rows = [r for r in rows if r.get(column) == value]
        return copy.deepcopy(rows)
