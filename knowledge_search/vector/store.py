"""
Primary record store boundary, consumed only for bulk hydration by id.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from ..core.errors import PartialFailure


class IRecordStore(ABC):
    """Abstract interface for bulk record lookup."""

    @abstractmethod
    async def fetch_many(
        self,
        table: str,
        ids: List[str],
        columns: str = "*",
        authorization: Optional[str] = None,
    ) -> Dict[str, Dict[str, Any]]:
        """Fetch full records for ids in one call. Raises PartialFailure on any failure."""
        pass


class InMemoryRecordStore(IRecordStore):
    """Dictionary-backed record store for development and tests."""

    def __init__(self):
        self._tables = {}  # table -> {record_id: record}
        self.calls = 0

    def add(self, table: str, record: Dict[str, Any]) -> None:
        self._tables.setdefault(table, {})[str(record["id"])] = dict(record)

    async def fetch_many(
        self,
        table: str,
        ids: List[str],
        columns: str = "*",
        authorization: Optional[str] = None,
    ) -> Dict[str, Dict[str, Any]]:
        self.calls += 1
        rows = self._tables.get(table, {})
        wanted = None if columns == "*" else {c.strip() for c in columns.split(",")}

        found = {}
        for record_id in ids:
            record = rows.get(record_id)
            if record is None:
                continue
            if wanted is not None:
                record = {k: v for k, v in record.items() if k in wanted}
            found[record_id] = dict(record)
        return found


class SupabaseRecordStore(IRecordStore):
    """PostgREST table reader using an ``id=in.(...)`` filter for a single bulk fetch."""

    def __init__(self, base_url: str, anon_key: str, http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url or "").rstrip("/")
        self._anon_key = anon_key
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(30.0))
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def fetch_many(
        self,
        table: str,
        ids: List[str],
        columns: str = "*",
        authorization: Optional[str] = None,
    ) -> Dict[str, Dict[str, Any]]:
        if not ids:
            return {}

        quoted = ",".join('"' + i.replace('"', '\\"') + '"' for i in ids)
        try:
            response = await self.http_client.get(
                f"{self.base_url}/rest/v1/{table}",
                params={"select": columns, "id": f"in.({quoted})"},
                headers={
                    "apikey": self._anon_key,
                    "Authorization": authorization or f"Bearer {self._anon_key}",
                },
            )
        except httpx.HTTPError as e:
            raise PartialFailure(f"Detail fetch from {table} unreachable ({type(e).__name__})") from None

        if not response.is_success:
            raise PartialFailure(f"Detail fetch from {table} failed (status {response.status_code})")

        try:
            rows = response.json()
        except ValueError:
            raise PartialFailure(f"Detail fetch from {table} returned a non-JSON response") from None

        if not isinstance(rows, list):
            raise PartialFailure(f"Detail fetch from {table} returned an unexpected shape")

        return {str(row["id"]): row for row in rows if isinstance(row, dict) and row.get("id") is not None}
