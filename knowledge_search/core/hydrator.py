"""
Detail hydration: bulk-fetch full records for fused candidates and reconcile fields.

Field precedence is match-wins: a value captured at match time is kept when it
is present and not null, otherwise the hydrated value is used, otherwise the
field is omitted. A failed fetch degrades results to match-time fields only.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .context import RequestContext
from ..vector.store import IRecordStore
from util.logging import logger

HYDRATION_COMPLETE = "complete"
HYDRATION_PARTIAL = "partial"
HYDRATION_SKIPPED = "skipped"


class DetailHydrator:
    """Single bulk fetch per request against the primary record store."""

    def __init__(self, store: IRecordStore):
        self.store = store

    async def hydrate(
        self,
        table: str,
        ids: Iterable[str],
        ctx: RequestContext,
        columns: str = "*",
    ) -> Tuple[Dict[str, Dict[str, Any]], str]:
        """Return ({id: record}, status). Fetch failures of any kind degrade to ({}, "partial")."""
        unique_ids = list(dict.fromkeys(ids))
        if not unique_ids:
            return {}, HYDRATION_SKIPPED

        try:
            records = await ctx.run(
                f"hydration.{table}",
                lambda: self.store.fetch_many(table, unique_ids, columns, ctx.authorization),
            )
        except Exception as e:
            logger.log_hydration(table, len(unique_ids), 0, status="degraded", error=f"{type(e).__name__}: {e}")
            return {}, HYDRATION_PARTIAL

        logger.log_hydration(table, len(unique_ids), len(records))
        return records, HYDRATION_COMPLETE


def resolve(
    match_fields: Mapping[str, Any],
    record: Optional[Mapping[str, Any]],
    match_keys: Sequence[str],
    record_keys: Optional[Sequence[str]] = None,
) -> Any:
    """First non-null value among match_keys at match time, then record_keys in the record."""
    for key in match_keys:
        value = match_fields.get(key)
        if value is not None:
            return value

    for key in (match_keys if record_keys is None else record_keys):
        value = (record or {}).get(key)
        if value is not None:
            return value
    return None


def merge_fields(match_fields: Mapping[str, Any], record: Optional[Mapping[str, Any]], keys: List[str]) -> Dict[str, Any]:
    """Match-wins merge of the given keys; keys with no value on either side are omitted."""
    merged = {}
    for key in keys:
        value = resolve(match_fields, record, [key])
        if value is not None:
            merged[key] = value
    return merged
