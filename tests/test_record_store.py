"""
Record store tests for bulk detail fetches.
"""

import asyncio

import httpx
import pytest

from knowledge_search.core.errors import PartialFailure
from knowledge_search.vector.store import InMemoryRecordStore, SupabaseRecordStore


def _supabase(handler):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SupabaseRecordStore("https://db.example.com", "anon-key", http_client=http_client)


def test_memory_store_column_selection():
    store = InMemoryRecordStore()
    store.add("knowledge_items", {"id": 1, "title": "A", "content": "long"})

    records = asyncio.run(store.fetch_many("knowledge_items", ["1"], "id,title"))

    assert records == {"1": {"id": 1, "title": "A"}}
    assert store.calls == 1


def test_supabase_store_bulk_request():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json=[{"id": 1, "title": "A"}, {"id": "b", "title": "B"}])

    records = asyncio.run(_supabase(handler).fetch_many("images", ["1", "b"], "id,title", "Bearer user"))

    assert seen["path"] == "/rest/v1/images"
    assert seen["params"] == {"select": "id,title", "id": 'in.("1","b")'}
    assert seen["auth"] == "Bearer user"
    assert set(records) == {"1", "b"}


def test_supabase_store_anon_authorization_by_default():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json=[])

    asyncio.run(_supabase(handler).fetch_many("images", ["1"]))

    assert seen["auth"] == "Bearer anon-key"


def test_supabase_store_empty_ids_makes_no_request():
    def handler(request):
        raise AssertionError("no request expected")

    assert asyncio.run(_supabase(handler).fetch_many("images", [])) == {}


@pytest.mark.parametrize("response", [
    httpx.Response(500, text="error"),
    httpx.Response(200, text="not json"),
    httpx.Response(200, json={"id": 1}),
])
def test_supabase_store_failures_raise_partial_failure(response):
    with pytest.raises(PartialFailure):
        asyncio.run(_supabase(lambda request: response).fetch_many("images", ["1"]))


def test_supabase_store_transport_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(PartialFailure, match="unreachable"):
        asyncio.run(_supabase(handler).fetch_many("images", ["1"]))
