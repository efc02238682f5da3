import json

import httpx
import pytest

from kasir.services.connectivity import HttpReachabilityProbe
from kasir.services.remote_backend import HttpRemoteBackend, RemoteError


def _backend(handler):
    client = httpx.Client(
        base_url="https://example.supabase.co/rest/v1",
        transport=httpx.MockTransport(handler),
    )
    return HttpRemoteBackend("https://example.supabase.co", "anon-key", client=client)


def test_insert_is_an_idempotent_merge():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(201)

    backend = _backend(handler)
    backend.insert("transactions", {"id": "t1", "total": 118800})
    backend.insert("transactions", {"id": "t1", "total": 118800})

    assert len(seen) == 2
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/rest/v1/transactions"
    assert request.url.params["on_conflict"] == "id"
    assert "resolution=merge-duplicates" in request.headers["Prefer"]
    assert request.headers["apikey"] == "anon-key"
    assert json.loads(request.content) == [{"id": "t1", "total": 118800}]


def test_delete_and_select_use_id_filters():
    def handler(request):
        if request.method == "DELETE":
            assert request.url.params["id"] == "eq.p1"
            return httpx.Response(204)
        assert request.url.params["select"] == "*"
        assert request.url.params["barcode"] == "eq.123"
        return httpx.Response(200, json=[{"id": "p1"}])

    backend = _backend(handler)
    backend.delete_by_id("products", "p1")
    assert backend.select("products", {"barcode": "123"}) == [{"id": "p1"}]


def test_http_errors_become_remote_errors():
    backend = _backend(lambda request: httpx.Response(409, text="conflict"))
    with pytest.raises(RemoteError) as exc:
        backend.upsert("products", {"id": "p1"})
    assert exc.value.status_code == 409

    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(RemoteError):
        _backend(refuse).insert("products", {"id": "p1"})


def test_reachability_probe():
    up = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(401)))
    down = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(503)))

    def refuse(request):
        raise httpx.ConnectTimeout("timeout", request=request)

    unreachable = httpx.Client(transport=httpx.MockTransport(refuse))

    assert HttpReachabilityProbe("https://example.test/", client=up).is_online() is True
    assert HttpReachabilityProbe("https://example.test/", client=down).is_online() is False
    assert HttpReachabilityProbe("https://example.test/", client=unreachable).is_online() is False
