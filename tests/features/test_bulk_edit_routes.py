import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer, make_mocked_request

from dam_backend.routes.handlers import bulk_edit as bulk_mod
from dam_backend.routes.handlers import collections as collections_mod

_WRITE_HEADERS = {"Content-Type": "application/json", "X-Requested-With": "XMLHttpRequest"}


def _app_with(*register_fns):
    app = web.Application()
    routes = web.RouteTableDef()
    for register in register_fns:
        register(routes)
    app.add_routes(routes)
    return app


def _patch_services(monkeypatch, services):
    async def _mock_require_services():
        return (services, None)

    monkeypatch.setattr(bulk_mod, "_require_services", _mock_require_services)
    monkeypatch.setattr(collections_mod, "_require_services", _mock_require_services)


@pytest.mark.asyncio
async def test_preview_csrf_short_circuit(monkeypatch) -> None:
    app = _app_with(bulk_mod.register_bulk_edit_routes)
    monkeypatch.setattr(bulk_mod, "_csrf_error", lambda _request: "bad")

    req = make_mocked_request("POST", "/dam/api/bulk/preview", app=app)
    match = await app.router.resolve(req)
    resp = await match.handler(req)
    payload = json.loads(resp.text)

    assert payload.get("ok") is False
    assert payload.get("code") == "CSRF"


@pytest.mark.asyncio
async def test_execute_requires_write_token(monkeypatch) -> None:
    from dam_backend import config

    monkeypatch.setattr(config, "WRITE_TOKEN", "s3cret")
    app = _app_with(bulk_mod.register_bulk_edit_routes)

    req = make_mocked_request(
        "POST",
        "/dam/api/bulk/execute",
        headers={"Host": "localhost:8190", "X-Requested-With": "XMLHttpRequest"},
        app=app,
    )
    match = await app.router.resolve(req)
    payload = json.loads((await match.handler(req)).text)
    assert payload["code"] == "FORBIDDEN"
    assert payload["meta"]["auth_required"] is True


@pytest.mark.asyncio
async def test_bulk_fields_service_unavailable(monkeypatch) -> None:
    app = _app_with(bulk_mod.register_bulk_edit_routes)

    async def _no_bulk():
        return ({"db": object()}, None)

    monkeypatch.setattr(bulk_mod, "_require_services", _no_bulk)
    req = make_mocked_request("GET", "/dam/api/assets/p1/bulk-fields", app=app)
    match = await app.router.resolve(req)
    payload = json.loads((await match.handler(req)).text)
    assert payload["code"] == "SERVICE_UNAVAILABLE"


@pytest.mark.asyncio
async def test_preview_internal_error_is_sanitized(monkeypatch) -> None:
    class _Exploding:
        async def preview(self, *_args, **_kwargs):
            raise RuntimeError("/secret/path/db.sqlite is locked")

    _patch_services(monkeypatch, {"bulk_edit": _Exploding()})
    app = _app_with(bulk_mod.register_bulk_edit_routes)
    client = TestClient(TestServer(app))
    await client.start_server()
    try:
        resp = await client.post(
            "/dam/api/bulk/preview",
            data=json.dumps({"asset_ids": ["p1"], "operation_type": "add", "field_key": "title", "value": "x"}),
            headers=_WRITE_HEADERS,
        )
        assert resp.status == 200
        payload = await resp.json()
        assert payload["ok"] is False
        assert payload["code"] == "DB_ERROR"
        assert "/secret/path" not in payload["error"]
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_preview_and_execute_over_http(monkeypatch, services, catalog) -> None:
    _patch_services(monkeypatch, services)
    app = _app_with(bulk_mod.register_bulk_edit_routes, collections_mod.register_collections_routes)
    client = TestClient(TestServer(app))
    await client.start_server()
    try:
        resp = await client.get("/dam/api/assets/p1/bulk-fields")
        fields = (await resp.json())["data"]
        assert fields["collections_field_visible"] is True
        assert [f["key"] for f in fields["fields"]][:2] == ["title", "keywords"]

        bad = await client.post(
            "/dam/api/bulk/preview",
            data=json.dumps({"asset_ids": "p1", "operation_type": "add", "field_key": "title"}),
            headers=_WRITE_HEADERS,
        )
        assert (await bad.json())["code"] == "INVALID_INPUT"

        resp = await client.post(
            "/dam/api/bulk/preview",
            data=json.dumps({"asset_ids": ["p1", "p2"], "operation_type": "replace", "field_key": "title", "value": "Shared"}),
            headers=_WRITE_HEADERS,
        )
        preview = await resp.json()
        assert preview["ok"] is True
        token = preview["data"]["preview_token"]
        assert preview["data"]["preview"]["affected_count"] == 2

        missing = await client.post("/dam/api/bulk/execute", data=json.dumps({}), headers=_WRITE_HEADERS)
        assert (await missing.json())["code"] == "TOKEN_INVALID"

        resp = await client.post(
            "/dam/api/bulk/execute",
            data=json.dumps({"preview_token": token}),
            headers={**_WRITE_HEADERS, "X-DAM-User": "alice"},
        )
        executed = await resp.json()
        assert executed["ok"] is True
        assert executed["data"]["success_count"] == 2
        assert [o["asset_id"] for o in executed["data"]["outcomes"]] == ["p1", "p2"]

        replay = await client.post(
            "/dam/api/bulk/execute",
            data=json.dumps({"preview_token": token}),
            headers=_WRITE_HEADERS,
        )
        assert (await replay.json())["code"] == "TOKEN_REPLAYED"

        history = (await services["metadata_store"].history("p2", catalog["fields"]["title"])).data
        assert history[0]["changed_by"] == "alice"
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_preview_with_errors_over_http(monkeypatch, services, catalog) -> None:
    _patch_services(monkeypatch, services)
    app = _app_with(bulk_mod.register_bulk_edit_routes)
    client = TestClient(TestServer(app))
    await client.start_server()
    try:
        resp = await client.post(
            "/dam/api/bulk/preview",
            data=json.dumps({"asset_ids": ["p1", "d1"], "operation": "add", "field_key": "mood", "value": ["calm"]}),
            headers=_WRITE_HEADERS,
        )
        payload = await resp.json()
        assert payload["ok"] is True
        assert payload["data"]["preview_token"] is None
        assert payload["data"]["preview"]["errors"][0]["asset_id"] == "d1"
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_collections_routes(monkeypatch, services, catalog) -> None:
    _patch_services(monkeypatch, services)
    app = _app_with(collections_mod.register_collections_routes)
    client = TestClient(TestServer(app))
    await client.start_server()
    try:
        blocked = await client.post("/dam/api/collections", data=json.dumps({"name": "Prints"}))
        assert (await blocked.json())["code"] == "CSRF"

        created = await client.post("/dam/api/collections", data=json.dumps({"name": "Prints"}), headers=_WRITE_HEADERS)
        assert (await created.json())["ok"] is True

        listed = await (await client.get("/dam/api/collections")).json()
        names = sorted(c["name"] for c in listed["data"])
        assert names == ["Archive", "Favorites", "Portfolio", "Prints"]
    finally:
        await client.close()
