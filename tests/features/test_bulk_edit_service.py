import pytest

from dam_backend.features.bulk_edit.service import normalize_target_ids


def test_normalize_target_ids():
    assert normalize_target_ids(["a", " b ", "a", 7]).data == ("a", "b", "7")
    for raw in (None, "a", 5, b"ab"):
        res = normalize_target_ids(raw)
        assert res.code == "INVALID_INPUT"
    assert normalize_target_ids([]).code == "INVALID_INPUT"
    assert normalize_target_ids(["a", None]).code == "INVALID_INPUT"
    assert normalize_target_ids(["a", ""]).code == "INVALID_INPUT"

    too_many = normalize_target_ids(["a", "b", "c"], max_targets=2)
    assert too_many.code == "INVALID_INPUT"
    assert too_many.meta["max_targets"] == 2


@pytest.mark.asyncio
async def test_preview_returns_token_when_clean(services, catalog):
    bulk = services["bulk_edit"]
    res = await bulk.preview(["p1", "p2"], "replace", "color", "blue")
    assert res.ok
    assert res.data["preview_token"]
    assert res.data["expires_in"] == bulk.codec.ttl_seconds
    preview = res.data["preview"]
    assert preview["total_assets"] == 2
    assert preview["affected_count"] == 2
    assert preview["affected"][0]["changes"][0] == {"field": "Color", "old": "Not set", "new": "blue"}


@pytest.mark.asyncio
async def test_preview_withholds_token_on_errors(services, catalog):
    res = await services["bulk_edit"].preview(["p1", "d1", "ghost"], "add", "mood", ["calm"])
    assert res.ok
    assert res.data["preview_token"] is None
    assert res.data["expires_in"] is None
    preview = res.data["preview"]
    assert preview["errored_count"] == 2
    assert preview["affected_count"] == 1


@pytest.mark.asyncio
async def test_preview_rejects_bad_requests(services, catalog):
    bulk = services["bulk_edit"]
    assert (await bulk.preview("p1", "add", "title", "x")).code == "INVALID_INPUT"
    assert (await bulk.preview(["p1"], "merge", "title", "x")).code == "INVALID_INPUT"
    assert (await bulk.preview(["p1"], "add", " ", "x")).code == "INVALID_INPUT"
    assert (await bulk.preview(["p1"], "add", "checksum", "x")).code == "VALIDATION_ERROR"
    assert (await bulk.preview(["p1"], "add", "rating", 9)).code == "VALIDATION_ERROR"
    assert (await bulk.preview(["p1"], "add", "color", "purple")).code == "VALIDATION_ERROR"
    # Fields are resolved against the first target.
    assert (await bulk.preview(["n1", "p1"], "add", "title", "x")).code == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_collections_preview_through_service(services, catalog):
    fav = catalog["collections"]["Favorites"]
    res = await services["bulk_edit"].preview(["p1", "p2"], "add", "collections", [fav])
    assert res.ok
    assert res.data["preview"]["affected"][0]["changes"][0]["new"] == "Favorites"

    executed = await services["bulk_edit"].execute(res.data["preview_token"], changed_by="alice")
    assert [o.added for o in executed.data.outcomes] == [(fav,), (fav,)]

    # Documents hide the collections field.
    hidden = await services["bulk_edit"].preview(["d1"], "add", "collections", [fav])
    assert hidden.code == "VALIDATION_ERROR"
