import pytest

from dam_backend.features.bulk_edit.executor import MutationExecutor
from dam_backend.features.bulk_edit.models import (
    CollectionsFieldSelector,
    IdListValue,
    MutationIntent,
    NoValue,
    OperationType,
)
from dam_backend.features.bulk_edit.token import TokenReplayGuard
from dam_shared import Result


class _CountingCollections:
    """Wraps the real service and records every membership change."""

    def __init__(self, inner, fail_add=()):
        self._inner = inner
        self._fail_add = set(fail_add)
        self.calls = []

    async def get_asset_collections(self, asset_id):
        return await self._inner.get_asset_collections(asset_id)

    async def add_asset_to_collection(self, asset_id, collection_id):
        self.calls.append(("add", asset_id, collection_id))
        if collection_id in self._fail_add:
            return Result.Err("DB_ERROR", "disk full")
        return await self._inner.add_asset_to_collection(asset_id, collection_id)

    async def remove_asset_from_collection(self, asset_id, collection_id):
        self.calls.append(("remove", asset_id, collection_id))
        return await self._inner.remove_asset_from_collection(asset_id, collection_id)


def _executor(services, collections):
    bulk = services["bulk_edit"]
    return MutationExecutor(
        bulk.codec,
        TokenReplayGuard(services["db"]),
        services["schema"],
        services["metadata_store"],
        collections,
    )


@pytest.mark.asyncio
async def test_collections_sync_touches_only_the_difference(services, catalog):
    real = services["collections"]
    c1, c2, c3 = (catalog["collections"][n] for n in ("Favorites", "Portfolio", "Archive"))
    await real.add_asset_to_collection("p1", c2)
    await real.add_asset_to_collection("p1", c3)

    counting = _CountingCollections(real)
    executor = _executor(services, counting)
    token = services["bulk_edit"].codec.encode(
        MutationIntent(OperationType.ADD, CollectionsFieldSelector(), IdListValue((c1, c2)), ("p1",))
    )
    res = await executor.execute(token, changed_by="alice")

    assert res.ok
    outcome = res.data.outcomes[0]
    assert outcome.ok
    assert outcome.added == (c1,)
    assert outcome.removed == (c3,)
    assert counting.calls == [("remove", "p1", c3), ("add", "p1", c1)]
    assert (await real.get_asset_collections("p1")).data == sorted([c1, c2])


@pytest.mark.asyncio
async def test_collections_partial_failure_is_reported(services, catalog):
    real = services["collections"]
    c1, c2, c3 = (catalog["collections"][n] for n in ("Favorites", "Portfolio", "Archive"))
    await real.add_asset_to_collection("p1", c3)

    counting = _CountingCollections(real, fail_add={c2})
    executor = _executor(services, counting)
    token = services["bulk_edit"].codec.encode(
        MutationIntent(OperationType.REPLACE, CollectionsFieldSelector(), IdListValue((c1, c2)), ("p1",))
    )
    outcome = (await executor.execute(token)).data.outcomes[0]

    assert not outcome.ok
    assert outcome.code == "DB_ERROR"
    assert f"collection {c2}" in outcome.reason
    assert outcome.added == (c1,)
    assert outcome.removed == (c3,)
    data = outcome.to_dict()
    assert data["added"] == [c1] and data["removed"] == [c3]


@pytest.mark.asyncio
async def test_clear_collections_removes_everything(services, catalog):
    real = services["collections"]
    fav = catalog["collections"]["Favorites"]
    await real.add_asset_to_collection("p2", fav)
    token = services["bulk_edit"].codec.encode(
        MutationIntent(OperationType.CLEAR, CollectionsFieldSelector(), NoValue(), ("p2", "p3"))
    )
    res = await services["bulk_edit"].execute(token)
    assert [o.ok for o in res.data.outcomes] == [True, True]
    assert res.data.outcomes[0].removed == (fav,)
    assert (await real.get_asset_collections("p2")).data == []


@pytest.mark.asyncio
async def test_asset_deleted_after_preview_fails_alone(services, catalog):
    bulk = services["bulk_edit"]
    targets = ["p1", "p2", "p3", "p4", "p5"]
    preview = await bulk.preview(targets, "replace", "title", "Archive shot")
    assert preview.ok
    token = preview.data["preview_token"]
    assert token

    await services["assets"].soft_delete("p5")
    res = await bulk.execute(token, changed_by="alice")

    assert res.ok
    result = res.data
    assert [o.asset_id for o in result.outcomes] == targets
    assert len(result.successes) == 4
    failed = result.failures[0]
    assert failed.asset_id == "p5"
    assert failed.reason == "Asset not found"
    assert failed.code == "NOT_FOUND"

    summary = result.to_dict()
    assert (summary["total_assets"], summary["success_count"], summary["failure_count"]) == (5, 4, 1)

    title_id = catalog["fields"]["title"]
    store = services["metadata_store"]
    for aid in ("p1", "p4"):
        assert (await store.get_value(aid, title_id)).data == "Archive shot"


@pytest.mark.asyncio
async def test_writes_keep_history_with_actor(services, catalog):
    store = services["metadata_store"]
    title_id = catalog["fields"]["title"]
    await store.set_value("p1", title_id, "Sunset", changed_by="seed")

    bulk = services["bulk_edit"]
    preview = await bulk.preview(["p1"], "replace", "title", "Golden hour")
    res = await bulk.execute(preview.data["preview_token"], changed_by="alice")
    assert res.ok and res.data.outcomes[0].ok

    versions = (await store.all_versions("p1", title_id)).data
    assert [v["value"] for v in versions] == ["Sunset", "Golden hour"]
    latest = (await store.history("p1", title_id)).data[0]
    assert latest["operation"] == "replace"
    assert latest["changed_by"] == "alice"
    assert latest["old_value"] == "Sunset"


@pytest.mark.asyncio
async def test_clear_writes_an_empty_version(services, catalog):
    store = services["metadata_store"]
    tags_id = catalog["fields"]["keywords"]
    await store.set_value("p2", tags_id, ["sea"])

    bulk = services["bulk_edit"]
    preview = await bulk.preview(["p2"], "clear", "keywords")
    assert preview.data["preview"]["affected_count"] == 1
    res = await bulk.execute(preview.data["preview_token"])
    assert res.data.outcomes[0].ok
    assert (await store.get_value("p2", tags_id)).data == []
    assert (await store.all_versions("p2", tags_id)).data[0]["value"] == ["sea"]

    mood_id = catalog["fields"]["mood"]
    await store.set_value("p3", mood_id, ["calm"])
    preview = await bulk.preview(["p3"], "clear", "mood")
    assert (await bulk.execute(preview.data["preview_token"])).data.outcomes[0].ok
    assert (await store.get_value("p3", mood_id)).data == []
    latest = (await store.history("p3", mood_id)).data[0]
    assert (latest["old_value"], latest["new_value"]) == (["calm"], [])


@pytest.mark.asyncio
async def test_token_is_single_use(services, catalog):
    bulk = services["bulk_edit"]
    preview = await bulk.preview(["p1"], "add", "rating", 3)
    token = preview.data["preview_token"]
    assert (await bulk.execute(token)).ok
    again = await bulk.execute(token)
    assert not again.ok
    assert again.code == "TOKEN_REPLAYED"


@pytest.mark.asyncio
async def test_bad_tokens_fail_the_whole_call(services, catalog):
    bulk = services["bulk_edit"]
    for token in ("", "abc.def", None):
        res = await bulk.execute(token)
        assert not res.ok
        assert res.code == "TOKEN_INVALID"

    preview = await bulk.preview(["p1"], "add", "rating", 3)
    token = preview.data["preview_token"]
    tampered = token[:-2] + "zz"
    assert (await bulk.execute(tampered)).code == "TOKEN_INVALID"
    assert (await services["metadata_store"].get_value("p1", catalog["fields"]["rating"])).data is None


@pytest.mark.asyncio
async def test_field_made_readonly_after_preview_fails_per_asset(services, catalog):
    bulk = services["bulk_edit"]
    preview = await bulk.preview(["p1", "p2"], "replace", "color", "green")
    token = preview.data["preview_token"]

    await services["db"].aexecute(
        "UPDATE category_fields SET is_readonly = 1 WHERE category_id = ? AND field_id = ?",
        (catalog["photos"], catalog["fields"]["color"]),
    )
    res = await bulk.execute(token)
    assert res.ok
    assert [o.ok for o in res.data.outcomes] == [False, False]
    assert "read-only" in res.data.outcomes[0].reason


@pytest.mark.asyncio
async def test_collections_sync_is_a_no_op_when_sets_match(services, catalog):
    real = services["collections"]
    c1, c2 = catalog["collections"]["Favorites"], catalog["collections"]["Portfolio"]
    await real.add_asset_to_collection("p1", c1)
    await real.add_asset_to_collection("p1", c2)

    counting = _CountingCollections(real)
    token = services["bulk_edit"].codec.encode(
        MutationIntent(OperationType.ADD, CollectionsFieldSelector(), IdListValue((c2, c1)), ("p1",))
    )
    outcome = (await _executor(services, counting).execute(token)).data.outcomes[0]
    assert outcome.ok
    assert counting.calls == []
    assert "added" not in outcome.to_dict()


@pytest.mark.asyncio
async def test_collections_follow_each_assets_category(services, catalog):
    real = services["collections"]
    fav = catalog["collections"]["Favorites"]
    token = services["bulk_edit"].codec.encode(
        MutationIntent(OperationType.ADD, CollectionsFieldSelector(), IdListValue((fav,)), ("p1", "d1", "n1"))
    )
    counting = _CountingCollections(real)
    res = await _executor(services, counting).execute(token)

    assert res.ok
    outcomes = res.data.outcomes
    assert [o.ok for o in outcomes] == [True, False, False]
    assert "not available" in outcomes[1].reason
    assert outcomes[1].code == "VALIDATION_ERROR"
    assert outcomes[2].reason == "Asset has no category"
    assert counting.calls == [("add", "p1", fav)]
    assert (await real.get_asset_collections("d1")).data == []
    assert (await real.get_asset_collections("n1")).data == []


@pytest.mark.asyncio
async def test_option_removed_after_preview_is_not_written(services, catalog):
    bulk = services["bulk_edit"]
    color_id = catalog["fields"]["color"]
    preview = await bulk.preview(["p1"], "replace", "color", "green")
    assert preview.data["preview"]["affected_count"] == 1

    await services["db"].aexecute(
        "UPDATE metadata_fields SET options = ? WHERE id = ?",
        ('["red", "blue"]', color_id),
    )
    res = await bulk.execute(preview.data["preview_token"])
    outcome = res.data.outcomes[0]
    assert not outcome.ok
    assert outcome.reason == "Option no longer available for 'Color': green"
    assert (await services["metadata_store"].get_value("p1", color_id)).data is None
