import asyncio

import pytest

from dam_backend.features.bulk_edit.diff import UNCHANGED_WARNING, DiffComputer
from dam_backend.features.bulk_edit.models import (
    CollectionsFieldSelector,
    IdListValue,
    MutationIntent,
    NoValue,
    OperationType,
    RegularFieldSelector,
    ScalarValue,
    StringListValue,
)
from dam_backend.features.metadata.fields import FieldType


def _selector(catalog, key, ftype, label=None, options=()):
    return RegularFieldSelector(
        field_id=catalog["fields"][key],
        key=key,
        label=label or key.title(),
        field_type=ftype,
        options=tuple(options),
    )


def _partition(preview):
    ids = [e.asset_id for e in preview.affected] + [e.asset_id for e in preview.errored] + list(preview.unaffected)
    return sorted(ids)


@pytest.mark.asyncio
async def test_clear_counts_only_assets_with_a_value(services, catalog):
    store = services["metadata_store"]
    await store.set_value("p1", catalog["fields"]["title"], "Sunset")
    await store.set_value("p2", catalog["fields"]["title"], "Beach")

    intent = MutationIntent(OperationType.CLEAR, _selector(catalog, "title", FieldType.TEXT), NoValue(), ("p1", "p2", "p3"))
    preview = await services["bulk_edit"].diff.compute(intent)

    assert [e.asset_id for e in preview.affected] == ["p1", "p2"]
    assert preview.unaffected == ["p3"]
    assert not preview.errored
    change = preview.affected[0].changes[0]
    assert (change.field_label, change.old_display, change.new_display) == ("Title", "Sunset", "Not set")
    assert preview.affected[0].label == "Sunset"
    assert [w.asset_id for w in preview.warnings] == ["p3"]
    assert preview.warnings[0].message == UNCHANGED_WARNING


@pytest.mark.asyncio
async def test_clear_on_empty_field_affects_nothing(services, catalog):
    intent = MutationIntent(OperationType.CLEAR, _selector(catalog, "keywords", FieldType.TAGS), NoValue(), ("p1", "p2"))
    preview = await services["bulk_edit"].diff.compute(intent)
    assert preview.affected == []
    assert preview.unaffected == ["p1", "p2"]


@pytest.mark.asyncio
async def test_multi_valued_fields_compare_as_sets(services, catalog):
    store = services["metadata_store"]
    await store.set_value("p1", catalog["fields"]["keywords"], ["sky", "sea"])
    await store.set_value("p2", catalog["fields"]["keywords"], ["sea"])

    intent = MutationIntent(
        OperationType.ADD,
        _selector(catalog, "keywords", FieldType.TAGS),
        StringListValue(("sea", "sky")),
        ("p1", "p2", "p3"),
    )
    preview = await services["bulk_edit"].diff.compute(intent)
    assert [e.asset_id for e in preview.affected] == ["p2", "p3"]
    assert preview.unaffected == ["p1"]
    assert preview.affected[1].label == "IMG_0003.jpg"
    assert preview.affected[1].changes[0].new_display == "sea, sky"


@pytest.mark.asyncio
async def test_add_and_replace_detect_changes_identically(services, catalog):
    await services["metadata_store"].set_value("p1", catalog["fields"]["rating"], 4)
    selector = _selector(catalog, "rating", FieldType.RATING)
    diff = services["bulk_edit"].diff
    for op in (OperationType.ADD, OperationType.REPLACE):
        preview = await diff.compute(MutationIntent(op, selector, ScalarValue(4), ("p1", "p2")))
        assert [e.asset_id for e in preview.affected] == ["p2"]
        assert preview.unaffected == ["p1"]


@pytest.mark.asyncio
async def test_per_asset_errors_partition_the_targets(services, catalog):
    await services["assets"].soft_delete("p5")
    intent = MutationIntent(
        OperationType.REPLACE,
        _selector(catalog, "mood", FieldType.MULTISELECT, options=("calm", "bright", "dark")),
        StringListValue(("calm",)),
        ("p1", "d1", "n1", "p5", "ghost"),
    )
    preview = await services["bulk_edit"].diff.compute(intent)

    assert preview.has_errors
    assert [e.asset_id for e in preview.affected] == ["p1"]
    errors = {e.asset_id: e.errors[0] for e in preview.errored}
    assert errors["d1"] == "Field 'Mood' is not available for this asset's category"
    assert errors["n1"] == "Asset has no category"
    assert errors["p5"] == "Asset not found"
    assert errors["ghost"] == "Asset not found"
    assert _partition(preview) == sorted(intent.asset_ids)


@pytest.mark.asyncio
async def test_readonly_in_category_is_an_error(services, catalog):
    intent = MutationIntent(
        OperationType.REPLACE,
        _selector(catalog, "color", FieldType.SELECT, options=("red", "green", "blue")),
        ScalarValue("red"),
        ("p1", "d1"),
    )
    preview = await services["bulk_edit"].diff.compute(intent)
    assert [e.asset_id for e in preview.affected] == ["p1"]
    assert preview.errored[0].asset_id == "d1"
    assert "read-only" in preview.errored[0].errors[0]


@pytest.mark.asyncio
async def test_schema_drift_is_an_error(services, catalog):
    stale = RegularFieldSelector(
        field_id=catalog["fields"]["title"],
        key="title",
        label="Title",
        field_type=FieldType.NUMBER,
    )
    preview = await services["bulk_edit"].diff.compute(MutationIntent(OperationType.ADD, stale, ScalarValue(1), ("p1",)))
    assert "changed since it was selected" in preview.errored[0].errors[0]


@pytest.mark.asyncio
async def test_collections_sync_preview(services, catalog):
    collections = services["collections"]
    fav, port, arch = (catalog["collections"][n] for n in ("Favorites", "Portfolio", "Archive"))
    await collections.add_asset_to_collection("p1", port)
    await collections.add_asset_to_collection("p1", arch)
    await collections.add_asset_to_collection("p2", fav)
    await collections.add_asset_to_collection("p2", port)

    intent = MutationIntent(OperationType.ADD, CollectionsFieldSelector(), IdListValue((fav, port)), ("p1", "p2", "p3"))
    preview = await services["bulk_edit"].diff.compute(intent)

    assert [e.asset_id for e in preview.affected] == ["p1", "p3"]
    assert preview.unaffected == ["p2"]
    change = preview.affected[0].changes[0]
    assert change.field_label == "Collections"
    # Collection ids follow creation order.
    assert change.old_display == "Portfolio, Archive"
    assert change.new_display == "Favorites, Portfolio"
    assert preview.affected[1].changes[0].old_display == "Not set"


@pytest.mark.asyncio
async def test_collections_unknown_id_is_an_error(services, catalog):
    intent = MutationIntent(OperationType.REPLACE, CollectionsFieldSelector(), IdListValue((9999,)), ("p1", "p2"))
    preview = await services["bulk_edit"].diff.compute(intent)
    assert len(preview.errored) == 2
    assert preview.errored[0].errors[0] == "Collection not found: 9999"


@pytest.mark.asyncio
async def test_clear_collections(services, catalog):
    await services["collections"].add_asset_to_collection("p1", catalog["collections"]["Favorites"])
    intent = MutationIntent(OperationType.CLEAR, CollectionsFieldSelector(), NoValue(), ("p1", "p2"))
    preview = await services["bulk_edit"].diff.compute(intent)
    assert [e.asset_id for e in preview.affected] == ["p1"]
    assert preview.affected[0].changes[0].new_display == "Not set"
    assert preview.unaffected == ["p2"]


@pytest.mark.asyncio
async def test_slow_asset_times_out_without_blocking_others(services, catalog):
    class _SlowStore:
        def __init__(self, inner):
            self._inner = inner

        async def get_value(self, asset_id, field):
            if asset_id == "p2":
                await asyncio.sleep(5)
            return await self._inner.get_value(asset_id, field)

    diff = DiffComputer(
        services["schema"],
        _SlowStore(services["metadata_store"]),
        services["collections"],
        max_concurrency=2,
        asset_timeout=0.2,
    )
    intent = MutationIntent(OperationType.REPLACE, _selector(catalog, "title", FieldType.TEXT), ScalarValue("New"), ("p1", "p2", "p3"))
    preview = await diff.compute(intent)
    assert [e.asset_id for e in preview.affected] == ["p1", "p3"]
    assert preview.errored[0].asset_id == "p2"
    assert "Timed out" in preview.errored[0].errors[0]


@pytest.mark.asyncio
async def test_collections_are_checked_per_asset_category(services, catalog):
    fav = catalog["collections"]["Favorites"]
    intent = MutationIntent(OperationType.ADD, CollectionsFieldSelector(), IdListValue((fav,)), ("p1", "d1", "n1"))
    preview = await services["bulk_edit"].diff.compute(intent)

    assert [e.asset_id for e in preview.affected] == ["p1"]
    errors = {e.asset_id: e.errors for e in preview.errored}
    assert errors["d1"] == ("Field 'Collections' is not available for this asset's category",)
    assert errors["n1"] == ("Asset has no category",)
    assert _partition(preview) == ["d1", "n1", "p1"]


@pytest.mark.asyncio
async def test_value_outside_current_options_is_an_error(services, catalog):
    selector = _selector(catalog, "mood", FieldType.MULTISELECT, options=("calm", "bright", "dark"))
    await services["db"].aexecute(
        "UPDATE metadata_fields SET options = ? WHERE id = ?",
        ('["calm", "bright"]', catalog["fields"]["mood"]),
    )
    intent = MutationIntent(OperationType.ADD, selector, StringListValue(("calm", "dark")), ("p1",))
    preview = await services["bulk_edit"].diff.compute(intent)

    assert preview.affected == []
    assert preview.errored[0].errors == ("Option no longer available for 'Mood': dark",)
