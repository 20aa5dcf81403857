import pytest

from dam_backend.features.bulk_edit.field_resolver import FieldResolver
from dam_backend.features.bulk_edit.models import CollectionsFieldSelector
from dam_shared import Result


@pytest.mark.asyncio
async def test_resolves_bulk_editable_fields_with_current_values(services, catalog):
    store = services["metadata_store"]
    await store.set_value("p1", catalog["fields"]["title"], "Sunset")
    await store.set_value("p1", catalog["fields"]["keywords"], ["sea"])

    resolved = await services["bulk_edit"].editable_fields("p1")
    keys = [opt.selector.key for opt in resolved.fields]
    assert keys == ["title", "keywords", "color", "mood", "rating", "approved", "shot_date"]
    assert resolved.collections_field_visible

    assert resolved.find("title").current_value == "Sunset"
    assert resolved.find("keywords").current_value == ["sea"]
    assert resolved.find("mood").current_value == []
    assert resolved.find("rating").current_value is None
    assert resolved.find("collection") is None
    assert isinstance(resolved.find("collections").selector, CollectionsFieldSelector)


@pytest.mark.asyncio
async def test_category_readonly_and_hidden_collection(services, catalog):
    resolved = await services["bulk_edit"].editable_fields("d1")
    assert [opt.selector.key for opt in resolved.fields] == ["title", "keywords"]
    assert not resolved.collections_field_visible
    assert resolved.find("collections") is None


@pytest.mark.asyncio
async def test_fail_safe_on_missing_asset_or_category(services, catalog):
    bulk = services["bulk_edit"]
    for asset_id in ("ghost", "n1", None):
        resolved = await bulk.editable_fields(asset_id)
        assert resolved.fields == ()
        assert not resolved.collections_field_visible


@pytest.mark.asyncio
async def test_fail_safe_when_schema_load_fails(services, catalog):
    class _BrokenSchema:
        def __init__(self, inner):
            self._inner = inner

        async def get_editable_fields(self, asset_id):
            return await self._inner.get_editable_fields(asset_id)

        async def get_asset(self, asset_id):
            return await self._inner.get_asset(asset_id)

        async def get_metadata_schema(self, category_id):
            return Result.Err("DB_ERROR", "schema store offline")

    resolver = FieldResolver(_BrokenSchema(services["schema"]), services["metadata_store"])
    resolved = await resolver.resolve_fields("p1")
    assert resolved.fields == ()
    assert not resolved.collections_field_visible
