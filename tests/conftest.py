import sys
from pathlib import Path

import pytest_asyncio

# Tests live at <repo>/tests/ so the repo root is one parent above.
REPO_ROOT = Path(__file__).resolve().parents[1]

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

TOKEN_SECRET = "test-secret"


@pytest_asyncio.fixture
async def services(tmp_path):
    from dam_backend.deps import build_services

    db_path = str(tmp_path / "dam_test.sqlite")
    svc_res = await build_services(db_path, token_secret=TOKEN_SECRET)
    assert svc_res.ok, svc_res.error
    svc = svc_res.data
    try:
        yield svc
    finally:
        await svc["db"].aclose()


async def _seed_catalog(svc):
    schema = svc["schema"]
    assets = svc["assets"]
    collections = svc["collections"]

    photos = (await schema.create_category("Photos")).data
    docs = (await schema.create_category("Documents")).data

    fields = {}

    async def _field(key, label, ftype, **kwargs):
        res = await schema.create_field(key, label, ftype, **kwargs)
        assert res.ok, res.error
        fields[key] = res.data

    await _field("title", "Title", "text")
    await _field("keywords", "Keywords", "tags")
    await _field("color", "Color", "select", options=["red", "green", "blue"])
    await _field("mood", "Mood", "multiselect", options=["calm", "bright", "dark"])
    await _field("rating", "Rating", "rating")
    await _field("approved", "Approved", "boolean")
    await _field("shot_date", "Shot date", "date")
    await _field("collection", "Collection", "text")
    await _field("file_size", "File size", "number", population_mode="automatic")
    await _field("checksum", "Checksum", "text", readonly=True)
    await _field("internal_ref", "Internal ref", "text", is_internal_only=True)
    await _field("legacy_code", "Legacy code", "text")

    photo_keys = [
        "title", "keywords", "color", "mood", "rating", "approved",
        "shot_date", "collection", "file_size", "checksum", "internal_ref",
    ]
    for order, key in enumerate(photo_keys):
        res = await schema.attach_field(photos, fields[key], sort_order=order)
        assert res.ok, res.error
    await schema.attach_field(photos, fields["legacy_code"], group_key="legacy", group_label="Legacy", is_edit_hidden=True)

    await schema.attach_field(docs, fields["title"], sort_order=0)
    await schema.attach_field(docs, fields["keywords"], sort_order=1)
    await schema.attach_field(docs, fields["color"], sort_order=2, is_readonly=True)
    await schema.attach_field(docs, fields["collection"], sort_order=3, is_edit_hidden=True)

    for aid, title, filename, category in (
        ("p1", "Sunset", "sunset.jpg", photos),
        ("p2", "Beach", "beach.jpg", photos),
        ("p3", None, "IMG_0003.jpg", photos),
        ("p4", "Forest", "forest.jpg", photos),
        ("p5", "Harbor", "harbor.jpg", photos),
        ("d1", "Contract", "contract.pdf", docs),
        ("n1", "Loose file", "loose.bin", None),
    ):
        res = await assets.create(aid, title=title, original_filename=filename, category_id=category)
        assert res.ok, res.error

    collection_ids = {}
    for name in ("Favorites", "Portfolio", "Archive"):
        res = await collections.create(name)
        assert res.ok, res.error
        collection_ids[name] = res.data["id"]

    return {
        "photos": photos,
        "docs": docs,
        "fields": fields,
        "collections": collection_ids,
    }


@pytest_asyncio.fixture
async def catalog(services):
    return await _seed_catalog(services)
