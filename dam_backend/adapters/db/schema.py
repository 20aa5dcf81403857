"""
Database schema and migrations.
"""
import hashlib
import re
from typing import List

from ...shared import ErrorCode, Result, get_logger, log_success

logger = get_logger(__name__)

CURRENT_SCHEMA_VERSION = 3
# Schema version history (high-level):
# 1: assets, categories, metadata fields and append-only asset metadata
# 2: collections + membership
# 3: metadata history (audit) and used bulk preview nonces

SCHEMA_V1 = """
-- Metadata table for schema versioning
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE
);

-- Assets (storage lives elsewhere; only what the metadata workflow needs)
CREATE TABLE IF NOT EXISTS assets (
    id TEXT PRIMARY KEY,
    title TEXT,
    original_filename TEXT,
    category_id INTEGER,
    created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    deleted_at TEXT,  -- soft delete; deleted assets are "not found"
    FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE SET NULL
);

-- Field definitions
CREATE TABLE IF NOT EXISTS metadata_fields (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    key TEXT NOT NULL UNIQUE,
    display_label TEXT NOT NULL,
    type TEXT NOT NULL,  -- text, number, boolean, date, select, multiselect, rating, tags
    options TEXT DEFAULT '[]',  -- JSON array of allowed values (select/multiselect)
    readonly INTEGER DEFAULT 0,
    population_mode TEXT DEFAULT 'manual',  -- manual, automatic
    is_user_editable INTEGER DEFAULT 1,
    is_internal_only INTEGER DEFAULT 0
);

-- Which fields a category exposes, and in which schema group
CREATE TABLE IF NOT EXISTS category_fields (
    category_id INTEGER NOT NULL,
    field_id INTEGER NOT NULL,
    group_key TEXT NOT NULL DEFAULT 'general',
    group_label TEXT NOT NULL DEFAULT 'General',
    sort_order INTEGER DEFAULT 0,
    is_edit_hidden INTEGER DEFAULT 0,
    is_readonly INTEGER DEFAULT 0,
    PRIMARY KEY (category_id, field_id),
    FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE CASCADE,
    FOREIGN KEY (field_id) REFERENCES metadata_fields(id) ON DELETE CASCADE
);

-- Append-only metadata values: the current value is the row with superseded_at IS NULL
CREATE TABLE IF NOT EXISTS asset_metadata (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    asset_id TEXT NOT NULL,
    field_id INTEGER NOT NULL,
    value_json TEXT,
    is_cleared INTEGER DEFAULT 0,
    source TEXT DEFAULT 'user',
    created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    superseded_at TEXT,
    FOREIGN KEY (asset_id) REFERENCES assets(id) ON DELETE CASCADE,
    FOREIGN KEY (field_id) REFERENCES metadata_fields(id) ON DELETE CASCADE
);
"""

SCHEMA_V2 = """
CREATE TABLE IF NOT EXISTS collections (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE COLLATE NOCASE,
    created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE TABLE IF NOT EXISTS collection_assets (
    collection_id INTEGER NOT NULL,
    asset_id TEXT NOT NULL,
    added_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    PRIMARY KEY (collection_id, asset_id),
    FOREIGN KEY (collection_id) REFERENCES collections(id) ON DELETE CASCADE,
    FOREIGN KEY (asset_id) REFERENCES assets(id) ON DELETE CASCADE
);
"""

SCHEMA_V3 = """
CREATE TABLE IF NOT EXISTS asset_metadata_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    asset_metadata_id INTEGER,
    asset_id TEXT NOT NULL,
    field_id INTEGER NOT NULL,
    old_value_json TEXT,
    new_value_json TEXT,
    operation TEXT NOT NULL,  -- add, replace, clear, set
    source TEXT DEFAULT 'user',
    changed_by TEXT,
    created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);

CREATE TABLE IF NOT EXISTS bulk_tokens_used (
    nonce TEXT PRIMARY KEY,
    expires_at INTEGER NOT NULL,
    used_at INTEGER NOT NULL
);
"""

INDEXES = """
CREATE INDEX IF NOT EXISTS idx_assets_category ON assets(category_id);
CREATE INDEX IF NOT EXISTS idx_category_fields_field ON category_fields(field_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_asset_metadata_current
    ON asset_metadata(asset_id, field_id) WHERE superseded_at IS NULL;
CREATE INDEX IF NOT EXISTS idx_asset_metadata_asset_field ON asset_metadata(asset_id, field_id, id);
CREATE INDEX IF NOT EXISTS idx_collection_assets_asset ON collection_assets(asset_id);
CREATE INDEX IF NOT EXISTS idx_metadata_history_asset_field ON asset_metadata_history(asset_id, field_id, id);
CREATE INDEX IF NOT EXISTS idx_bulk_tokens_used_exp ON bulk_tokens_used(expires_at);
"""

# Columns added after a table first shipped; self-healed on startup.
COLUMN_DEFINITIONS = {
    "assets": [
        ("deleted_at", "deleted_at TEXT"),
    ],
    "category_fields": [
        ("is_edit_hidden", "is_edit_hidden INTEGER DEFAULT 0"),
        ("is_readonly", "is_readonly INTEGER DEFAULT 0"),
    ],
    "metadata_fields": [
        ("is_user_editable", "is_user_editable INTEGER DEFAULT 1"),
        ("is_internal_only", "is_internal_only INTEGER DEFAULT 0"),
    ],
}

_SAFE_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _is_safe_identifier(value: str) -> bool:
    return bool(value and isinstance(value, str) and _SAFE_IDENT_RE.match(value))


async def _get_table_columns(db, table_name: str) -> Result[List[str]]:
    if not _is_safe_identifier(table_name):
        return Result.Err(ErrorCode.INVALID_INPUT, f"Invalid table name: {table_name}")
    result = await db.aquery(f"PRAGMA table_info('{table_name}')")
    if not result.ok:
        return Result.Err(ErrorCode.DB_ERROR, f"Unable to inspect {table_name}: {result.error}")
    return Result.Ok([row["name"] for row in result.data or []])


async def table_has_column(db, table_name: str, column_name: str) -> bool:
    if not _is_safe_identifier(table_name) or not _is_safe_identifier(column_name):
        logger.warning("Invalid identifier in table_has_column: %s.%s", table_name, column_name)
        return False
    columns_result = await _get_table_columns(db, table_name)
    if not columns_result.ok:
        logger.warning("Unable to determine columns for %s.%s: %s", table_name, column_name, columns_result.error)
        return False
    return column_name in (columns_result.data or [])


async def _ensure_column(db, table_name: str, column_name: str, definition: str) -> Result[bool]:
    columns_result = await _get_table_columns(db, table_name)
    if not columns_result.ok:
        return Result.Err(columns_result.code, columns_result.error or "PRAGMA failed")
    if column_name in (columns_result.data or []):
        return Result.Ok(True)

    logger.info("Adding missing column %s.%s", table_name, column_name)
    return await db.aexecute(f"ALTER TABLE {table_name} ADD COLUMN {definition}")


async def ensure_columns_exist(db) -> Result[bool]:
    for table, columns in COLUMN_DEFINITIONS.items():
        for column_name, definition in columns:
            result = await _ensure_column(db, table, column_name, definition)
            if not result.ok:
                logger.error("Failed to ensure column %s.%s: %s", table, column_name, result.error)
                return result
    return Result.Ok(True)


async def ensure_tables_exist(db) -> Result[bool]:
    logger.info("Ensuring tables exist...")
    for script in (SCHEMA_V1, SCHEMA_V2, SCHEMA_V3):
        result = await db.aexecutescript(script)
        if not result.ok:
            logger.error("Failed to ensure base tables: %s", result.error)
            return result
    return Result.Ok(True)


async def ensure_indexes(db) -> Result[bool]:
    logger.info("Ensuring indexes exist...")
    result = await db.aexecutescript(INDEXES)
    if not result.ok:
        logger.error("Failed to ensure indexes: %s", result.error)
    return result


def _schema_fingerprint() -> str:
    """Stable fingerprint of the schema DDL (informational)."""
    ddl = "\n".join((SCHEMA_V1, SCHEMA_V2, SCHEMA_V3, INDEXES))
    normalized = "\n".join(line.strip() for line in ddl.splitlines() if line.strip())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


async def _ensure_schema_fingerprint(db) -> Result[bool]:
    fingerprint = _schema_fingerprint()
    existing = await db.aquery("SELECT value FROM metadata WHERE key = 'schema_ddl_hash'")
    if existing.ok and existing.data:
        current = (existing.data[0] or {}).get("value") or ""
        if current and current != fingerprint:
            logger.warning("Database schema fingerprint differs from expected (will self-heal columns anyway)")
    return await db.aexecute(
        "INSERT OR REPLACE INTO metadata (key, value) VALUES ('schema_ddl_hash', ?)",
        (fingerprint,),
    )


async def _ensure_schema(db) -> Result[bool]:
    result = await ensure_tables_exist(db)
    if not result.ok:
        return result

    result = await ensure_columns_exist(db)
    if not result.ok:
        return result

    result = await ensure_indexes(db)
    if not result.ok:
        return result

    version_result = await db.aset_schema_version(CURRENT_SCHEMA_VERSION)
    if not version_result.ok:
        logger.error("Failed to set schema version: %s", version_result.error)
        return version_result

    fp_result = await _ensure_schema_fingerprint(db)
    if not fp_result.ok:
        logger.warning("Failed to store schema fingerprint: %s", fp_result.error)

    log_success(logger, f"Schema ensured (version {CURRENT_SCHEMA_VERSION})")
    return Result.Ok(True)


async def init_schema(db) -> Result[bool]:
    """
    Initialize the schema (useful for tests or first-time installs).
    """
    return await _ensure_schema(db)


async def migrate_schema(db) -> Result[bool]:
    """
    Repair schema to current version by ensuring expected tables, columns
    and indexes exist.

    Args:
        db: Sqlite instance

    Returns:
        Result with success boolean
    """
    current_version = await db.aget_schema_version()
    logger.info("Ensuring schema (current version %s -> target %s)", current_version, CURRENT_SCHEMA_VERSION)

    repair_result = await _ensure_schema(db)
    if not repair_result.ok:
        return repair_result

    final_version = await db.aget_schema_version()
    if current_version == final_version:
        logger.info("Schema already reported up to date (%s)", final_version)
    else:
        log_success(logger, f"Schema migrated from version {current_version} to {final_version}")
    return Result.Ok(True)
