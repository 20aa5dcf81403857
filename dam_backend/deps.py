"""
Dependency injection - builds services.
Simple, debug-friendly DI without framework magic.
"""

from .adapters.db.schema import migrate_schema
from .adapters.db.sqlite import Sqlite
from .config import (
    BULK_ASSET_TIMEOUT,
    BULK_MAX_CONCURRENCY,
    BULK_MAX_TARGETS,
    DB_MAX_CONNECTIONS,
    DB_TIMEOUT,
    INDEX_DB,
    initialize_directories,
)
from .features.assets.service import AssetsService
from .features.bulk_edit.diff import DiffComputer
from .features.bulk_edit.executor import MutationExecutor
from .features.bulk_edit.field_resolver import FieldResolver
from .features.bulk_edit.service import BulkEditService
from .features.bulk_edit.token import PreviewTokenCodec, TokenReplayGuard
from .features.collections.service import CollectionsService
from .features.metadata import AssetMetadataStore, MetadataSchemaService
from .shared import ErrorCode, Result, get_logger, log_success

logger = get_logger(__name__)


def _resolve_db_path(db_path: str | None) -> str:
    return db_path if db_path is not None else INDEX_DB


def _init_db_or_error(db_path: str) -> Result[Sqlite]:
    logger.info(f"Initializing database: {db_path}")
    try:
        return Result.Ok(Sqlite(db_path, max_connections=DB_MAX_CONNECTIONS, timeout=DB_TIMEOUT))
    except Exception as exc:
        logger.error("Failed to initialize database: %s", exc)
        return Result.Err(ErrorCode.DB_ERROR, f"Failed to initialize database: {exc}")


async def _migrate_db_or_error(db: Sqlite) -> Result[bool]:
    migrate_result = await migrate_schema(db)
    if not migrate_result.ok:
        logger.error(f"Schema migration failed: {migrate_result.error}")
        return Result.Err(migrate_result.code or ErrorCode.DB_ERROR, f"Failed to initialize database: {migrate_result.error}")
    return Result.Ok(True)


def _build_bulk_edit(
    db: Sqlite,
    schema: MetadataSchemaService,
    store: AssetMetadataStore,
    collections: CollectionsService,
    codec: PreviewTokenCodec,
) -> BulkEditService:
    resolver = FieldResolver(schema, store)
    diff = DiffComputer(
        schema,
        store,
        collections,
        max_concurrency=BULK_MAX_CONCURRENCY,
        asset_timeout=BULK_ASSET_TIMEOUT,
    )
    executor = MutationExecutor(
        codec,
        TokenReplayGuard(db),
        schema,
        store,
        collections,
        max_concurrency=BULK_MAX_CONCURRENCY,
        asset_timeout=BULK_ASSET_TIMEOUT,
    )
    return BulkEditService(resolver, diff, codec, executor, max_targets=BULK_MAX_TARGETS)


async def build_services(db_path: str | None = None, *, token_secret: str | None = None) -> Result[dict]:
    """
    Build all services (DI container).

    Args:
        db_path: Path to SQLite database (default: from config.INDEX_DB)
        token_secret: Preview token signing secret (default: from config)

    Returns:
        Result[dict] of service instances
    """
    logger.info("Building services...")
    if db_path is None:
        try:
            initialize_directories()
        except Exception as exc:
            logger.error("Failed to initialize directories: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, f"Failed to initialize directories: {exc}")

    db_res = _init_db_or_error(_resolve_db_path(db_path))
    if not db_res.ok or db_res.data is None:
        return Result.Err(db_res.code or ErrorCode.DB_ERROR, db_res.error or "Failed to initialize database")
    db = db_res.data

    migrate_result = await _migrate_db_or_error(db)
    if not migrate_result.ok:
        await db.aclose()
        return Result.Err(migrate_result.code, migrate_result.error or "Failed to initialize database")

    assets = AssetsService(db)
    schema = MetadataSchemaService(db, assets)
    store = AssetMetadataStore(db)
    collections = CollectionsService(db)
    codec = PreviewTokenCodec(secret=token_secret)

    services = {
        "db": db,
        "assets": assets,
        "schema": schema,
        "metadata_store": store,
        "collections": collections,
        "bulk_edit": _build_bulk_edit(db, schema, store, collections, codec),
    }

    log_success(logger, "All services initialized")
    return Result.Ok(services)
