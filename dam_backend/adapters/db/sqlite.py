"""
SQLite database connection manager (aiosqlite-backed).

Design notes:
- The public API is async and never raises to callers; it returns `Result(...)`.
- Writes are serialized through a single asyncio write lock; reads use any
  pooled connection (WAL mode lets them run next to a writer).
- `atransaction()` pins one connection to the current task through a
  context variable so every statement issued inside the block joins the
  same transaction.
"""

from __future__ import annotations

import asyncio
import contextvars
import random
import sqlite3
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite

from ...config import DB_MAX_CONNECTIONS, DB_TIMEOUT
from ...shared import ErrorCode, Result, get_logger

logger = get_logger(__name__)

SQLITE_BUSY_TIMEOUT_MS = max(1000, int(float(DB_TIMEOUT) * 1000))
# Negative cache_size is in KiB. -16000 ~= 16 MiB cache.
SQLITE_CACHE_SIZE_KIB = -16000
ASSET_LOCKS_MAX = 10_000
ASSET_LOCKS_TTL_S = 600.0

_TX_TOKEN: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("dam_db_tx_token", default=None)


def _asset_lock_key(asset_id: Any) -> str:
    return str(asset_id or "").strip()


def _is_locked_error(exc: Exception) -> bool:
    try:
        msg = str(exc).lower()
    except Exception:
        return False
    return "database is locked" in msg or "database table is locked" in msg or "busy" in msg


class Sqlite:
    """
    Small connection pool for SQLite on top of aiosqlite.

    Connections are created lazily on first use inside the running event loop.
    """

    def __init__(self, db_path: str, max_connections: Optional[int] = None, timeout: float = 30.0):
        self.db_path = Path(db_path)
        max_conn = int(max_connections) if max_connections is not None else int(DB_MAX_CONNECTIONS or 4)
        self._max_conn_limit = max(1, max_conn)
        self._timeout = float(timeout)
        self._idle: List[aiosqlite.Connection] = []
        self._all_conns: set[aiosqlite.Connection] = set()
        self._async_sem: Optional[asyncio.Semaphore] = None
        self._write_lock: Optional[asyncio.Lock] = None
        self._tx_conns: Dict[str, aiosqlite.Connection] = {}
        self._asset_locks: Dict[str, Dict[str, Any]] = {}
        self._closed = False

        self._lock_retry_attempts = 6
        self._lock_retry_base_seconds = 0.05
        self._lock_retry_max_seconds = 0.75

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------ pool

    def _ensure_primitives(self) -> None:
        if self._async_sem is None:
            self._async_sem = asyncio.Semaphore(self._max_conn_limit)
        if self._write_lock is None:
            self._write_lock = asyncio.Lock()

    async def _apply_connection_pragmas(self, conn: aiosqlite.Connection) -> None:
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.execute(f"PRAGMA cache_size={SQLITE_CACHE_SIZE_KIB}")
        await conn.execute("PRAGMA temp_store=MEMORY")
        await conn.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
        await conn.execute("PRAGMA foreign_keys=ON")

    async def _create_connection(self) -> aiosqlite.Connection:
        # Autocommit mode; transactions are opened explicitly with BEGIN.
        conn = await aiosqlite.connect(str(self.db_path), timeout=self._timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        await self._apply_connection_pragmas(conn)
        self._all_conns.add(conn)
        return conn

    async def _acquire_connection_async(self) -> aiosqlite.Connection:
        if self._closed:
            raise RuntimeError("Database is closed")
        self._ensure_primitives()
        sem = self._async_sem
        assert sem is not None
        await sem.acquire()
        try:
            if self._idle:
                return self._idle.pop()
            return await self._create_connection()
        except BaseException:
            sem.release()
            raise

    async def _release_connection_async(self, conn: aiosqlite.Connection) -> None:
        try:
            if self._closed:
                await self._close_conn_quietly(conn)
            else:
                self._idle.append(conn)
        finally:
            if self._async_sem is not None:
                self._async_sem.release()

    async def _close_conn_quietly(self, conn: aiosqlite.Connection) -> None:
        self._all_conns.discard(conn)
        try:
            await conn.close()
        except Exception as exc:
            logger.debug("Failed to close connection: %s", exc)

    async def _sleep_backoff(self, attempt: int) -> None:
        delay = min(self._lock_retry_max_seconds, self._lock_retry_base_seconds * (2 ** attempt))
        await asyncio.sleep(delay + random.uniform(0, delay / 2))

    # ------------------------------------------------------------- asset locks

    def _prune_asset_locks(self, now: float) -> None:
        if len(self._asset_locks) <= ASSET_LOCKS_MAX:
            cutoff = now - ASSET_LOCKS_TTL_S
            for key, entry in list(self._asset_locks.items()):
                if entry["last"] < cutoff and not entry["lock"].locked():
                    self._asset_locks.pop(key, None)
            return
        idle = sorted(
            ((entry["last"], key) for key, entry in self._asset_locks.items() if not entry["lock"].locked()),
        )
        for _, key in idle[: len(self._asset_locks) - ASSET_LOCKS_MAX]:
            self._asset_locks.pop(key, None)

    def _get_or_create_asset_lock(self, asset_id: Any) -> asyncio.Lock:
        key = _asset_lock_key(asset_id)
        now = time.time()
        entry = self._asset_locks.get(key)
        if entry:
            entry["last"] = now
            return entry["lock"]
        lock = asyncio.Lock()
        self._asset_locks[key] = {"lock": lock, "last": now}
        self._prune_asset_locks(now)
        return lock

    @asynccontextmanager
    async def lock_for_asset(self, asset_id: Any):
        """
        Async context manager that serializes work per asset.
        """
        lock = self._get_or_create_asset_lock(asset_id)
        await lock.acquire()
        try:
            yield
        finally:
            lock.release()

    # --------------------------------------------------------------- execute

    @staticmethod
    def _rows_to_dicts(rows: Any) -> List[Dict[str, Any]]:
        if not rows:
            return []
        return [dict(r) for r in rows]

    @staticmethod
    def _is_write_sql(query: str) -> bool:
        q = str(query or "").lstrip()
        if not q:
            return False
        head = q.split(None, 1)[0].upper()
        return head not in ("SELECT", "PRAGMA", "WITH", "EXPLAIN")

    async def _execute_with_cursor_result(
        self,
        conn: aiosqlite.Connection,
        query: str,
        params: Optional[tuple],
        *,
        fetch: bool,
    ) -> Result[Any]:
        for attempt in range(self._lock_retry_attempts + 1):
            try:
                cursor = await conn.execute(query, params or ())
                try:
                    if fetch:
                        rows = await cursor.fetchall()
                        return Result.Ok(self._rows_to_dicts(rows))
                    return self._cursor_write_result(cursor, query)
                finally:
                    await cursor.close()
            except sqlite3.OperationalError as exc:
                if _is_locked_error(exc) and attempt < self._lock_retry_attempts:
                    await self._sleep_backoff(attempt)
                    continue
                raise
        return Result.Err(ErrorCode.DB_ERROR, "Query failed after retries")

    @staticmethod
    def _cursor_write_result(cursor: Any, query: str) -> Result[Any]:
        # INSERT yields the new rowid; anything else (or an ignored insert) yields rowcount.
        rowcount = getattr(cursor, "rowcount", None)
        rowcount = rowcount if rowcount is not None and rowcount >= 0 else 0
        head = str(query or "").lstrip().split(None, 1)[0].upper() if str(query or "").strip() else ""
        last_id = getattr(cursor, "lastrowid", None)
        if head in ("INSERT", "REPLACE") and rowcount > 0 and last_id:
            return Result.Ok(last_id)
        return Result.Ok(rowcount)

    async def _execute_guarded(self, conn: aiosqlite.Connection, query: str, params: Optional[tuple], fetch: bool) -> Result[Any]:
        try:
            return await self._execute_with_cursor_result(conn, query, params, fetch=fetch)
        except sqlite3.IntegrityError as exc:
            logger.warning("Integrity error: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, f"Integrity error: {exc}")
        except sqlite3.OperationalError as exc:
            logger.error("Operational error: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, f"Operational error: {exc}")
        except sqlite3.DatabaseError as exc:
            logger.error("Database error: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, str(exc))

    async def aexecute(self, query: str, params: Optional[tuple] = None, fetch: bool = False) -> Result[Any]:
        """Execute one SQL statement; joins the current transaction if one is open."""
        token = _TX_TOKEN.get()
        if token:
            conn = self._tx_conns.get(token)
            if conn is None:
                return Result.Err(ErrorCode.DB_ERROR, "Transaction connection missing")
            return await self._execute_guarded(conn, query, params, fetch)

        try:
            self._ensure_primitives()
            is_write = self._is_write_sql(query)
            if is_write:
                assert self._write_lock is not None
                async with self._write_lock:
                    return await self._execute_pooled(query, params, fetch)
            return await self._execute_pooled(query, params, fetch)
        except Exception as exc:
            logger.error("Unexpected database error: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, str(exc))

    async def _execute_pooled(self, query: str, params: Optional[tuple], fetch: bool) -> Result[Any]:
        conn = await self._acquire_connection_async()
        try:
            return await self._execute_guarded(conn, query, params, fetch)
        finally:
            await self._release_connection_async(conn)

    async def aquery(self, sql: str, params: Optional[tuple] = None) -> Result[List[Dict[str, Any]]]:
        """Execute a SELECT query and return rows as dicts."""
        return await self.aexecute(sql, params, fetch=True)

    async def aquery_one(self, sql: str, params: Optional[tuple] = None) -> Result[Optional[Dict[str, Any]]]:
        """Execute a SELECT query and return the first row (or None)."""
        res = await self.aquery(sql, params)
        if not res.ok:
            return Result.Err(res.code, res.error or "Query failed")
        rows = res.data or []
        return Result.Ok(rows[0] if rows else None)

    async def aexecutemany(self, query: str, params_list: List[Tuple]) -> Result[int]:
        """Execute the same statement for each parameter tuple inside one transaction."""
        if not params_list:
            return Result.Ok(0)
        try:
            async with self.atransaction() as tx:
                if not tx.ok:
                    return Result.Err(tx.code, tx.error or "Failed to begin transaction")
                for params in params_list:
                    res = await self.aexecute(query, params)
                    if not res.ok:
                        raise sqlite3.DatabaseError(res.error or "executemany failed")
            if not tx.ok:
                return Result.Err(tx.code, tx.error or "Commit failed")
            return Result.Ok(len(params_list))
        except Exception as exc:
            return Result.Err(ErrorCode.DB_ERROR, str(exc))

    async def aexecutescript(self, script: str) -> Result[bool]:
        """Execute a multi-statement SQL script (schema DDL)."""
        try:
            self._ensure_primitives()
            assert self._write_lock is not None
            async with self._write_lock:
                conn = await self._acquire_connection_async()
                try:
                    await conn.executescript(script)
                    return Result.Ok(True)
                finally:
                    await self._release_connection_async(conn)
        except Exception as exc:
            logger.error("Script execution failed: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, str(exc))

    # ----------------------------------------------------------- transactions

    @staticmethod
    def _begin_stmt_for_mode(mode: str) -> str:
        if isinstance(mode, str) and mode.lower() in ("deferred", "immediate", "exclusive"):
            return f"BEGIN {mode.upper()}"
        return "BEGIN IMMEDIATE"

    async def _begin_tx_with_retry(self, conn: aiosqlite.Connection, begin_stmt: str) -> None:
        for attempt in range(self._lock_retry_attempts + 1):
            try:
                await conn.execute(begin_stmt)
                return
            except sqlite3.OperationalError as exc:
                if _is_locked_error(exc) and attempt < self._lock_retry_attempts:
                    await self._sleep_backoff(attempt)
                    continue
                raise

    @asynccontextmanager
    async def atransaction(self, mode: str = "immediate"):
        """
        Async context manager for a DB transaction.

        Yields a `Result`; when `ok` is False the block should bail out.
        An exception inside the block rolls back and propagates. A failed
        commit flips the yielded result to an error after the block exits.
        """
        existing = _TX_TOKEN.get()
        if existing and existing in self._tx_conns:
            # Nested use joins the outer transaction.
            yield Result.Ok(True)
            return

        tx_state: Result[bool] = Result.Ok(True)
        self._ensure_primitives()
        lock = self._write_lock
        assert lock is not None
        await lock.acquire()
        conn: Optional[aiosqlite.Connection] = None
        begin_error: Optional[Exception] = None
        try:
            conn = await self._acquire_connection_async()
            await self._begin_tx_with_retry(conn, self._begin_stmt_for_mode(mode))
        except BaseException as exc:
            if conn is not None:
                await self._rollback_quietly(conn)
                await self._release_connection_async(conn)
            lock.release()
            if not isinstance(exc, Exception):
                raise
            begin_error = exc
        if begin_error is not None or conn is None:
            yield Result.Err(ErrorCode.DB_ERROR, f"Failed to begin transaction: {begin_error}")
            return

        token = f"tx_{uuid.uuid4().hex}"
        self._tx_conns[token] = conn
        token_handle = _TX_TOKEN.set(token)
        try:
            yield tx_state
            try:
                await conn.commit()
            except Exception as exc:
                await self._rollback_quietly(conn)
                tx_state.ok = False
                tx_state.code = ErrorCode.DB_ERROR.value
                tx_state.error = f"Commit failed: {exc}"
        except BaseException:
            await self._rollback_quietly(conn)
            raise
        finally:
            _TX_TOKEN.reset(token_handle)
            self._tx_conns.pop(token, None)
            await self._release_connection_async(conn)
            lock.release()

    async def _rollback_quietly(self, conn: aiosqlite.Connection) -> None:
        try:
            await conn.rollback()
        except Exception as exc:
            logger.debug("Rollback failed: %s", exc)

    # ----------------------------------------------------------------- schema

    async def ahas_table(self, table_name: str) -> bool:
        res = await self.aquery(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            (table_name,),
        )
        return bool(res.ok and res.data)

    async def aget_schema_version(self) -> int:
        if not await self.ahas_table("metadata"):
            return 0
        res = await self.aquery("SELECT value FROM metadata WHERE key = 'schema_version'")
        if not res.ok or not res.data:
            return 0
        try:
            return int(res.data[0].get("value") or 0)
        except (TypeError, ValueError):
            return 0

    async def aset_schema_version(self, version: int) -> Result[bool]:
        res = await self.aexecute(
            "INSERT OR REPLACE INTO metadata (key, value) VALUES ('schema_version', ?)",
            (str(int(version)),),
        )
        if not res.ok:
            return Result.Err(res.code, res.error or "Failed to set schema version")
        return Result.Ok(True)

    async def aclose(self) -> None:
        """Close every pooled connection."""
        self._closed = True
        for conn in list(self._all_conns):
            await self._close_conn_quietly(conn)
        self._idle.clear()
        self._tx_conns.clear()
