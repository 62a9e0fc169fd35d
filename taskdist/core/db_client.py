"""SQLite database client wrapper with CRUD operations."""

import asyncio
import json
import logging
import re
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite

from taskdist.core.config import settings
from taskdist.core.errors import DatabaseError, RecordNotFoundError


logger = logging.getLogger(__name__)


def _validate_collection_name(collection: str) -> None:
    """Validate that a collection name contains only alphanumeric characters and underscores."""
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", collection):
        msg = f"Invalid collection name: {collection}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def format_timestamp(value: datetime) -> str:
    """Serialize a datetime the way it is stored: ISO 8601 in UTC.

    Naive datetimes are assumed to already be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def _convert_record_ids(record: dict[str, Any]) -> dict[str, Any]:
    """Convert integer ID and foreign key fields to strings for Pydantic compatibility."""
    converted = record.copy()
    for key, value in converted.items():
        if isinstance(value, int) and (key == "id" or key.endswith("_id")):
            converted[key] = str(value)
    return converted


def _serialize_value(value: Any) -> Any:  # noqa: ANN401
    """Convert a Python value into something SQLite can bind."""
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict | list):
        return json.dumps(value)
    return value


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


def _parse_value(value: str, *, is_like: bool = False) -> str | int | float | bool | None:
    """Parse a string value to the appropriate Python type for SQLite."""
    if is_like:
        return value.replace("%", "\\%").replace("_", "\\_")

    # Zero-padded digits are identifiers, not numbers
    if value.isdigit() and (value == "0" or not value.startswith("0")):
        return int(value)
    if value.replace(".", "", 1).isdigit():
        return float(value)

    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False

    return value


def _get_sql_operator(op: str) -> str:
    """Map filter operator to SQL operator."""
    op_map = {
        "=": "=",
        "!=": "!=",
        ">": ">",
        "<": "<",
        ">=": ">=",
        "<=": "<=",
        "~": "LIKE",
    }
    sql_op = op_map.get(op)
    if not sql_op:
        msg = f"Unsupported operator: {op}"
        raise ValueError(msg)
    return sql_op


def _parse_single_comparison(comparison: str) -> tuple[str, str | int | float | None]:
    """Parse a single comparison expression into a SQL condition and parameter."""
    match = re.match(
        r"""(\w+)\s*(=|!=|>=|<=|>|<|~)\s*(['"])([^'"]*)\3""",
        comparison,
    )
    if not match:
        msg = f"Invalid filter syntax: {comparison}"
        raise ValueError(msg)

    field = match.group(1)
    op = match.group(2)
    raw_value = match.group(4)

    sql_op = _get_sql_operator(op)
    is_like = sql_op == "LIKE"
    value = _parse_value(raw_value, is_like=is_like)
    if is_like:
        return f"{field} LIKE ? ESCAPE '\\'", f"%{value}%"

    return f"{field} {sql_op} ?", value


def _parse_or_group(or_group: str) -> tuple[str, list[str | int | float | None]]:
    """Parse a parenthesized OR group into a SQL condition and parameters."""
    inner = or_group[1:-1]  # Remove parentheses
    or_parts = [p.strip() for p in inner.split("||")]
    or_conditions = []
    or_params = []

    for part in or_parts:
        cond, value = _parse_single_comparison(part)
        or_conditions.append(cond)
        or_params.append(value)

    return f"({' OR '.join(or_conditions)})", or_params


def _split_and_conditions(filter_query: str) -> list[str]:
    """Split filter query by && while preserving parenthesized groups."""
    parts = []
    current = ""
    paren_depth = 0

    for char in filter_query:
        if char == "(":
            paren_depth += 1
        elif char == ")":
            paren_depth -= 1

        current += char

        if paren_depth == 0 and current.endswith("&&"):
            parts.append(current[:-2].strip())
            current = ""

    if current.strip():
        parts.append(current.strip())

    return parts


def parse_filter(filter_query: str) -> tuple[str, list[str | int | float | None]]:
    """Parse filter syntax into a SQL WHERE clause and parameter list.

    Supports ``field = "value"`` comparisons joined with ``&&`` and
    parenthesized ``||`` groups, e.g. ``is_active = "1" && (type = "PORT" || type = "MARKET")``.
    """
    if not filter_query:
        return "", []

    parts = _split_and_conditions(filter_query)
    conditions = []
    params = []

    for raw_part in parts:
        part = raw_part.strip()

        # Handle parenthesized OR groups
        if part.startswith("(") and part.endswith(")"):
            cond, cond_params = _parse_or_group(part)
            conditions.append(cond)
            params.extend(cond_params)
        else:
            cond, value = _parse_single_comparison(part)
            conditions.append(cond)
            params.append(value)

    return " AND ".join(conditions), params


def _parse_where(where: dict[str, Any]) -> tuple[str, list[Any]]:
    """Build exact-match conditions bound as parameters.

    A list value matches any of its elements; an empty list matches nothing.
    """
    conditions = []
    params: list[Any] = []
    for field, value in where.items():
        if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", field):
            msg = f"Invalid field name: {field}"
            raise ValueError(msg)
        if isinstance(value, list | tuple):
            if not value:
                conditions.append("0")
                continue
            conditions.append(f"{field} IN ({', '.join('?' for _ in value)})")
            params.extend(_serialize_value(item) for item in value)
        else:
            conditions.append(f"{field} = ?")
            params.append(_serialize_value(value))
    return " AND ".join(conditions), params


def _parse_sort(sort: str) -> str:
    """Translate ``+field``/``-field``/``field DESC`` into a safe ORDER BY clause."""
    if not sort:
        return "id ASC"

    clauses = []
    for raw_part in sort.split(","):
        part = raw_part.strip()
        direction = "ASC"
        if part.startswith("-"):
            direction, part = "DESC", part[1:]
        elif part.startswith("+"):
            part = part[1:]

        match = re.match(r"^([A-Za-z_][A-Za-z0-9_]*)\s*(ASC|DESC)?$", part, re.IGNORECASE)
        if not match:
            logger.warning("Invalid sort parameter, using default", extra={"sort": sort})
            return "id ASC"
        clauses.append(f"{match.group(1)} {(match.group(2) or direction).upper()}")

    return ", ".join(clauses)


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_db_write_locks: dict[tuple[int, int, str], asyncio.Lock] = {}
_db_lock = asyncio.Lock()


def _cache_key(db_path: str | None) -> tuple[int, int, str]:
    """Key connections by thread, running loop, and database path."""
    loop = asyncio.get_running_loop()
    return threading.get_ident(), id(loop), str(get_db_path(db_path))


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    cache_key = _cache_key(db_path)

    if cache_key in _db_connections:
        return _db_connections[cache_key]

    async with _db_lock:
        # Double-check after acquiring lock
        if cache_key in _db_connections:
            return _db_connections[cache_key]

        path = get_db_path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(str(path))
        await conn.execute("PRAGMA foreign_keys = ON")
        await conn.execute("PRAGMA journal_mode = WAL")

        _db_connections[cache_key] = conn
        _db_write_locks[cache_key] = asyncio.Lock()

        logger.info(
            "Created new SQLite connection",
            extra={"db_path": str(path), "thread_id": cache_key[0], "loop_id": cache_key[1]},
        )
        return conn


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    cache_key = _cache_key(db_path)

    if cache_key not in _db_connections:
        return

    async with _db_lock:
        conn = _db_connections.pop(cache_key, None)
        _db_write_locks.pop(cache_key, None)
        if conn is None:
            return
        try:
            await conn.close()
        except aiosqlite.Error as e:
            logger.warning("Error closing SQLite connection", extra={"error": str(e)})
            return
        logger.info("Closed SQLite connection", extra={"db_path": cache_key[2]})


@asynccontextmanager
async def transaction(*, db_path: str | None = None) -> AsyncIterator[aiosqlite.Connection]:
    """Run a block of writes atomically.

    All writes share one connection per loop, so they are serialized behind a
    lock; the block commits as a whole or is rolled back.
    """
    conn = await get_connection(db_path=db_path)
    lock = _db_write_locks[_cache_key(db_path)]

    async with lock:
        try:
            yield conn
        except BaseException:
            await conn.rollback()
            raise
        await conn.commit()


async def init_db(*, db_path: str | None = None) -> None:
    """Initialize the database schema by delegating to schema.init_db()."""
    schema = __import__("taskdist.core.schema", fromlist=["init_db"])
    await schema.init_db(db_path=db_path)


def _wrap_error(e: Exception, *, action: str, collection: str) -> DatabaseError:
    """Translate driver errors into DatabaseError with a helpful message."""
    if isinstance(e, aiosqlite.OperationalError) and "no such table" in str(e):
        return DatabaseError(f"Table '{collection}' does not exist. Call init_db() first.")
    return DatabaseError(f"Failed to {action} {collection}: {e}")


async def create_record(*, collection: str, data: dict[str, Any]) -> dict[str, Any]:
    """Insert a new record and return it with its assigned id."""
    _validate_collection_name(collection)
    columns = list(data.keys())
    columns_str = ", ".join(columns)
    placeholders_str = ", ".join("?" for _ in columns)
    values = [_serialize_value(data[key]) for key in columns]

    query = f"INSERT INTO {collection} ({columns_str}) VALUES ({placeholders_str})"  # noqa: S608 - collection is validated
    try:
        async with transaction() as conn:
            cursor = await conn.execute(query, values)
            record_id = cursor.lastrowid
    except Exception as e:
        logger.error("create_record_failed", extra={"collection": collection, "error": str(e)})
        raise _wrap_error(e, action="create record in", collection=collection) from e

    logger.info("Created record", extra={"collection": collection, "record_id": record_id})
    return await get_record(collection=collection, record_id=str(record_id))


async def insert_many_or_ignore(*, collection: str, rows: list[dict[str, Any]]) -> int:
    """Insert rows atomically, skipping rows that collide with a unique index.

    Args:
        collection: Target table
        rows: Records to insert; all rows must share the same keys

    Returns:
        Number of rows actually inserted
    """
    if not rows:
        return 0

    _validate_collection_name(collection)
    columns = list(rows[0].keys())
    columns_str = ", ".join(columns)
    placeholders_str = ", ".join("?" for _ in columns)
    query = f"INSERT OR IGNORE INTO {collection} ({columns_str}) VALUES ({placeholders_str})"  # noqa: S608 - collection is validated

    created = 0
    try:
        async with transaction() as conn:
            for row in rows:
                cursor = await conn.execute(query, [_serialize_value(row[key]) for key in columns])
                created += max(cursor.rowcount, 0)
    except Exception as e:
        logger.error("insert_many_failed", extra={"collection": collection, "rows": len(rows), "error": str(e)})
        raise _wrap_error(e, action="insert into", collection=collection) from e

    logger.info(
        "Inserted records",
        extra={"collection": collection, "created": created, "skipped": len(rows) - created},
    )
    return created


async def get_record(*, collection: str, record_id: str) -> dict[str, Any]:
    """Fetch a single record by ID, raising RecordNotFoundError if not found."""
    _validate_collection_name(collection)
    try:
        conn = await get_connection()
        query = f"SELECT * FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        cursor = await conn.execute(query, (int(record_id),))
        row = await cursor.fetchone()
        columns = [description[0] for description in cursor.description]
    except ValueError as e:
        raise RecordNotFoundError(f"Record not found in {collection}: {record_id}") from e
    except Exception as e:
        logger.error("get_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        raise _wrap_error(e, action="get record from", collection=collection) from e

    if row is None:
        raise RecordNotFoundError(f"Record not found in {collection}: {record_id}")

    logger.debug("Retrieved record", extra={"collection": collection, "record_id": record_id})
    return _convert_record_ids(dict(zip(columns, row, strict=True)))


async def update_record(*, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
    """Update a record by ID and return the updated record."""
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)

    _validate_collection_name(collection)
    set_clause = ", ".join(f"{key} = ?" for key in data)
    values = [_serialize_value(val) for val in data.values()]

    query = f"UPDATE {collection} SET {set_clause} WHERE id = ?"  # noqa: S608 - collection is validated
    try:
        values.append(int(record_id))
        async with transaction() as conn:
            cursor = await conn.execute(query, values)
            updated = cursor.rowcount
    except ValueError as e:
        raise RecordNotFoundError(f"Record not found in {collection}: {record_id}") from e
    except Exception as e:
        logger.error("update_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        raise _wrap_error(e, action="update record in", collection=collection) from e

    if updated == 0:
        raise RecordNotFoundError(f"Record not found in {collection}: {record_id}")

    logger.info("Updated record", extra={"collection": collection, "record_id": record_id})
    return await get_record(collection=collection, record_id=record_id)


async def delete_record(*, collection: str, record_id: str) -> None:
    """Delete a record by ID, raising RecordNotFoundError if not found."""
    _validate_collection_name(collection)
    query = f"DELETE FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
    try:
        async with transaction() as conn:
            cursor = await conn.execute(query, (int(record_id),))
            deleted = cursor.rowcount
    except ValueError as e:
        raise RecordNotFoundError(f"Record not found in {collection}: {record_id}") from e
    except Exception as e:
        logger.error("delete_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        raise _wrap_error(e, action="delete record from", collection=collection) from e

    if deleted == 0:
        raise RecordNotFoundError(f"Record not found in {collection}: {record_id}")

    logger.info("Deleted record", extra={"collection": collection, "record_id": record_id})


async def list_records(
    *,
    collection: str,
    page: int = 1,
    per_page: int = 50,
    filter_query: str = "",
    where: dict[str, Any] | None = None,
    sort: str = "",
) -> list[dict[str, Any]]:
    """List records with optional filtering, sorting, and pagination.

    Args:
        collection: Table to read
        page: 1-based page number
        per_page: Page size
        filter_query: Filter expression, see parse_filter
        where: Exact matches on columns, values bound as-is (lists match any element)
        sort: Sort expression, see _parse_sort
    """
    _validate_collection_name(collection)

    conditions = []
    params: list[Any] = []
    if filter_query:
        filter_clause, filter_params = parse_filter(filter_query)
        conditions.append(filter_clause)
        params.extend(filter_params)
    if where:
        where_clause, where_params = _parse_where(where)
        conditions.append(where_clause)
        params.extend(where_params)
    where_sql = f"WHERE {' AND '.join(conditions)}" if conditions else ""

    order_by = _parse_sort(sort)
    offset = (page - 1) * per_page

    query = f"SELECT * FROM {collection} {where_sql} ORDER BY {order_by} LIMIT ? OFFSET ?"  # noqa: S608 - collection is validated
    params.extend([per_page, offset])

    try:
        conn = await get_connection()
        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        columns = [description[0] for description in cursor.description]
    except Exception as e:
        logger.error("list_records_failed", extra={"collection": collection, "error": str(e)})
        raise _wrap_error(e, action="list records from", collection=collection) from e

    records = [_convert_record_ids(dict(zip(columns, row, strict=True))) for row in rows]
    logger.debug("Listed records", extra={"collection": collection, "count": len(records)})
    return records


async def list_all_records(
    *,
    collection: str,
    filter_query: str = "",
    where: dict[str, Any] | None = None,
    sort: str = "",
    per_page: int = 500,
) -> list[dict[str, Any]]:
    """Page through list_records until every matching record is fetched."""
    records: list[dict[str, Any]] = []
    page = 1
    while True:
        batch = await list_records(
            collection=collection,
            page=page,
            per_page=per_page,
            filter_query=filter_query,
            where=where,
            sort=sort,
        )
        records.extend(batch)
        if len(batch) < per_page:
            return records
        page += 1
