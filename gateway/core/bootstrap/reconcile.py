# gateway/core/bootstrap/reconcile.py
"""
RECONCILE MODULE - merge the live database schema into user table config

Data Flow:
    live database -> introspect_schema() -> SchemaRow list
                                               ↓
    user TableConfig  ----------------> reconcile_tables() -> merged config

Rules:
    - Column type and comment always come from the live schema
    - A table comment declared by the user is kept, otherwise the schema one
    - Tables and columns the user never declared are added
"""

import asyncio
import logging
from typing import Dict, List, NamedTuple, Optional

from sqlalchemy import inspect
from sqlalchemy.exc import CompileError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from gateway.core.database import Binding
from gateway.core.errors import ConfigurationError
from gateway.core.schemas import ColumnConfig, TableConfig

logger = logging.getLogger(__name__)


class SchemaRow(NamedTuple):
    """One (table, column) pair as reported by the database."""

    table_name: str
    table_comment: str
    column_name: Optional[str]
    data_type: Optional[str]
    column_comment: str


def normalize_type(column_type) -> str:
    """
    Lower-case base type name.

    Examples:
        VARCHAR(20) -> "varchar"
        NUMERIC(12, 2) -> "numeric"
    """
    try:
        rendered = str(column_type)
    except CompileError:
        rendered = type(column_type).__name__
    return rendered.split("(", 1)[0].strip().lower()


def read_table_comment(inspector, table: str) -> str:
    try:
        return inspector.get_table_comment(table).get("text") or ""
    except NotImplementedError:
        # e.g. SQLite keeps no comments
        return ""


def read_schema(sync_conn) -> List[SchemaRow]:
    inspector = inspect(sync_conn)
    rows = []
    for table in inspector.get_table_names():
        table_comment = read_table_comment(inspector, table)
        columns = inspector.get_columns(table)
        if not columns:
            rows.append(SchemaRow(table, table_comment, None, None, ""))
        for column in columns:
            rows.append(
                SchemaRow(
                    table_name=table,
                    table_comment=table_comment,
                    column_name=column["name"],
                    data_type=normalize_type(column["type"]),
                    column_comment=column.get("comment") or "",
                )
            )
    return rows


async def introspect_schema(engine: AsyncEngine) -> List[SchemaRow]:
    async with engine.connect() as conn:
        return await conn.run_sync(read_schema)


def reconcile_tables(
    tables: Dict[str, TableConfig], rows: List[SchemaRow]
) -> Dict[str, TableConfig]:
    """
    Merge schema rows into `tables` in place and return it.

    Args:
        tables: User table config of one database.
        rows: Live schema rows of the same database.

    Returns:
        The same dict, now covering every table and column of the database.

    Example:
        user:   orders {comment: "User comment"}
        schema: orders "Schema comment", status varchar
        result: orders {comment: "User comment", columns: {status: varchar}}
    """
    for row in rows:
        table_config = tables.get(row.table_name)
        if table_config is None:
            table_config = TableConfig(comment=row.table_comment)
            tables[row.table_name] = table_config
        elif table_config.comment is None:
            table_config.comment = row.table_comment

        if row.column_name is None:
            continue

        column_config = table_config.columns.get(row.column_name)
        if column_config is None:
            column_config = ColumnConfig()
            table_config.columns[row.column_name] = column_config
        column_config.type = row.data_type
        column_config.comment = row.column_comment

    return tables


async def reconcile_all(
    bindings: Dict[str, Binding], tables: Dict[str, Dict[str, TableConfig]]
) -> None:
    """
    Introspect every relational database concurrently and reconcile its config.

    Search-engine databases are skipped. All databases are awaited before
    failing, so the error names every database that could not be read.
    """
    relational = [b for b in bindings.values() if not b.dialect.is_search_engine]
    results = await asyncio.gather(
        *(introspect_schema(b.handle) for b in relational), return_exceptions=True
    )

    failures = []
    for binding, result in zip(relational, results):
        if isinstance(result, BaseException) and not isinstance(result, Exception):
            raise result
        if isinstance(result, (SQLAlchemyError, OSError)):
            failures.append((binding.name, result))
            continue
        if isinstance(result, Exception):
            raise result

        db_tables = tables.setdefault(binding.name, {})
        reconcile_tables(db_tables, result)
        logger.info(
            f"Reconciled [{binding.name}]: {len(db_tables)} table(s), "
            f"{len(result)} column row(s) from live schema"
        )

    if failures:
        details = "; ".join(f"[{name}] {error}" for name, error in failures)
        raise ConfigurationError(
            f"Schema introspection failed: {details}"
        ) from failures[0][1]
