# gateway/core/bootstrap/tables.py
"""
TABLE CONFIG LOADER - read user table declarations from a directory

Layout (walked exactly two levels deep):
    <root>/
        users.json          -> table "users" of the default database
        db1/
            orders.json     -> table "orders" of datasource "db1"
        notes/readme.json   -> ignored, "notes" is not a datasource

A file's base name is the table name unless the file sets "table".
When a root-level file and a default-database file describe the same table,
the datasource-level values win key by key.
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Iterable

from pydantic import ValidationError

from gateway.core.config import deep_merge, read_json_object
from gateway.core.errors import ConfigurationError
from gateway.core.schemas import TableConfig

logger = logging.getLogger(__name__)

RawTables = Dict[str, Dict[str, Any]]


def read_table_file(path: Path) -> Dict[str, Any]:
    """
    Read one table file and return {table_name: raw_config}.

    Example:
        tables/db1/orders.json with {"table": "t_orders", ...}
        -> {"t_orders": {...}}
    """
    raw = read_json_object(path)
    table_name = raw.get("table") or path.stem
    return {table_name: raw}


def read_table_dir(directory: Path) -> RawTables:
    tables: RawTables = {}
    for path in sorted(directory.iterdir()):
        if path.is_file() and path.suffix == ".json":
            tables.update(read_table_file(path))
    return tables


def to_table_configs(raw_tables: RawTables, db: str) -> Dict[str, TableConfig]:
    configs = {}
    for name, raw in raw_tables.items():
        try:
            configs[name] = TableConfig.model_validate(raw)
        except ValidationError as error:
            raise ConfigurationError(
                f"Invalid table config for [{db}.{name}]: {error}"
            ) from error
    return configs


def load_table_configs(
    root: str, databases: Iterable[str], default_db: str
) -> Dict[str, Dict[str, TableConfig]]:
    """
    Load every table config under `root`.

    Args:
        root: Table config directory (config key `table_config_path`).
        databases: Declared datasource names; other subdirectories are skipped.
        default_db: Database that owns the root-level files.

    Returns:
        {db: {table: TableConfig}}; empty when the directory does not exist.
    """
    root_path = Path(root)
    if not root_path.is_dir():
        logger.info(f"Table config directory {root_path} not found, skipping")
        return {}

    known: List[str] = list(databases)
    root_tables = read_table_dir(root_path)
    per_db: Dict[str, RawTables] = {}

    for child in sorted(root_path.iterdir()):
        if not child.is_dir():
            continue
        if child.name not in known:
            logger.debug(f"Ignoring {child}: not a declared datasource")
            continue
        per_db[child.name] = read_table_dir(child)

    if root_tables:
        db_level = per_db.get(default_db, {})
        merged = dict(root_tables)
        for name, raw in db_level.items():
            merged[name] = deep_merge(root_tables.get(name, {}), raw)
        per_db[default_db] = merged

    result = {db: to_table_configs(raw, db) for db, raw in per_db.items()}
    for db, tables in result.items():
        logger.info(f"Loaded {len(tables)} table config(s) for [{db}]")
    return result
