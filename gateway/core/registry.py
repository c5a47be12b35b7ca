"""
CONFIG REGISTRY - the merged configuration every other part reads from

Holds:
    1. Datasource bindings (name -> handle + dialect), in declaration order
    2. Per-database table config, reconciled with the live schema
    3. The current database of the request being executed

Everything except the current database is written once by bootstrap and
only read afterwards, so lookups take no lock. The current database lives
in a ContextVar: every asyncio task (and every thread) sees its own value,
so one request clearing it can never erase another request's value.
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Dict, Iterator, List, Optional

import httpx

from gateway.core.config import GatewayConfig
from gateway.core.database import Binding
from gateway.core.dialects import Dialect
from gateway.core.errors import ConfigurationError, UnknownTarget
from gateway.core.schemas import AssociationKind, ColumnConfig, TableConfig

logger = logging.getLogger(__name__)

UNKNOWN_TYPE = "unknown"

_current_database: ContextVar[Optional[str]] = ContextVar(
    "gateway_current_database", default=None
)


class ConfigRegistry:
    def __init__(
        self,
        config: GatewayConfig,
        bindings: Dict[str, Binding],
        tables: Optional[Dict[str, Dict[str, TableConfig]]] = None,
    ):
        self.config = config
        self._bindings = dict(bindings)
        self._tables = tables if tables is not None else {}

    # =========================
    # Databases
    # =========================
    @property
    def default_database(self) -> str:
        return self.resolve_default_database()

    def resolve_default_database(self) -> str:
        """Explicit `default_datasource`, else the first declared datasource."""
        if self.config.default_datasource:
            return self.config.default_datasource
        first = next(iter(self._bindings), None)
        if first is None:
            raise ConfigurationError("No datasource configured")
        return first

    def databases(self) -> List[str]:
        return list(self._bindings)

    def binding(self, db: str) -> Binding:
        if db not in self._bindings:
            raise UnknownTarget(f"Datasource [{db}] does not exist")
        return self._bindings[db]

    def dialect_of(self, db: str) -> Dialect:
        return self.binding(db).dialect

    def is_search_engine(self, db: Optional[str] = None) -> bool:
        db = db if db is not None else self.current_database()
        if db is None or db not in self._bindings:
            return False
        return self._bindings[db].dialect.is_search_engine

    def search_engine_database(self) -> Optional[str]:
        for name, binding in self._bindings.items():
            if binding.dialect.is_search_engine:
                return name
        return None

    def search_client(self) -> httpx.AsyncClient:
        db = self.search_engine_database()
        if db is None:
            raise ConfigurationError("No search-engine datasource configured")
        return self._bindings[db].handle

    def row_mapper(self, db: Optional[str] = None):
        db = db if db is not None else self.current_database()
        if db is None:
            db = self.resolve_default_database()
        return self.dialect_of(db).map_row

    # =========================
    # Table config
    # =========================
    def get_db_config(self, db: str) -> Dict[str, TableConfig]:
        return self._tables.get(db, {})

    def get_table_config(self, db: str, table: str) -> TableConfig:
        return self.get_db_config(db).get(table) or TableConfig()

    def get_columns_config(self, db: str, table: str) -> Dict[str, ColumnConfig]:
        return self.get_table_config(db, table).columns

    def get_column_type(self, db: str, table: str, column: str) -> str:
        column_config = self.get_columns_config(db, table).get(column)
        if column_config is None or column_config.type is None:
            return UNKNOWN_TYPE
        return column_config.type

    def all_tables(self, db: str) -> List[str]:
        return list(self.get_db_config(db))

    def validate_target(self, db: Optional[str], table: Optional[str]) -> None:
        """Raise UnknownTarget for an undeclared db or table.

        Search-engine indices are not declared locally, so they are not checked.
        """
        if not db or not table:
            return
        if db not in self._bindings and db not in self._tables:
            raise UnknownTarget(f"Datasource [{db}] does not exist")
        if self.is_search_engine(db):
            return
        if table not in self.get_db_config(db):
            raise UnknownTarget(f"Table [{table}] does not exist in [{db}]")

    def resolve_association(
        self, table_a: str, table_b: str, db: Optional[str] = None
    ) -> AssociationKind:
        """
        Relationship of `table_a` rows to `table_b` rows.

        A declaration on table_a's columns wins; otherwise a declaration on
        table_b's columns is read from the other side, so one-to-many becomes
        many-to-one and vice versa. Missing kind means one-to-one.

        Returns:
            AssociationKind.NONE when neither side declares the other.

        Example:
            orders.customer_id -> {target: customers, kind: many-to-one}
            resolve_association("orders", "customers") -> MANY_TO_ONE
            resolve_association("customers", "orders") -> ONE_TO_MANY
        """
        db = db if db is not None else self.current_database()
        if db is None:
            db = self.resolve_default_database()

        for column in self.get_columns_config(db, table_a).values():
            if column.association is not None and column.association.target == table_b:
                return column.association.resolved_kind

        for column in self.get_columns_config(db, table_b).values():
            if column.association is not None and column.association.target == table_a:
                return column.association.resolved_kind.inverse()

        return AssociationKind.NONE

    # =========================
    # Current database (request scoped)
    # =========================
    def set_current_database(self, db: str) -> Token:
        return _current_database.set(db)

    def clear_current_database(self, token: Optional[Token] = None) -> None:
        if token is not None:
            _current_database.reset(token)
        else:
            _current_database.set(None)

    def current_database(self) -> Optional[str]:
        return _current_database.get()

    @contextmanager
    def database_context(self, db: str) -> Iterator[str]:
        token = self.set_current_database(db)
        try:
            yield db
        finally:
            self.clear_current_database(token)

    async def close(self) -> None:
        for binding in self._bindings.values():
            await binding.close()
        logger.info(f"Closed {len(self._bindings)} datasource binding(s)")
