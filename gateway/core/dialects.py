from enum import Enum
from typing import Any, Dict, Mapping

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import AsyncEngine

from gateway.core.errors import ConfigurationError

# URL schemes that point at a search-engine cluster instead of a database
SEARCH_ENGINE_SCHEMES = ("elasticsearch", "elasticsearch+https", "es", "es+https")


class DialectFamily(str, Enum):
    RELATIONAL = "relational"
    SEARCH = "search"


class Dialect:
    """
    Backend conventions shared by the query-builder and session collaborators.

    One instance is chosen per datasource at bootstrap and cached on its
    binding, so callers branch on `family` instead of re-detecting.
    """

    family: DialectFamily

    def __init__(self, name: str):
        self.name = name

    @property
    def is_search_engine(self) -> bool:
        return self.family is DialectFamily.SEARCH

    def quote(self, identifier: str) -> str:
        raise NotImplementedError

    def map_row(self, row: Any) -> Dict[str, Any]:
        raise NotImplementedError

    def __eq__(self, other):
        return (
            isinstance(other, Dialect)
            and other.family is self.family
            and other.name == self.name
        )

    def __hash__(self):
        return hash((self.family, self.name))

    def __repr__(self):
        return f"{type(self).__name__}({self.name!r})"


class RelationalDialect(Dialect):
    family = DialectFamily.RELATIONAL

    _QUOTES = {"mysql": ("`", "`"), "mariadb": ("`", "`"), "mssql": ("[", "]")}

    def quote(self, identifier: str) -> str:
        left, right = self._QUOTES.get(self.name, ('"', '"'))
        return f"{left}{identifier}{right}"

    def map_row(self, row: Any) -> Dict[str, Any]:
        # sqlalchemy Row exposes its mapping view, plain mappings pass through
        mapping = getattr(row, "_mapping", row)
        return dict(mapping)


class SearchEngineDialect(Dialect):
    family = DialectFamily.SEARCH

    def __init__(self, name: str = "elasticsearch"):
        super().__init__(name)

    def quote(self, identifier: str) -> str:
        return identifier

    def map_row(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Flatten a search hit: `_source` fields plus the document `_id`."""
        document = dict(row.get("_source") or {})
        if "_id" in row:
            document.setdefault("_id", row["_id"])
        return document


def is_search_engine_url(url: str) -> bool:
    scheme = url.split("://", 1)[0].strip().lower()
    return scheme in SEARCH_ENGINE_SCHEMES


def detect_dialect(url: str) -> Dialect:
    """
    Pick the dialect from a datasource URL.

    Examples:
        "postgresql+asyncpg://u:p@host/db" -> RelationalDialect("postgresql")
        "es://localhost:9200"              -> SearchEngineDialect()
    """
    if is_search_engine_url(url):
        return SearchEngineDialect()
    try:
        backend = make_url(url).get_backend_name()
    except ArgumentError as error:
        raise ConfigurationError(f"Cannot parse datasource url {url!r}") from error
    return RelationalDialect(backend)


def dialect_for_engine(engine: AsyncEngine) -> Dialect:
    return RelationalDialect(engine.dialect.name)
