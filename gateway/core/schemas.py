from typing import Optional, Dict, Any
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =========================
# Enums
# =========================
class RequestType(str, Enum):
    DETAIL = "detail"
    QUERY = "query"
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    TRANSACTION = "transaction"
    STRUCT = "struct"
    NATIVE = "native"


# Keys that may appear at the top level of a non-native request
OPERATION_KEYS = (
    RequestType.DETAIL,
    RequestType.QUERY,
    RequestType.SELECT,
    RequestType.INSERT,
    RequestType.UPDATE,
    RequestType.DELETE,
    RequestType.TRANSACTION,
    RequestType.STRUCT,
)


class Template(str, Enum):
    OBJECT = "object"
    LIST = "list"
    TREE = "tree"
    PAGE = "page"


class AssociationKind(str, Enum):
    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_ONE = "many-to-one"
    # Returned when two tables are not related; never stored in config
    NONE = "none"

    def inverse(self) -> "AssociationKind":
        if self is AssociationKind.ONE_TO_MANY:
            return AssociationKind.MANY_TO_ONE
        if self is AssociationKind.MANY_TO_ONE:
            return AssociationKind.ONE_TO_MANY
        return self


# =========================
# TABLE CONFIG
# =========================
class AssociationConfig(BaseModel):
    target: str
    kind: Optional[AssociationKind] = None

    model_config = ConfigDict(extra="allow")

    @field_validator("kind", mode="before")
    @classmethod
    def normalize_kind(cls, value):
        # Accept "MANY_TO_ONE", "many_to_one" and "many-to-one"
        if isinstance(value, str):
            value = value.strip().lower().replace("_", "-")
            if value == AssociationKind.NONE.value:
                raise ValueError("'none' is not a declarable association kind")
        return value

    @property
    def resolved_kind(self) -> AssociationKind:
        return self.kind or AssociationKind.ONE_TO_ONE


class ColumnConfig(BaseModel):
    type: Optional[str] = None
    comment: Optional[str] = None
    association: Optional[AssociationConfig] = None

    model_config = ConfigDict(extra="allow")


class TableConfig(BaseModel):
    # Overrides the table name derived from the file name
    table: Optional[str] = None
    comment: Optional[str] = None
    columns: Dict[str, ColumnConfig] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")


# =========================
# REQUEST
# =========================
class Request(BaseModel):
    """
    Parsed form of one JSON request.

    Immutable once built by `gateway.core.parser.parse_request` and handed
    as-is to the query-builder collaborator.
    """

    kind: RequestType
    db: Optional[str] = None
    table: Optional[str] = None
    alias: Optional[str] = None
    template: Optional[Template] = None
    native: bool = False
    statement: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)
