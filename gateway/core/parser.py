"""
REQUEST PARSER - turn one JSON request into an immutable Request

Steps (no I/O, every error raised before a backend is touched):
    1. Native passthrough: {"native": "select ..."} short-circuits
    2. Operation: exactly one key out of detail/query/select/insert/update/
       delete/transaction/struct
    3. Target: "[db.]table[ alias]", unqualified targets use the default db
    4. Template: optional, must be a known template name

Example:
    {"query": "db1.users admin"} -> Request(kind=QUERY, db="db1",
                                            table="users", alias="admin")
"""

import copy
import json
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from gateway.core.errors import MalformedRequest
from gateway.core.registry import ConfigRegistry
from gateway.core.schemas import OPERATION_KEYS, Request, RequestType, Template

NATIVE_KEY = "native"
SOURCE_KEY = "source"
TEMPLATE_KEY = "template"

NATIVE_KEYWORDS = {
    "select": RequestType.SELECT,
    "insert": RequestType.INSERT,
    "update": RequestType.UPDATE,
    "delete": RequestType.DELETE,
}


def decode_request(raw: Union[str, bytes, Mapping[str, Any]]) -> Dict[str, Any]:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as error:
            raise MalformedRequest(f"Request is not valid JSON: {error}") from error
    if not isinstance(raw, Mapping):
        raise MalformedRequest("Request must be a JSON object")
    # Callers keep their own copy, the Request owns this one
    return copy.deepcopy(dict(raw))


def is_native_sql(payload: Mapping[str, Any]) -> bool:
    # With a query/select key, "native" is a search-engine query body, not SQL
    return NATIVE_KEY in payload and not (
        RequestType.SELECT.value in payload or RequestType.QUERY.value in payload
    )


def classify_native(statement: str) -> RequestType:
    words = statement.strip().split(None, 1)
    keyword = words[0].lower() if words else ""
    return NATIVE_KEYWORDS.get(keyword, RequestType.NATIVE)


def classify_operation(payload: Mapping[str, Any]) -> RequestType:
    found = [kind for kind in OPERATION_KEYS if kind.value in payload]
    if len(found) != 1:
        names = ", ".join(kind.value for kind in found) or "none"
        raise MalformedRequest(
            f"Exactly one operation key is required, found: {names}"
        )
    return found[0]


def split_target(target: Any) -> Tuple[Optional[str], str, Optional[str]]:
    """
    Split "[db.]table[ alias]" into its parts.

    Examples:
        "db1.users admin" -> ("db1", "users", "admin")
        "users"           -> (None, "users", None)
    """
    if not isinstance(target, str):
        raise MalformedRequest("Operation target must be a string")

    remainder = target.strip()
    db = None
    if "." in remainder:
        db, remainder = remainder.split(".", 1)
        db = db.strip()
        if not db or len(db.split()) != 1:
            raise MalformedRequest(f"Bad database name in target {target!r}")

    parts = remainder.split()
    if not parts or len(parts) > 2 or "." in parts[0]:
        raise MalformedRequest(f"Cannot parse target {target!r}")
    alias = parts[1] if len(parts) == 2 else None
    return db, parts[0], alias


def parse_template(value: Any) -> Template:
    try:
        return Template(str(value).strip().lower())
    except ValueError:
        known = ", ".join(t.value for t in Template)
        raise MalformedRequest(f"Unknown template {value!r}, expected one of: {known}")


def build_request(**fields: Any) -> Request:
    try:
        return Request(**fields)
    except ValidationError as error:
        raise MalformedRequest(f"Invalid request: {error}") from error


def parse_native(payload: Dict[str, Any], registry: ConfigRegistry) -> Request:
    statement = payload[NATIVE_KEY]
    if not isinstance(statement, str):
        raise MalformedRequest("Native statement must be a string")

    source = payload.get(SOURCE_KEY)
    if source is not None and not isinstance(source, str):
        raise MalformedRequest("Native source must be a database name")

    db = source or registry.resolve_default_database()
    return build_request(
        kind=classify_native(statement),
        db=db,
        native=True,
        statement=statement.strip(),
        payload=payload,
    )


def parse_request(
    raw: Union[str, bytes, Mapping[str, Any]], registry: ConfigRegistry
) -> Request:
    """
    Parse one request. The registry is only consulted for the default db.

    Raises:
        MalformedRequest: missing/duplicate operation key, bad target,
            unknown template, empty transaction.
    """
    payload = decode_request(raw)

    if is_native_sql(payload):
        return parse_native(payload, registry)

    kind = classify_operation(payload)
    template = None
    if TEMPLATE_KEY in payload:
        template = parse_template(payload[TEMPLATE_KEY])

    if kind is RequestType.TRANSACTION:
        members = payload[kind.value]
        validate_transaction_members(members)
        return build_request(kind=kind, template=template, payload=payload)

    db, table, alias = split_target(payload[kind.value])
    if kind is RequestType.STRUCT:
        alias = None
    if db is None:
        db = registry.resolve_default_database()

    return build_request(
        kind=kind,
        db=db,
        table=table,
        alias=alias,
        template=template,
        payload=payload,
    )


def validate_transaction_members(members: Any) -> List[Dict[str, Any]]:
    if not isinstance(members, list) or not members:
        raise MalformedRequest("Transaction must be a non-empty array of requests")
    for member in members:
        if not isinstance(member, Mapping):
            raise MalformedRequest("Every transaction member must be a JSON object")
    return members
