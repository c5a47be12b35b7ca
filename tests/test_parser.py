import pytest
from pydantic import ValidationError

from gateway.core.errors import MalformedRequest
from gateway.core.parser import parse_request, split_target
from gateway.core.schemas import RequestType, Template


@pytest.mark.parametrize(
    "key",
    ["detail", "query", "select", "insert", "update", "delete", "struct"],
)
def test_single_operation_key(registry, key):
    """Exactly one operation key gives that kind"""
    request = parse_request({key: "users"}, registry)
    assert request.kind == RequestType(key)
    assert request.table == "users"


def test_no_operation_key(registry):
    with pytest.raises(MalformedRequest):
        parse_request({"where": {"id": 1}}, registry)


def test_two_operation_keys(registry):
    with pytest.raises(MalformedRequest) as error:
        parse_request({"query": "users", "delete": "users"}, registry)
    assert error.value.kind == "MalformedRequest"


def test_qualified_target_with_alias(registry):
    request = parse_request({"query": "db1.users admin"}, registry)
    assert request.db == "db1"
    assert request.table == "users"
    assert request.alias == "admin"


def test_unqualified_target_uses_default_db(registry):
    request = parse_request({"query": "users"}, registry)
    assert request.db == "db1"
    assert request.table == "users"
    assert request.alias is None


def test_explicit_default_datasource(registry):
    registry.config.default_datasource = "db2"
    request = parse_request({"detail": " users u "}, registry)
    assert request.db == "db2"
    assert request.alias == "u"


@pytest.mark.parametrize("target", ["", "  ", "db1.", ".users", "users a b", 42, "a b.users"])
def test_unparseable_targets(registry, target):
    with pytest.raises(MalformedRequest):
        parse_request({"query": target}, registry)


def test_split_target_unqualified_alias():
    assert split_target("users u") == (None, "users", "u")


def test_struct_ignores_alias(registry):
    request = parse_request({"struct": "db2.users x"}, registry)
    assert request.kind is RequestType.STRUCT
    assert (request.db, request.table, request.alias) == ("db2", "users", None)


def test_known_template(registry):
    request = parse_request({"query": "users", "template": "Tree"}, registry)
    assert request.template is Template.TREE


def test_unknown_template(registry):
    with pytest.raises(MalformedRequest):
        parse_request({"query": "users", "template": "spiral"}, registry)


@pytest.mark.parametrize(
    "sql, kind",
    [
        ("select * from users", RequestType.SELECT),
        ("  INSERT into users values (1)", RequestType.INSERT),
        ("Update users set name = 'x'", RequestType.UPDATE),
        ("delete from users", RequestType.DELETE),
        ("show tables", RequestType.NATIVE),
    ],
)
def test_native_sql_classification(registry, sql, kind):
    request = parse_request({"native": sql}, registry)
    assert request.native is True
    assert request.kind is kind
    assert request.db == "db1"
    assert request.statement == sql.strip()


def test_native_sql_with_source(registry):
    request = parse_request({"native": "select 1", "source": "db2"}, registry)
    assert request.db == "db2"


def test_native_search_body_is_not_sql(registry):
    """With a query/select key, "native" carries a search body and parsing continues"""
    body = {"query": {"match_all": {}}}
    request = parse_request({"select": "search.logs", "native": body}, registry)
    assert request.native is False
    assert request.kind is RequestType.SELECT
    assert (request.db, request.table) == ("search", "logs")
    assert request.payload["native"] == body


def test_native_must_be_text(registry):
    with pytest.raises(MalformedRequest):
        parse_request({"native": {"sql": "select 1"}}, registry)


@pytest.mark.parametrize("source", [5, ["db1"], {"db": "db1"}])
def test_native_source_must_be_a_name(registry, source):
    with pytest.raises(MalformedRequest):
        parse_request({"native": "select 1", "source": source}, registry)


def test_bytes_that_are_not_utf8(registry):
    with pytest.raises(MalformedRequest):
        parse_request(b'{"query": "\xff\xfe"}', registry)


def test_transaction_request(registry):
    request = parse_request(
        {"transaction": [{"insert": "users"}, {"update": "users"}]}, registry
    )
    assert request.kind is RequestType.TRANSACTION
    assert request.table is None


@pytest.mark.parametrize("members", [[], "users", [1, 2]])
def test_bad_transaction(registry, members):
    with pytest.raises(MalformedRequest):
        parse_request({"transaction": members}, registry)


def test_json_text_input(registry):
    request = parse_request('{"delete": "db2.logs"}', registry)
    assert request.kind is RequestType.DELETE
    assert request.db == "db2"


@pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '"query"'])
def test_non_object_input(registry, raw):
    with pytest.raises(MalformedRequest):
        parse_request(raw, registry)


def test_request_is_immutable(registry):
    payload = {"query": "users", "where": {"id": 1}}
    request = parse_request(payload, registry)
    with pytest.raises(ValidationError):
        request.table = "orders"
    # The caller's dict is not shared with the request
    payload["where"]["id"] = 2
    assert request.payload["where"]["id"] == 1
