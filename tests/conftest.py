import asyncio
import random
from typing import Any, List, Sequence, Tuple

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from gateway.core.config import GatewayConfig
from gateway.core.database import build_binding
from gateway.core.dispatch import Gateway
from gateway.core.registry import ConfigRegistry
from gateway.core.schemas import AssociationConfig, ColumnConfig, TableConfig
from gateway.main import create_app


# Two sqlite databases and one search engine; engines are never connected here
TEST_CONFIG = {
    "datasources": {
        "db1": {"url": "sqlite+aiosqlite:///:memory:"},
        "db2": {"url": "sqlite+aiosqlite:///:memory:"},
        "search": {"url": "es://localhost:9200"},
    },
}


def make_tables():
    return {
        "db1": {
            "users": TableConfig(
                comment="Users",
                columns={
                    "id": ColumnConfig(type="integer"),
                    "name": ColumnConfig(type="varchar", comment="Login name"),
                },
            ),
            "customers": TableConfig(columns={"id": ColumnConfig(type="integer")}),
            "orders": TableConfig(
                columns={
                    "id": ColumnConfig(type="integer"),
                    "customer_id": ColumnConfig(
                        type="integer",
                        association=AssociationConfig(
                            target="customers", kind="many-to-one"
                        ),
                    ),
                }
            ),
            "profiles": TableConfig(
                columns={
                    "user_id": ColumnConfig(
                        type="integer", association=AssociationConfig(target="users")
                    )
                }
            ),
            "tags": TableConfig(columns={"label": ColumnConfig(type="varchar")}),
        },
        "db2": {
            "users": TableConfig(columns={"id": ColumnConfig(type="bigint")}),
            "logs": TableConfig(
                columns={
                    "user_id": ColumnConfig(
                        type="bigint",
                        association=AssociationConfig(target="users", kind="ONE_TO_MANY"),
                    )
                }
            ),
        },
    }


def make_registry(config: dict = TEST_CONFIG) -> ConfigRegistry:
    gateway_config = GatewayConfig.model_validate(config)
    bindings = {
        name: build_binding(name, source)
        for name, source in gateway_config.datasources.items()
    }
    return ConfigRegistry(gateway_config, bindings, make_tables())


class RecordingHandler:
    """Stands in for the query builder: records what it saw, never touches a db."""

    def __init__(self, registry: ConfigRegistry, delay: bool = False):
        self.registry = registry
        self.delay = delay
        self.calls: List[Tuple[str, Any]] = []
        self.fail_with = None

    async def pause(self):
        if self.delay:
            await asyncio.sleep(random.random() / 100)

    async def handle(self, request):
        seen_before = self.registry.current_database()
        await self.pause()
        seen_after = self.registry.current_database()
        self.calls.append(("handle", request))
        if self.fail_with is not None:
            raise self.fail_with
        return {"db": request.db, "seen": [seen_before, seen_after], "table": request.table}

    async def transaction(self, db: str, requests: Sequence):
        await self.pause()
        self.calls.append(("transaction", list(requests)))
        if self.fail_with is not None:
            raise self.fail_with
        return {"db": db, "seen": self.registry.current_database(), "count": len(requests)}


# Nothing connects during unit tests, so there is nothing to close afterwards
@pytest.fixture(scope="function")
def registry():
    return make_registry()


@pytest.fixture(scope="function")
def handler(registry):
    return RecordingHandler(registry)


@pytest.fixture(scope="function")
def gateway(registry, handler):
    return Gateway(registry, handler)


# Client
@pytest_asyncio.fixture(scope="function")
async def client(registry, handler):
    app = create_app(handler, registry=registry)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac


@pytest.fixture(scope="function")
def make_gateway():
    """Fresh registry + recording handler, for tests that need their own."""

    def factory(delay: bool = False) -> Gateway:
        fresh = make_registry()
        return Gateway(fresh, RecordingHandler(fresh, delay=delay))

    return factory
