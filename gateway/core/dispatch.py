import logging
import time
from typing import Any, Dict, List, Mapping, Protocol, Sequence, Union

from gateway.core.errors import MalformedRequest, UnsupportedOperation
from gateway.core.parser import parse_request
from gateway.core.registry import ConfigRegistry
from gateway.core.schemas import Request, RequestType

logger = logging.getLogger(__name__)

RawRequest = Union[str, bytes, Mapping[str, Any]]


class RequestHandler(Protocol):
    """
    Query-builder/session collaborator.

    Builds the dialect-specific statement for a parsed Request, runs it on
    the datasource bound to `request.db` and maps the rows. Transactions
    must be all-or-nothing.
    """

    async def handle(self, request: Request) -> Any: ...

    async def transaction(self, db: str, requests: Sequence[Request]) -> Any: ...


def describe(request: Request) -> str:
    target = request.statement if request.native else f"{request.db}.{request.table}"
    return f"{request.kind.value} {target}"


class LoggingHandler:
    """Wraps a RequestHandler and logs every delegated call (config `log`)."""

    def __init__(self, handler: RequestHandler):
        self.handler = handler

    async def handle(self, request: Request) -> Any:
        start = time.perf_counter()
        logger.info(f"Executing {describe(request)}")
        try:
            result = await self.handler.handle(request)
        except Exception as error:
            logger.error(f"Failed {describe(request)}: {error}")
            raise
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(f"Done {describe(request)} in {elapsed_ms:.1f} ms")
        return result

    async def transaction(self, db: str, requests: Sequence[Request]) -> Any:
        start = time.perf_counter()
        logger.info(f"Executing transaction of {len(requests)} request(s) on [{db}]")
        for request in requests:
            logger.info(f"  {describe(request)}")
        try:
            result = await self.handler.transaction(db, requests)
        except Exception as error:
            logger.error(f"Transaction on [{db}] rolled back: {error}")
            raise
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(f"Transaction on [{db}] committed in {elapsed_ms:.1f} ms")
        return result


class Gateway:
    """
    Turns JSON requests into executed outcomes.

    Every executed request runs inside its own current-database context,
    which is cleared again on every exit path, errors included.
    """

    def __init__(self, registry: ConfigRegistry, handler: RequestHandler):
        self.registry = registry
        self.handler = LoggingHandler(handler) if registry.config.log else handler

    def parse(self, raw: RawRequest) -> Request:
        return parse_request(raw, self.registry)

    async def translate(self, raw: RawRequest) -> Any:
        request = self.parse(raw)
        if request.kind is RequestType.STRUCT:
            return self.struct(request)
        if request.kind is RequestType.TRANSACTION:
            return await self.run_transaction(request)
        return await self.run_single(request)

    def struct(self, request: Request) -> Dict[str, Any]:
        """Stored table config of the target; nothing is executed."""
        self.registry.validate_target(request.db, request.table)
        table_config = self.registry.get_table_config(request.db, request.table)
        return table_config.model_dump(mode="json", exclude_none=True)

    def check_target(self, request: Request) -> None:
        # Raises UnknownTarget before any connection is touched
        self.registry.binding(request.db)
        if not request.native:
            self.registry.validate_target(request.db, request.table)

    async def run_single(self, request: Request) -> Any:
        self.check_target(request)
        with self.registry.database_context(request.db):
            return await self.handler.handle(request)

    def parse_transaction(self, request: Request) -> List[Request]:
        """
        Parse every member before anything runs.

        Raises:
            MalformedRequest: a member is itself a transaction or struct.
            UnsupportedOperation: members resolve to more than one database.
        """
        members = [self.parse(raw) for raw in request.payload[RequestType.TRANSACTION.value]]
        for member in members:
            if member.kind in (RequestType.TRANSACTION, RequestType.STRUCT):
                raise MalformedRequest(
                    f"A transaction cannot contain a {member.kind.value} request"
                )

        databases = sorted({member.db for member in members})
        if len(databases) > 1:
            raise UnsupportedOperation(
                f"Cross-database transaction is not supported: {', '.join(databases)}"
            )

        for member in members:
            self.check_target(member)
        return members

    async def run_transaction(self, request: Request) -> Any:
        members = self.parse_transaction(request)
        db = members[0].db
        with self.registry.database_context(db):
            return await self.handler.transaction(db, members)
