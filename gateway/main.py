import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from gateway.api.router import api_router
from gateway.core.bootstrap.pipeline import bootstrap
from gateway.core.config import settings
from gateway.core.dispatch import Gateway, RequestHandler
from gateway.core.errors import (
    ConfigurationError,
    GatewayError,
    MalformedRequest,
    UnknownTarget,
    UnsupportedOperation,
)
from gateway.core.registry import ConfigRegistry

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    MalformedRequest: status.HTTP_400_BAD_REQUEST,
    UnsupportedOperation: status.HTTP_400_BAD_REQUEST,
    UnknownTarget: status.HTTP_404_NOT_FOUND,
    ConfigurationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def configure_logging(level: Optional[str] = None):
    logging.basicConfig(level=(level or settings.GATEWAY_LOG_LEVEL).upper())


async def gateway_error_handler(request: Request, error: GatewayError):
    code = ERROR_STATUS.get(type(error), status.HTTP_500_INTERNAL_SERVER_ERROR)
    logger.warning(f"{request.method} {request.url.path} -> {error.kind}: {error}")
    return JSONResponse(status_code=code, content=error.to_dict())


def create_app(
    handler: RequestHandler,
    registry: Optional[ConfigRegistry] = None,
    config_file: Optional[str] = None,
) -> FastAPI:
    """
    Mount a Gateway over HTTP.

    With no ready registry the config is bootstrapped when the app starts
    (config_file, else GATEWAY_CONFIG_FILE, else gateway.json).
    """
    configure_logging()

    # Bootstrap before serving and release every binding once everything is done
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "gateway", None) is None:
            ready = await bootstrap(config_file or settings.GATEWAY_CONFIG_FILE)
            app.state.gateway = Gateway(ready, handler)
        yield
        await app.state.gateway.registry.close()

    app = FastAPI(title="JSON Data Gateway", lifespan=lifespan)
    app.state.gateway = Gateway(registry, handler) if registry is not None else None
    app.add_exception_handler(GatewayError, gateway_error_handler)

    # Include the master router containing all our endpoints
    app.include_router(api_router)
    return app
