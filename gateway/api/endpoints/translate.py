from typing import Annotated, Any, Dict

from fastapi import APIRouter, Body, Depends, Request

from gateway.core.dispatch import Gateway

router = APIRouter(tags=["Gateway"])


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway


gateway_dep = Annotated[Gateway, Depends(get_gateway)]


@router.post("/translate")
async def translate(gateway: gateway_dep, payload: Dict[str, Any] = Body(...)):
    """
    Run one JSON request (or a transaction batch) against its datasource.
    The collaborator's result is returned unchanged.
    """
    return await gateway.translate(payload)


@router.get("/struct/{target}")
async def struct(target: str, gateway: gateway_dep):
    """Stored table config for "[db.]table"."""
    return await gateway.translate({"struct": target})
