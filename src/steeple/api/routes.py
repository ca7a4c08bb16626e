"""API route handlers for the MCP endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from steeple import __version__
from steeple.api.engine import Engine
from steeple.api.schemas import HealthResponse, McpEndpointInfo

router = APIRouter()


def _get_engine(request: Request) -> Engine:
    """Get the engine from the app state."""
    return request.app.state.engine


async def _endpoint_info(request: Request, endpoint: str, *, required: bool):
    engine = _get_engine(request)
    resolution = await engine.identity_resolver.resolve(
        request, required=required, touch_last_used=True,
    )
    if resolution.response is not None:
        return resolution.response
    return McpEndpointInfo(endpoint=endpoint, authenticated=resolution.identity is not None)


async def _dispatch(request: Request, *, required: bool) -> Response:
    engine = _get_engine(request)
    resolution = await engine.identity_resolver.resolve(
        request, required=required, touch_last_used=True,
    )
    if resolution.response is not None:
        return resolution.response

    body = await request.body()
    status_code, payload = await engine.dispatcher.handle_payload(body, resolution.identity)
    if payload is None:
        return Response(status_code=status_code)
    return JSONResponse(payload, status_code=status_code)


@router.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(version=__version__)


# --- MCP ---


@router.get("/mcp", response_model=McpEndpointInfo)
async def mcp_info(request: Request):
    """Describe the endpoint; anonymous callers are welcome."""
    return await _endpoint_info(request, "/mcp", required=False)


@router.post("/mcp")
async def mcp_rpc(request: Request):
    return await _dispatch(request, required=False)


@router.get("/mcp/admin", response_model=McpEndpointInfo)
async def mcp_admin_info(request: Request):
    return await _endpoint_info(request, "/mcp/admin", required=True)


@router.post("/mcp/admin")
async def mcp_admin_rpc(request: Request):
    """Same dispatcher as /mcp, but a valid bearer token is mandatory."""
    return await _dispatch(request, required=True)
