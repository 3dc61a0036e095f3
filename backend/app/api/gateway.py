"""HTTP gateway exposing the function router under its mount prefix."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from backend.app.api.router import FunctionEvent, dispatch
from backend.app.core.config import Settings, get_settings
from backend.app.services.airtable import AirtableClient

router = APIRouter(prefix="/.netlify/functions", tags=["board"])

METHODS = ["GET", "POST", "PATCH", "PUT", "DELETE"]


def get_record_store(request: Request) -> AirtableClient:
    """Record store created in the application lifespan."""
    return request.app.state.record_store


async def build_event(request: Request) -> FunctionEvent:
    """Translate the ASGI request into a router event."""
    raw_path = request.scope.get("raw_path") or b""
    body = await request.body()
    return FunctionEvent(
        method=request.method,
        path=request.url.path,
        raw_url=str(request.url),
        raw_path=raw_path.decode("latin-1") or None,
        headers=dict(request.headers),
        query=dict(request.query_params),
        body=body.decode("utf-8", errors="replace") or None,
    )


@router.api_route("/{function_name}", methods=METHODS)
@router.api_route("/{function_name}/{resource_path:path}", methods=METHODS)
async def function_gateway(
    request: Request,
    store: AirtableClient = Depends(get_record_store),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Route any board API request through the function router."""
    event = await build_event(request)
    response = await dispatch(event, store, settings.function_path_pattern)
    return JSONResponse(
        status_code=response.status_code,
        content=response.body,
        headers={key: value for key, value in response.headers.items() if key.lower() != "content-type"},
    )
