"""Realtime SSE endpoints."""

from typing import Any, Callable

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, Field

from recordkit.auth.middleware import get_auth
from recordkit.core.request import RequestContextTag, RequestInfo
from recordkit.realtime.broker import RealtimeBroker

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class SubscribeRequest(BaseModel):
    """Request body for setting a client's subscriptions."""

    client_id: str = Field(alias="clientId")
    subscriptions: list[str] = Field(default_factory=list)


def create_realtime_router(get_broker: Callable[[], RealtimeBroker | None]) -> APIRouter:
    """Create the realtime router with injected dependencies."""
    router = APIRouter(prefix="/api", tags=["realtime"])

    @router.get("/realtime")
    async def connect(http_request: Request) -> StreamingResponse:
        """Open an SSE stream; the first message carries the client id."""
        broker = get_broker()
        if not broker:
            raise HTTPException(500, "Realtime broker not initialized")

        client = broker.connect(get_auth(http_request))
        return StreamingResponse(
            broker.stream(client.id),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @router.post("/realtime")
    async def subscribe(body: SubscribeRequest, http_request: Request) -> Any:
        """Replace the subscriptions of a connected client."""
        broker = get_broker()
        if not broker:
            raise HTTPException(500, "Realtime broker not initialized")

        info = RequestInfo(
            auth=get_auth(http_request),
            context=RequestContextTag.REALTIME,
            headers=dict(http_request.headers),
            method=http_request.method,
        )
        outcome = await broker.subscribe(body.client_id, body.subscriptions, info)
        if not outcome.ok:
            return JSONResponse(outcome.to_error_dict(), status_code=outcome.status_code)
        return Response(status_code=204)

    return router
