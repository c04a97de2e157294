from __future__ import annotations

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    client: httpx.AsyncClient = request.app.state.http
    try:
        # Any HTTP answer means the backend is reachable.
        await client.get("/")
    except httpx.HTTPError as exc:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "errors": [f"backend: {exc}"]},
        )

    from task_chat.api.v1.routers.ws import get_manager

    return JSONResponse(
        content={"status": "ready", "connections": get_manager().connection_count},
    )
