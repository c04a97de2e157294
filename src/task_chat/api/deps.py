"""FastAPI dependency injection helpers."""
from __future__ import annotations

from typing import Annotated

import httpx
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from task_chat.api.middleware.correlation_id import correlation_id_ctx
from task_chat.application.dto.principal import Principal
from task_chat.application.ports.auth import IdentityProvider
from task_chat.config import settings
from task_chat.infrastructure.auth.hs256_verifier import HS256Verifier
from task_chat.infrastructure.http.store import HttpConversationStore

_bearer_scheme = HTTPBearer()

_verifier: IdentityProvider | None = None


def get_verifier() -> IdentityProvider:
    global _verifier  # noqa: PLW0603
    if _verifier is None:
        _verifier = HS256Verifier(settings.JWT_SECRET, settings.JWT_ALGORITHM)
    return _verifier


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(_bearer_scheme)],
) -> Principal:
    verifier = get_verifier()
    try:
        return await verifier.verify(credentials.credentials)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http


HttpClientDep = Annotated[httpx.AsyncClient, Depends(get_http_client)]


def get_store(principal: CurrentPrincipal, client: HttpClientDep) -> HttpConversationStore:
    return HttpConversationStore(
        client,
        principal.token,
        request_id=correlation_id_ctx.get() or None,
    )


StoreDep = Annotated[HttpConversationStore, Depends(get_store)]
