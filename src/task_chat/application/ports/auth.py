from __future__ import annotations

from typing import Protocol

from task_chat.application.dto.principal import Principal


class IdentityProvider(Protocol):
    """Turns the marketplace bearer token into the caller identity.

    Raises on a token that carries no usable identity; the backend stays the
    authority on what that identity may do.
    """

    async def verify(self, token: str) -> Principal: ...
