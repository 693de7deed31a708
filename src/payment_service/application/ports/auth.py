from __future__ import annotations

from typing import Protocol

from payment_service.application.dto.principal import Principal


class TokenVerifier(Protocol):
    """Turns a bearer token from an internal caller into a Principal.

    Any exception means the token is rejected; the API maps it to 401.
    """

    async def verify(self, token: str) -> Principal: ...
