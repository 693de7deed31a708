from __future__ import annotations

import jwt

from payment_service.application.dto.principal import Principal
from payment_service.domain.value_objects.enums import PrincipalKind


class HS256Verifier:
    """Verify service tokens signed with a shared HS256 secret."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self._secret = secret
        self._algorithm = algorithm

    async def verify(self, token: str) -> Principal:
        payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        kind_raw = payload.get("kind", payload.get("role", "user"))
        kind = PrincipalKind(kind_raw) if kind_raw in PrincipalKind.__members__.values() else PrincipalKind.USER
        return Principal(
            kind=kind,
            subject=str(payload["sub"]),
            roles=payload.get("roles", []),
        )
