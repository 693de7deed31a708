from __future__ import annotations

from typing import Any, Protocol


class EmailSender(Protocol):
    async def send(self, message: dict[str, Any]) -> dict[str, Any]: ...
