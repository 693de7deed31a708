from __future__ import annotations

from typing import Any, Protocol


class WebhookVerifier(Protocol):
    def verify(
        self,
        raw_body: bytes | str,
        signature: str | None,
        *,
        check_timestamp: bool = True,
    ) -> dict[str, Any]:
        """Authenticate ``raw_body`` and return the decoded event envelope.

        Raises ``AuthenticationError`` when the signature is missing or wrong
        and ``ValidationError`` when the body is not a JSON object.
        """
        ...
