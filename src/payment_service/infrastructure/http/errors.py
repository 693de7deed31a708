from __future__ import annotations

import httpx

from payment_service.application.exceptions import PermanentError, TransientError


def raise_for_downstream(response: httpx.Response, service: str) -> None:
    """Map a non-2xx response to a retryable or permanent error."""
    if response.is_success:
        return
    detail = f"{service} returned {response.status_code}: {response.text[:500]}"
    if response.status_code == 429 or response.status_code >= 500:
        raise TransientError(detail, status_code=response.status_code)
    raise PermanentError(detail, status_code=response.status_code)


def wrap_transport_error(exc: httpx.HTTPError, service: str) -> TransientError:
    return TransientError(f"{service} unreachable: {type(exc).__name__}: {exc}")
