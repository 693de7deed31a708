"""Entrypoint: python -m payment_service (webhook receiver and queue API)."""
from __future__ import annotations

import uvicorn

from payment_service.config import settings


def main() -> None:
    uvicorn.run(
        "payment_service.app:create_app",
        factory=True,
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        log_level=settings.LOG_LEVEL.lower(),
        # Logging is configured by create_app.
        log_config=None,
    )


if __name__ == "__main__":
    main()
