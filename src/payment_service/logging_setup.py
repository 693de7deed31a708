from __future__ import annotations

import logging

from payment_service.api.middleware.correlation_id import CorrelationIdFilter

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s]: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Root handler that tags every record with the request correlation id."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, force=True)
    for handler in logging.getLogger().handlers:
        handler.addFilter(CorrelationIdFilter())
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
