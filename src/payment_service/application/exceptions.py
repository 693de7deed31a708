from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class AuthenticationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class ConflictError(AppError):
    pass


class ValidationError(AppError):
    pass


class TransientError(AppError):
    """Network, timeout or 5xx failure of a downstream call. Safe to retry."""

    def __init__(self, detail: str = "", status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(detail)


class PermanentError(AppError):
    """4xx-class or validation failure of a downstream call. Never retried."""

    def __init__(self, detail: str = "", status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(detail)
