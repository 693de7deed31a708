"""FastAPI dependency injection helpers."""
from __future__ import annotations

from typing import Annotated, AsyncIterator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from payment_service.application.dto.principal import Principal
from payment_service.application.ports.auth import TokenVerifier
from payment_service.application.uow import UnitOfWork, UoWFactory
from payment_service.config import settings
from payment_service.infrastructure.auth.hs256_verifier import HS256Verifier
from payment_service.infrastructure.db.session import AsyncSessionLocal
from payment_service.infrastructure.db.uow import SqlAlchemyUoW, uow_scope
from payment_service.services.queue_kinds import QueueRegistry
from payment_service.services.webhook_service import WebhookContext

_bearer_scheme = HTTPBearer()


async def get_uow() -> AsyncIterator[SqlAlchemyUoW]:
    async with AsyncSessionLocal() as session:
        uow = SqlAlchemyUoW(session)
        try:
            yield uow
        finally:
            await session.close()


UoWDep = Annotated[UnitOfWork, Depends(get_uow)]


def get_uow_factory() -> UoWFactory:
    return uow_scope


UoWFactoryDep = Annotated[UoWFactory, Depends(get_uow_factory)]


def get_webhook_context(request: Request) -> WebhookContext:
    return request.app.state.webhook_context


WebhookContextDep = Annotated[WebhookContext, Depends(get_webhook_context)]


def get_queue_registry(request: Request) -> QueueRegistry:
    return request.app.state.queue_registry


QueueRegistryDep = Annotated[QueueRegistry, Depends(get_queue_registry)]


_verifier: TokenVerifier | None = None


def get_verifier() -> TokenVerifier:
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


async def get_current_service(principal: CurrentPrincipal) -> Principal:
    if not principal.is_internal:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Service token required")
    return principal


CurrentService = Annotated[Principal, Depends(get_current_service)]
