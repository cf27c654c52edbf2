"""FastAPI dependency injection helpers."""
from __future__ import annotations

from typing import Annotated, AsyncIterator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from challenge_messaging.application.dto.principal import Principal
from challenge_messaging.application.ports.auth import TokenVerifier
from challenge_messaging.application.ports.clock import Clock, SystemClock
from challenge_messaging.application.uow import UnitOfWork, UnitOfWorkFactory
from challenge_messaging.config import settings
from challenge_messaging.infrastructure.auth.hs256_verifier import HS256Verifier
from challenge_messaging.infrastructure.db.uow import sqlalchemy_uow

_bearer_scheme = HTTPBearer()


def get_uow_factory() -> UnitOfWorkFactory:
    """Session-per-operation factory handed to long-lived services."""
    return sqlalchemy_uow


async def get_uow(
    factory: Annotated[UnitOfWorkFactory, Depends(get_uow_factory)],
) -> AsyncIterator[UnitOfWork]:
    async with factory() as uow:
        yield uow


UoWDep = Annotated[UnitOfWork, Depends(get_uow)]
UoWFactoryDep = Annotated[UnitOfWorkFactory, Depends(get_uow_factory)]


def get_clock() -> Clock:
    return SystemClock()


ClockDep = Annotated[Clock, Depends(get_clock)]

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
