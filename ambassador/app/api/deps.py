"""
Request-scoped dependencies: database session, injected transports and the
access gates.

Gate chain for ambassador routes::

    get_identity -> get_current_user -> require_active -> require_profile_complete

Staff routes use ``require_staff`` (active + MANAGER/ADMIN role).
"""
from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.constants import STAFF_ROLES
from ambassador.app.core.database import async_session
from ambassador.app.core.exceptions import ServiceError, raise_http
from ambassador.app.core.logging import bind_request_context
from ambassador.app.models.user import User
from ambassador.app.services.access import (
    Identity,
    resolve_identity,
    load_current_user,
    ensure_active,
    ensure_profile_complete,
    ensure_role,
)
from ambassador.app.services.notifications import Notifier
from ambassador.app.services.report_sync import ReportSync
from ambassador.app.services.storage import BlobStore


# Эта функция выдает сессию базы данных для каждого запроса
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_report_sync(request: Request) -> ReportSync:
    return request.app.state.report_sync


def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store


async def get_identity(
    session: AsyncSession = Depends(get_session),
    x_telegram_init_data: Optional[str] = Header(None, alias="X-Telegram-Init-Data"),
    authorization: Optional[str] = Header(None),
) -> Identity:
    """Telegram init data or an admin bearer token, never both."""
    try:
        return await resolve_identity(session, x_telegram_init_data, authorization)
    except ServiceError as e:
        raise_http(e)


async def get_current_user(
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
) -> User:
    try:
        user = await load_current_user(session, identity)
    except ServiceError as e:
        raise_http(e)
    bind_request_context(user_id=user.id, auth_via=identity.via)
    return user


async def require_active(user: User = Depends(get_current_user)) -> User:
    try:
        ensure_active(user)
    except ServiceError as e:
        raise_http(e)
    return user


async def require_profile_complete(user: User = Depends(require_active)) -> User:
    try:
        ensure_profile_complete(user)
    except ServiceError as e:
        raise_http(e)
    return user


def require_roles(*roles: str):
    """Dependency factory: active user holding one of ``roles``."""

    async def dependency(user: User = Depends(require_active)) -> User:
        try:
            ensure_role(user, roles)
        except ServiceError as e:
            raise_http(e)
        return user

    return dependency


require_staff = require_roles(*STAFF_ROLES)


def pagination(page: int, limit: int, max_limit: int = 100) -> tuple[int, int, int]:
    """Clamp page/limit and return (page, limit, offset)."""
    page = max(page, 1)
    limit = min(max(limit, 1), max_limit)
    return page, limit, (page - 1) * limit
