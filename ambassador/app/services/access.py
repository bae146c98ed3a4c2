# ambassador/app/services/access.py
"""
Access gate: who is calling, and may they proceed.

Two credential kinds resolve to the same ``Identity``:

* ``TelegramSignedResolver`` - Mini App init data (``X-Telegram-Init-Data``).
  First contact self-registers a PENDING ambassador.
* ``BearerTokenResolver`` - admin panel JWT (``Authorization: Bearer``).
  The token only proves who signed in; role and status are re-read from the
  database on every request so a demoted or deactivated user is rejected
  even while the token has not expired.

Status and profile gates always re-read the user row.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.auth import (
    TelegramInitData,
    validate_telegram_data,
    decode_access_token,
    parse_bearer,
)
from ambassador.app.core.constants import (
    ROLE_AMBASSADOR,
    STAFF_ROLES,
    USER_PENDING,
    USER_ACTIVE,
)
from ambassador.app.core.exceptions import UnauthenticatedError, ForbiddenError
from ambassador.app.core.logging import get_logger
from ambassador.app.models.user import User

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: int
    role: str
    status: str
    via: str


class CredentialResolver:
    """Resolves one kind of credential to an Identity or raises UnauthenticatedError."""

    via = ""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve(self, credential: str) -> Identity:
        raise NotImplementedError

    def _identity(self, user: User) -> Identity:
        return Identity(user_id=user.id, role=user.role, status=user.status, via=self.via)


class TelegramSignedResolver(CredentialResolver):
    via = "telegram"

    async def resolve(self, credential: str) -> Identity:
        init_data = validate_telegram_data(credential)
        user = await self.get_or_register(init_data)
        return self._identity(user)

    async def get_or_register(self, init_data: TelegramInitData) -> User:
        tg_user = init_data.user
        user = await self.session.scalar(select(User).where(User.telegram_id == tg_user.id))
        if user is None:
            user = User(
                telegram_id=tg_user.id,
                username=tg_user.username,
                first_name=tg_user.first_name,
                last_name=tg_user.last_name,
                role=ROLE_AMBASSADOR,
                status=USER_PENDING,
            )
            self.session.add(user)
            try:
                await self.session.commit()
            except IntegrityError:
                # Two first requests from the same account raced; use the winner
                await self.session.rollback()
                user = await self.session.scalar(select(User).where(User.telegram_id == tg_user.id))
                if user is None:
                    raise
            else:
                logger.info("Ambassador self-registered", user_id=user.id, telegram_id=tg_user.id)
            return user

        changed = False
        for field, value in (
            ("username", tg_user.username),
            ("first_name", tg_user.first_name),
            ("last_name", tg_user.last_name),
        ):
            if getattr(user, field) != value:
                setattr(user, field, value)
                changed = True
        if changed:
            await self.session.commit()
        return user


class BearerTokenResolver(CredentialResolver):
    via = "bearer"

    async def resolve(self, credential: str) -> Identity:
        user_id = decode_access_token(credential)
        user = await self.session.get(User, user_id, populate_existing=True)
        if user is None:
            raise UnauthenticatedError("User not found")
        if user.role not in STAFF_ROLES:
            raise ForbiddenError("Admin panel access requires MANAGER or ADMIN role", "insufficient_role")
        if user.status != USER_ACTIVE:
            raise ForbiddenError("Account is not active", "account_inactive")
        return self._identity(user)


async def resolve_identity(
    session: AsyncSession,
    telegram_init_data: Optional[str],
    authorization: Optional[str],
) -> Identity:
    """Pick the resolver for the supplied credential; exactly one kind is allowed."""
    if telegram_init_data and authorization:
        raise UnauthenticatedError("Provide either Telegram init data or a bearer token, not both")
    if telegram_init_data:
        return await TelegramSignedResolver(session).resolve(telegram_init_data)
    if authorization:
        return await BearerTokenResolver(session).resolve(parse_bearer(authorization))
    raise UnauthenticatedError("Missing credentials")


# --- Gates ---

async def load_current_user(session: AsyncSession, identity: Identity) -> User:
    """Fresh user row for gate decisions."""
    user = await session.get(User, identity.user_id, populate_existing=True)
    if user is None:
        raise UnauthenticatedError("User not found")
    return user


def ensure_active(user: User) -> None:
    if user.status == USER_ACTIVE:
        return
    if user.status == USER_PENDING:
        raise ForbiddenError("Аккаунт ожидает модерации", "pending_moderation", status=user.status)
    raise ForbiddenError("Аккаунт заблокирован", "account_blocked", status=user.status)


def ensure_profile_complete(user: User) -> None:
    missing = []
    if not user.has_contact:
        missing.append("contact")
    if not user.has_address:
        missing.append("address")
    if missing:
        raise ForbiddenError(
            "Заполните профиль: нужен телефон или email и пункт CDEK или адрес",
            "profile_incomplete",
            missing=missing,
        )


def ensure_role(user: User, roles: tuple[str, ...]) -> None:
    if user.role not in roles:
        raise ForbiddenError("Недостаточно прав", "insufficient_role", required=list(roles))
