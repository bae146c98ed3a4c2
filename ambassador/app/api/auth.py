"""Admin panel login - no auth required for /admin/login."""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.api.deps import get_session, require_staff
from ambassador.app.core.auth import create_access_token
from ambassador.app.core.constants import STAFF_ROLES, USER_ACTIVE
from ambassador.app.core.limiter import limiter
from ambassador.app.core.logging import get_logger
from ambassador.app.core.password_utils import hash_password, verify_password
from ambassador.app.core.settings import get_settings
from ambassador.app.models.user import User
from ambassador.app.schemas import AdminLoginBody, TokenResponse, UserResponse

router = APIRouter()
logger = get_logger(__name__)

INVALID_CREDENTIALS = "Неверный email или пароль"


def _login_rate_limit() -> str:
    return get_settings().LOGIN_RATE_LIMIT


@router.post("/admin/login", response_model=TokenResponse)
@limiter.limit(_login_rate_limit)
async def admin_login(
    request: Request,
    data: AdminLoginBody,
    session: AsyncSession = Depends(get_session),
):
    """
    Вход в админ-панель по email и паролю.

    Аккаунт без сохраненного хеша получает его при первом входе.
    """
    user = await session.scalar(
        select(User).where(
            func.lower(User.email) == data.email.strip().lower(),
            User.role.in_(STAFF_ROLES),
        )
    )
    if user is None:
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)

    if user.password_hash and not verify_password(data.password, user.password_hash):
        logger.warning("Admin login failed", user_id=user.id)
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)

    if user.status != USER_ACTIVE:
        raise HTTPException(
            status_code=403,
            detail={"message": "Аккаунт неактивен", "reason": "account_inactive"},
        )

    if not user.password_hash:
        user.password_hash = hash_password(data.password)
        await session.commit()
        logger.info("Admin password set on first login", user_id=user.id)

    token = create_access_token(user.id, user.role)
    logger.info("Admin logged in", user_id=user.id, role=user.role)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))


@router.get("/admin/me", response_model=UserResponse)
async def admin_me(user: User = Depends(require_staff)):
    return user
