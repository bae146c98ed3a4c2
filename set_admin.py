import argparse
import asyncio
import getpass
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.constants import ROLE_ADMIN, USER_ACTIVE
from ambassador.app.core.password_utils import hash_password
from ambassador.app.models.user import User


async def make_admin(
    session: AsyncSession,
    email: str,
    password: Optional[str] = None,
    telegram_id: Optional[int] = None,
) -> tuple[User, bool]:
    """Находит пользователя по email (или Telegram ID) и делает его активным ADMIN. Возвращает (user, created)."""
    email = email.strip().lower()
    user = await session.scalar(select(User).where(func.lower(User.email) == email))
    if user is None and telegram_id is not None:
        user = await session.scalar(select(User).where(User.telegram_id == telegram_id))

    created = user is None
    if created:
        # Если пользователь еще не открывал Mini App, создаем запись сразу
        user = User(email=email, telegram_id=telegram_id)
        session.add(user)
    user.email = email
    user.role = ROLE_ADMIN
    user.status = USER_ACTIVE
    if password:
        user.password_hash = hash_password(password)
    await session.flush()
    return user, created


async def main(email: str, password: Optional[str], telegram_id: Optional[int]) -> None:
    from ambassador.app.core.database import async_session

    async with async_session() as session:
        user, created = await make_admin(session, email, password, telegram_id)
        await session.commit()
        if created:
            print(f"✅ Пользователь {email} добавлен в базу как ADMIN (id={user.id}).")
        else:
            print(f"✅ Роль пользователя {email} изменена на ADMIN (id={user.id}).")
        if not password:
            print("ℹ️ Пароль не задан: он будет сохранен при первом входе в админку.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Назначить администратора админ-панели")
    parser.add_argument("email", nargs="?")
    parser.add_argument("--telegram-id", type=int, default=None)
    parser.add_argument("--no-password", action="store_true", help="не задавать пароль сейчас")
    args = parser.parse_args()

    admin_email = args.email or input("Введите email администратора: ")
    admin_password = None if args.no_password else (getpass.getpass("Пароль (пусто - задать при первом входе): ") or None)
    asyncio.run(main(admin_email, admin_password, args.telegram_id))
