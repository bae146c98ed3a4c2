# ambassador/app/services/users.py
"""
User service - profiles, moderation and segmentation tags.
"""
from typing import Optional, Any

from sqlalchemy import select, func, or_, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.base import utcnow
from ambassador.app.core.constants import USER_STATUSES, USER_ROLES
from ambassador.app.core.exceptions import ServiceError, ValidationError, NotFoundError, ConflictError
from ambassador.app.models.user import User, Tag, UserTag

PROFILE_FIELDS = (
    "first_name",
    "last_name",
    "phone",
    "email",
    "cdek_pvz",
    "address",
    "instagram_link",
    "youtube_link",
    "tiktok_link",
    "vk_link",
)


class UserServiceError(ServiceError):
    """Base exception for user service errors."""


class UserNotFoundError(NotFoundError, UserServiceError):
    def __init__(self, user_id: int):
        super().__init__(f"User {user_id} not found")


class TagNotFoundError(NotFoundError, UserServiceError):
    def __init__(self, tag_id: int):
        super().__init__(f"Tag {tag_id} not found")


class UserService:
    """Service class for user and tag operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user(self, user_id: int) -> User:
        user = await self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    async def update_profile(self, user_id: int, **fields: Any) -> User:
        """
        Update profile fields of the caller. Empty strings clear a field.
        Caller must commit.
        """
        user = await self.get_user(user_id)
        for key, value in fields.items():
            if key not in PROFILE_FIELDS:
                continue
            if isinstance(value, str):
                value = value.strip() or None
            setattr(user, key, value)
        try:
            await self.session.flush()
        except IntegrityError:
            raise ConflictError("Email is already used by another account")
        return user

    async def list_users(
        self,
        status: Optional[str] = None,
        role: Optional[str] = None,
        search: Optional[str] = None,
        tag_id: Optional[int] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[User], int]:
        if status and status not in USER_STATUSES:
            raise ValidationError("Unknown status", {"status": f"must be one of {', '.join(USER_STATUSES)}"})
        if role and role not in USER_ROLES:
            raise ValidationError("Unknown role", {"role": f"must be one of {', '.join(USER_ROLES)}"})
        conditions = []
        if status:
            conditions.append(User.status == status)
        if role:
            conditions.append(User.role == role)
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(
                or_(
                    User.first_name.ilike(pattern),
                    User.last_name.ilike(pattern),
                    User.username.ilike(pattern),
                    User.email.ilike(pattern),
                )
            )
        if tag_id:
            conditions.append(User.id.in_(select(UserTag.user_id).where(UserTag.tag_id == tag_id)))

        total = await self.session.scalar(select(func.count(User.id)).where(*conditions))
        result = await self.session.execute(
            select(User).where(*conditions).order_by(User.created_at.desc(), User.id.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def moderate_user(self, user_id: int, status: str, moderator_id: int) -> tuple[User, str]:
        """
        Set a user's status. Returns the user and the previous status so the
        caller can notify on activation after committing.
        """
        if status not in USER_STATUSES:
            raise ValidationError("Unknown status", {"status": f"must be one of {', '.join(USER_STATUSES)}"})
        user = await self.get_user(user_id)
        previous = user.status
        user.status = status
        user.moderated_at = utcnow()
        user.moderated_by_id = moderator_id
        await self.session.flush()
        return user, previous

    # --- Tags ---

    async def list_tags(self) -> list[Tag]:
        result = await self.session.execute(select(Tag).order_by(Tag.name))
        return list(result.scalars().all())

    async def create_tag(self, name: str, color: Optional[str] = None, description: Optional[str] = None) -> Tag:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Tag name is required", {"name": "must not be empty"})
        existing = await self.session.scalar(select(Tag.id).where(Tag.name == name))
        if existing is not None:
            raise ConflictError(f"Tag '{name}' already exists")
        tag = Tag(name=name, color=color, description=description)
        self.session.add(tag)
        await self.session.flush()
        return tag

    async def delete_tag(self, tag_id: int) -> Tag:
        tag = await self.session.get(Tag, tag_id)
        if tag is None:
            raise TagNotFoundError(tag_id)
        await self.session.execute(delete(UserTag).where(UserTag.tag_id == tag_id))
        await self.session.delete(tag)
        await self.session.flush()
        return tag

    async def set_user_tags(self, user_id: int, tag_ids: list[int]) -> list[Tag]:
        """Replace the user's tag set."""
        await self.get_user(user_id)
        tag_ids = list(dict.fromkeys(tag_ids))
        if tag_ids:
            found = set(
                (await self.session.execute(select(Tag.id).where(Tag.id.in_(tag_ids)))).scalars().all()
            )
            missing = [t for t in tag_ids if t not in found]
            if missing:
                raise TagNotFoundError(missing[0])
        await self.session.execute(delete(UserTag).where(UserTag.user_id == user_id))
        for tag_id in tag_ids:
            self.session.add(UserTag(user_id=user_id, tag_id=tag_id))
        await self.session.flush()
        return await self.get_user_tags(user_id)

    async def get_user_tags(self, user_id: int) -> list[Tag]:
        result = await self.session.execute(
            select(Tag).join(UserTag, UserTag.tag_id == Tag.id).where(UserTag.user_id == user_id).order_by(Tag.name)
        )
        return list(result.scalars().all())

    async def get_tags_for_users(self, user_ids: list[int]) -> dict[int, list[Tag]]:
        if not user_ids:
            return {}
        result = await self.session.execute(
            select(UserTag.user_id, Tag)
            .join(Tag, Tag.id == UserTag.tag_id)
            .where(UserTag.user_id.in_(user_ids))
            .order_by(Tag.name)
        )
        tags: dict[int, list[Tag]] = {uid: [] for uid in user_ids}
        for uid, tag in result.all():
            tags[uid].append(tag)
        return tags
