from datetime import datetime, timezone
from typing import Optional, List, Any, Dict

from pydantic import BaseModel, Field, AliasChoices, model_validator, field_validator

from ambassador.app.core.constants import TASK_GENERAL
from ambassador.app.core.url_validation import HttpUrlStr, check_http_url


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Columns store naive UTC; aware input is converted."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


# --- Auth ---
class AdminLoginBody(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: "UserResponse"


# --- Пользователи ---
class TagCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, max_length=16)
    description: Optional[str] = None


class TagResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    name: str
    color: Optional[str] = None
    description: Optional[str] = None


class UserTagsBody(BaseModel):
    tag_ids: List[int] = Field(default_factory=list, validation_alias=AliasChoices("tag_ids", "tagIds"))


class UserResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    telegram_id: Optional[int] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    role: str
    status: str
    phone: Optional[str] = None
    cdek_pvz: Optional[str] = None
    address: Optional[str] = None
    instagram_link: Optional[str] = None
    youtube_link: Optional[str] = None
    tiktok_link: Optional[str] = None
    vk_link: Optional[str] = None
    flariki_balance: int = 0
    created_at: Optional[datetime] = None
    moderated_at: Optional[datetime] = None


class MeResponse(UserResponse):
    has_contact: bool = False
    has_address: bool = False


class AdminUserResponse(UserResponse):
    tags: List[TagResponse] = Field(default_factory=list)


class ProfileUpdate(BaseModel):
    """Схема для обновления профиля - все поля опциональны, пустая строка очищает поле"""
    first_name: Optional[str] = Field(default=None, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=32)
    email: Optional[str] = Field(default=None, max_length=255)
    cdek_pvz: Optional[str] = Field(default=None, max_length=255)
    address: Optional[str] = None
    instagram_link: Optional[str] = Field(default=None, max_length=512)
    youtube_link: Optional[str] = Field(default=None, max_length=512)
    tiktok_link: Optional[str] = Field(default=None, max_length=512)
    vk_link: Optional[str] = Field(default=None, max_length=512)

    @field_validator("instagram_link", "youtube_link", "tiktok_link", "vk_link")
    @classmethod
    def validate_link(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return v
        return check_http_url(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return v
        v = v.strip()
        local, _, domain = v.partition("@")
        if not local or "." not in domain:
            raise ValueError("must be a valid email")
        return v.lower()


class UserModerateBody(BaseModel):
    status: str


# --- Задания ---
class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    requirements: Optional[str] = None
    type: str = TASK_GENERAL
    deadline: Optional[datetime] = None
    reward_flariki: Optional[int] = Field(
        default=None, ge=0, validation_alias=AliasChoices("reward_flariki", "rewardFlariki")
    )
    assigned_user_ids: List[int] = Field(
        default_factory=list, validation_alias=AliasChoices("assigned_user_ids", "assignedUserIds")
    )

    @field_validator("deadline")
    @classmethod
    def normalize_deadline(cls, v: Optional[datetime]) -> Optional[datetime]:
        return naive_utc(v)


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    requirements: Optional[str] = None
    status: Optional[str] = None
    deadline: Optional[datetime] = None
    reward_flariki: Optional[int] = Field(
        default=None, ge=0, validation_alias=AliasChoices("reward_flariki", "rewardFlariki")
    )
    assigned_user_ids: Optional[List[int]] = Field(
        default=None, validation_alias=AliasChoices("assigned_user_ids", "assignedUserIds")
    )

    @field_validator("deadline")
    @classmethod
    def normalize_deadline(cls, v: Optional[datetime]) -> Optional[datetime]:
        return naive_utc(v)


class TaskResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    title: str
    description: Optional[str] = None
    requirements: Optional[str] = None
    type: str
    status: str
    reward_flariki: Optional[int] = None
    deadline: Optional[datetime] = None
    created_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    assigned_user_ids: List[int] = Field(default_factory=list)
    reports_count: Optional[int] = None


# --- Отчеты ---
class VideoLinkIn(BaseModel):
    url: HttpUrlStr
    platform: Optional[str] = None
    views: Optional[int] = None
    likes: Optional[int] = None
    comments: Optional[int] = None


class StoryIn(BaseModel):
    story_url: HttpUrlStr = Field(validation_alias=AliasChoices("story_url", "storyUrl"))
    screenshot_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("screenshot_url", "screenshotUrl")
    )
    screenshot_file: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("screenshot_file", "screenshotFile")
    )
    reach: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "story_url": self.story_url,
            "screenshot_url": self.screenshot_url or self.screenshot_file,
            "reach": self.reach,
        }


class ReportCreate(BaseModel):
    """
    Canonical shape is ``video_links`` + ``stories``. The single-story
    fields of older clients (storyUrl, storyReach, screenshotUrl,
    screenshotFile) are folded into ``stories``.
    """
    task_id: int = Field(validation_alias=AliasChoices("task_id", "taskId"))
    type: str
    video_links: List[VideoLinkIn] = Field(
        default_factory=list, validation_alias=AliasChoices("video_links", "videoLinks")
    )
    stories: List[StoryIn] = Field(default_factory=list)
    product_ids: List[int] = Field(
        default_factory=list, validation_alias=AliasChoices("product_ids", "productIds")
    )
    notes: Optional[str] = Field(default=None, max_length=5000)

    # Legacy single-story fields
    story_url: Optional[HttpUrlStr] = Field(default=None, validation_alias=AliasChoices("story_url", "storyUrl"))
    story_reach: Optional[int] = Field(default=None, validation_alias=AliasChoices("story_reach", "storyReach"))
    screenshot_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("screenshot_url", "screenshotUrl")
    )
    screenshot_file: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("screenshot_file", "screenshotFile")
    )

    @model_validator(mode="after")
    def fold_legacy_story(self):
        if not self.stories and self.story_url and self.story_reach is not None:
            self.stories = [
                StoryIn(
                    story_url=self.story_url,
                    screenshot_url=self.screenshot_url,
                    screenshot_file=self.screenshot_file,
                    reach=self.story_reach,
                )
            ]
        return self


class ReportModerateBody(BaseModel):
    status: str
    notes: Optional[str] = None
    rejection_reason: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("rejection_reason", "rejectionReason")
    )


class VideoLinkResponse(BaseModel):
    model_config = {"from_attributes": True}

    url: str
    platform: Optional[str] = None
    views: Optional[int] = None
    likes: Optional[int] = None
    comments: Optional[int] = None


class StoryResponse(BaseModel):
    model_config = {"from_attributes": True}

    story_url: str
    screenshot_url: Optional[str] = None
    reach: int


class ReportProductResponse(BaseModel):
    model_config = {"from_attributes": True}

    product_id: int
    quantity: int


class ReportResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    user_id: int
    task_id: int
    type: str
    status: str
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by_id: Optional[int] = None
    video_links: List[VideoLinkResponse] = Field(default_factory=list)
    stories: List[StoryResponse] = Field(default_factory=list)
    products: List[ReportProductResponse] = Field(default_factory=list)


class UploadResponse(BaseModel):
    url: str


# --- Товары (продукция в отчетах) ---
class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    image_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("image_url", "imageUrl"))
    is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    image_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("image_url", "imageUrl"))
    is_active: Optional[bool] = Field(default=None, validation_alias=AliasChoices("is_active", "isActive"))


class ProductResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool = True


# --- Фларики ---
class AwardBody(BaseModel):
    user_id: int = Field(validation_alias=AliasChoices("user_id", "userId"))
    amount: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=1000)
    task_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("task_id", "taskId"))
    report_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("report_id", "reportId"))


class TransactionResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    user_id: int
    type: str
    amount: int
    reason: Optional[str] = None
    task_id: Optional[int] = None
    report_id: Optional[int] = None
    created_by_id: Optional[int] = None
    created_at: Optional[datetime] = None


class BalanceResponse(BaseModel):
    balance: int


# --- Магазин ---
class ShopItemCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    image_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("image_url", "imageUrl"))
    category: Optional[str] = Field(default=None, max_length=100)
    price: int = Field(gt=0)
    stock: Optional[int] = Field(default=None, ge=0)
    is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))


class ShopItemUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    image_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("image_url", "imageUrl"))
    category: Optional[str] = Field(default=None, max_length=100)
    price: Optional[int] = Field(default=None, gt=0)
    stock: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = Field(default=None, validation_alias=AliasChoices("is_active", "isActive"))


class ShopItemResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    category: Optional[str] = None
    price: int
    stock: Optional[int] = None
    is_active: bool = True


class PurchaseBody(BaseModel):
    shop_item_id: int = Field(validation_alias=AliasChoices("shop_item_id", "shopItemId"))
    # Range is enforced by ShopService so the error carries the shop format
    quantity: int = 1


class PurchaseStatusBody(BaseModel):
    status: str
    notes: Optional[str] = None


class PurchaseResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    user_id: int
    shop_item_id: int
    quantity: int
    total_price: int
    status: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    item: Optional[ShopItemResponse] = None


# --- Рассылки ---
class BroadcastCreate(BaseModel):
    title: Optional[str] = Field(default=None, max_length=255)
    message: str = Field(min_length=1)
    tag_ids: List[int] = Field(default_factory=list, validation_alias=AliasChoices("tag_ids", "tagIds"))
    task_ids: List[int] = Field(default_factory=list, validation_alias=AliasChoices("task_ids", "taskIds"))

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: Optional[str]) -> Optional[str]:
        return _blank_to_none(v)


class BroadcastResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    title: Optional[str] = None
    message: str
    tag_ids: Optional[List[int]] = None
    task_ids: List[int] = Field(default_factory=list)
    recipients_count: int
    created_by_id: Optional[int] = None
    sent_at: Optional[datetime] = None


# --- Аудит ---
class AuditLogResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    action: str
    entity_type: str
    entity_id: Optional[int] = None
    user_id: Optional[int] = None
    details: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class Page(BaseModel):
    """Paginated list: ``items`` plus totals."""
    items: List[Any]
    total: int
    page: int
    limit: int


TokenResponse.model_rebuild()
