# ambassador/app/services/__init__.py
"""
Services layer for business logic.
Routers stay thin; services take an AsyncSession, flush but never commit.
"""

from ambassador.app.services.access import (
    Identity,
    CredentialResolver,
    TelegramSignedResolver,
    BearerTokenResolver,
    resolve_identity,
    load_current_user,
    ensure_active,
    ensure_profile_complete,
    ensure_role,
)
from ambassador.app.services.ledger import (
    LedgerService,
    LedgerServiceError,
    LedgerUserNotFoundError,
    InsufficientBalanceError,
)
from ambassador.app.services.users import (
    UserService,
    UserServiceError,
    UserNotFoundError,
    TagNotFoundError,
)
from ambassador.app.services.tasks import (
    TaskService,
    TaskServiceError,
    TaskNotFoundError,
    InvalidTaskTransitionError,
    visible_to,
)
from ambassador.app.services.reports import (
    ReportService,
    ReportServiceError,
    ReportNotFoundError,
    InvalidReportTransitionError,
    ModerationResult,
    validate_report_payload,
)
from ambassador.app.services.products import (
    ProductService,
    ProductServiceError,
    ProductNotFoundError,
)
from ambassador.app.services.shop import (
    ShopService,
    ShopServiceError,
    ShopItemNotFoundError,
    ItemUnavailableError,
    InsufficientStockError,
    ShopItemInUseError,
    PurchaseNotFoundError,
    InvalidPurchaseTransitionError,
)
from ambassador.app.services.broadcasts import (
    BroadcastService,
    BroadcastServiceError,
    fan_out,
)
from ambassador.app.services.statistics import StatisticsService
from ambassador.app.services.reminders import send_weekly_report_reminders
from ambassador.app.services.audit import AuditService

__all__ = [
    # Access
    "Identity",
    "CredentialResolver",
    "TelegramSignedResolver",
    "BearerTokenResolver",
    "resolve_identity",
    "load_current_user",
    "ensure_active",
    "ensure_profile_complete",
    "ensure_role",
    # Ledger
    "LedgerService",
    "LedgerServiceError",
    "LedgerUserNotFoundError",
    "InsufficientBalanceError",
    # Users
    "UserService",
    "UserServiceError",
    "UserNotFoundError",
    "TagNotFoundError",
    # Tasks
    "TaskService",
    "TaskServiceError",
    "TaskNotFoundError",
    "InvalidTaskTransitionError",
    "visible_to",
    # Reports
    "ReportService",
    "ReportServiceError",
    "ReportNotFoundError",
    "InvalidReportTransitionError",
    "ModerationResult",
    "validate_report_payload",
    # Products
    "ProductService",
    "ProductServiceError",
    "ProductNotFoundError",
    # Shop
    "ShopService",
    "ShopServiceError",
    "ShopItemNotFoundError",
    "ItemUnavailableError",
    "InsufficientStockError",
    "ShopItemInUseError",
    "PurchaseNotFoundError",
    "InvalidPurchaseTransitionError",
    # Broadcasts
    "BroadcastService",
    "BroadcastServiceError",
    "fan_out",
    # Reporting
    "StatisticsService",
    "send_weekly_report_reminders",
    "AuditService",
]
