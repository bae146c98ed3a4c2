"""
Shared constants: roles, statuses and domain limits.
"""

# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
ROLE_AMBASSADOR = "AMBASSADOR"
ROLE_MANAGER = "MANAGER"
ROLE_ADMIN = "ADMIN"
USER_ROLES = (ROLE_AMBASSADOR, ROLE_MANAGER, ROLE_ADMIN)
STAFF_ROLES = (ROLE_MANAGER, ROLE_ADMIN)

USER_PENDING = "PENDING"
USER_ACTIVE = "ACTIVE"
USER_INACTIVE = "INACTIVE"
USER_SUSPENDED = "SUSPENDED"
USER_STATUSES = (USER_PENDING, USER_ACTIVE, USER_INACTIVE, USER_SUSPENDED)

# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------
TASK_GENERAL = "GENERAL"
TASK_PERSONAL = "PERSONAL"
TASK_TYPES = (TASK_GENERAL, TASK_PERSONAL)

TASK_DRAFT = "DRAFT"
TASK_ACTIVE = "ACTIVE"
TASK_COMPLETED = "COMPLETED"
TASK_CANCELLED = "CANCELLED"
TASK_STATUSES = (TASK_DRAFT, TASK_ACTIVE, TASK_COMPLETED, TASK_CANCELLED)

# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------
REPORT_VIDEO_LINK = "VIDEO_LINK"
REPORT_STORY_SCREENSHOT = "STORY_SCREENSHOT"
REPORT_TYPES = (REPORT_VIDEO_LINK, REPORT_STORY_SCREENSHOT)

REPORT_PENDING = "PENDING"
REPORT_APPROVED = "APPROVED"
REPORT_REJECTED = "REJECTED"
REPORT_STATUSES = (REPORT_PENDING, REPORT_APPROVED, REPORT_REJECTED)
TERMINAL_REPORT_STATUSES = (REPORT_APPROVED, REPORT_REJECTED)

VIDEO_PLATFORMS = ("INSTAGRAM", "YOUTUBE", "TIKTOK", "VK", "OTHER")

# ---------------------------------------------------------------------------
# Flariki ledger
# ---------------------------------------------------------------------------
TX_EARNED = "EARNED"
TX_SPENT = "SPENT"
TX_BONUS = "BONUS"
TX_PENALTY = "PENALTY"
TRANSACTION_TYPES = (TX_EARNED, TX_SPENT, TX_BONUS, TX_PENALTY)

# ---------------------------------------------------------------------------
# Shop
# ---------------------------------------------------------------------------
PURCHASE_PENDING = "PENDING"
PURCHASE_PROCESSING = "PROCESSING"
PURCHASE_SHIPPED = "SHIPPED"
PURCHASE_DELIVERED = "DELIVERED"
PURCHASE_CANCELLED = "CANCELLED"
PURCHASE_STATUSES = (
    PURCHASE_PENDING, PURCHASE_PROCESSING, PURCHASE_SHIPPED, PURCHASE_DELIVERED, PURCHASE_CANCELLED,
)
# Forward order of the fulfilment pipeline; CANCELLED sits outside it
PURCHASE_PIPELINE = (PURCHASE_PENDING, PURCHASE_PROCESSING, PURCHASE_SHIPPED, PURCHASE_DELIVERED)
TERMINAL_PURCHASE_STATUSES = (PURCHASE_DELIVERED, PURCHASE_CANCELLED)

MIN_PURCHASE_QUANTITY = 1
MAX_PURCHASE_QUANTITY = 10

# ---------------------------------------------------------------------------
# Audit log actions
# ---------------------------------------------------------------------------
AUDIT_USER_MODERATED = "USER_MODERATED"
AUDIT_TASK_CREATED = "TASK_CREATED"
AUDIT_TASK_UPDATED = "TASK_UPDATED"
AUDIT_TASK_PUBLISHED = "TASK_PUBLISHED"
AUDIT_REPORT_MODERATED = "REPORT_MODERATED"
AUDIT_FLARIKI_AWARDED = "FLARIKI_AWARDED"
AUDIT_SHOP_PURCHASE = "SHOP_PURCHASE"
AUDIT_PURCHASE_STATUS_CHANGED = "PURCHASE_STATUS_CHANGED"
AUDIT_BROADCAST_SENT = "BROADCAST_SENT"
AUDIT_TAG_ASSIGNED = "TAG_ASSIGNED"

# ---------------------------------------------------------------------------
# Leaderboard rating weights
# ---------------------------------------------------------------------------
RATING_VIEW_WEIGHT = 1
RATING_LIKE_WEIGHT = 2
RATING_COMMENT_WEIGHT = 3
RATING_REACH_WEIGHT = 0.5

# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
