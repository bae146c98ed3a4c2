"""Importing this package registers every model with Base.metadata."""
from ambassador.app.models.user import User, Tag, UserTag
from ambassador.app.models.task import Task, TaskAssignment
from ambassador.app.models.report import Report, VideoLink, Story, Product, ReportProduct
from ambassador.app.models.ledger import FlarikiTransaction
from ambassador.app.models.shop import ShopItem, Purchase
from ambassador.app.models.broadcast import Broadcast, BroadcastTask
from ambassador.app.models.audit import AuditLog

__all__ = [
    "User",
    "Tag",
    "UserTag",
    "Task",
    "TaskAssignment",
    "Report",
    "VideoLink",
    "Story",
    "Product",
    "ReportProduct",
    "FlarikiTransaction",
    "ShopItem",
    "Purchase",
    "Broadcast",
    "BroadcastTask",
    "AuditLog",
]
