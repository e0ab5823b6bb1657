"""
Notification Model - in-app lifecycle notifications
Best effort only: never part of financial correctness
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum


class NotificationCategory(str, Enum):
    INVOICE = "invoice"
    PAYMENT = "payment"
    PROJECT = "project"
    QUOTATION = "quotation"
    GENERAL = "general"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationEvent(BaseModel):
    """A lifecycle event to fan out to several recipients"""
    recipients: List[str] = []  # User IDs, e.g. the creator
    client: Optional[str] = None  # Resolved to the client's login account
    project: Optional[str] = None  # Resolved to the project's assigned staff
    category: NotificationCategory
    subject: str = Field(..., max_length=200)
    message: str
    metadata: Dict[str, Any] = {}


class Notification(BaseModel):
    id: str = Field(alias="_id")
    recipient: str
    type: str = "in_app"
    category: NotificationCategory
    subject: str
    message: str
    status: NotificationStatus = NotificationStatus.PENDING
    metadata: Dict[str, Any] = {}
    sent_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    created_at: datetime

    @property
    def is_unread(self) -> bool:
        return self.read_at is None

    class Config:
        populate_by_name = True
