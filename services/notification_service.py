"""
Notification Service - best-effort fan-out of lifecycle events

Routes schedule `fan_out` on FastAPI BackgroundTasks so it runs after the
response is sent. Every recipient is delivered independently and any
failure is logged and swallowed: a notification can never fail or roll
back the operation that triggered it.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from models.common import generate_id
from models.notification import (
    NotificationCategory,
    NotificationEvent,
    NotificationStatus
)

logger = logging.getLogger(__name__)


def build_event(
    category: NotificationCategory,
    subject: str,
    message: str,
    client: Optional[str] = None,
    project: Optional[str] = None,
    recipients: Optional[List[Optional[str]]] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> NotificationEvent:
    return NotificationEvent(
        category=category,
        subject=subject,
        message=message,
        client=client,
        project=project,
        recipients=[r for r in (recipients or []) if r],
        metadata=metadata or {}
    )


async def create_in_app_notification(
    db: AsyncIOMotorDatabase,
    recipient: str,
    category: NotificationCategory,
    subject: str,
    message: str,
    metadata: Optional[Dict[str, Any]] = None
) -> Optional[dict]:
    """
    Store an in-app notification for one user.
    Returns None when the user has disabled in-app notifications.
    """
    user = await db.users.find_one({"_id": recipient}, {"notification_preferences": 1})
    preferences = (user or {}).get("notification_preferences") or {}
    if preferences.get("in_app") is False:
        logger.info(f"In-app notification skipped for user {recipient}: preference disabled")
        return None

    now = datetime.utcnow()
    notification_doc = {
        "_id": generate_id(),
        "recipient": recipient,
        "type": "in_app",
        "category": category.value,
        "subject": subject,
        "message": message,
        "status": NotificationStatus.PENDING.value,
        "metadata": metadata or {},
        "sent_at": None,
        "read_at": None,
        "created_at": now
    }
    await db.notifications.insert_one(notification_doc)

    # In-app delivery is the stored record itself
    await db.notifications.update_one(
        {"_id": notification_doc["_id"]},
        {"$set": {"status": NotificationStatus.SENT.value, "sent_at": now}}
    )
    notification_doc["status"] = NotificationStatus.SENT.value
    notification_doc["sent_at"] = now

    logger.info(f"In-app notification sent to user {recipient}: {subject}")
    return notification_doc


async def resolve_recipients(db: AsyncIOMotorDatabase, event: NotificationEvent) -> List[str]:
    """Collect user IDs for an event: explicit recipients, client account, project staff"""
    recipients = list(event.recipients)

    if event.client:
        client = await db.clients.find_one({"_id": event.client}, {"user_id": 1})
        if client and client.get("user_id"):
            recipients.append(client["user_id"])

    if event.project:
        project = await db.projects.find_one({"_id": event.project}, {"assigned_to": 1})
        if project:
            recipients.extend(project.get("assigned_to") or [])

    # Dedupe, keep order
    seen = set()
    unique = []
    for recipient in recipients:
        if recipient and recipient not in seen:
            seen.add(recipient)
            unique.append(recipient)
    return unique


async def fan_out(db: AsyncIOMotorDatabase, event: NotificationEvent) -> int:
    """Deliver an event to all of its recipients. Never raises."""
    try:
        recipients = await resolve_recipients(db, event)
    except Exception as e:
        logger.error(f"Failed to resolve recipients for '{event.subject}': {e}")
        return 0

    delivered = 0
    for recipient in recipients:
        try:
            notification = await create_in_app_notification(
                db,
                recipient,
                event.category,
                event.subject,
                event.message,
                event.metadata
            )
            if notification:
                delivered += 1
        except Exception as e:
            logger.error(f"Error sending notification '{event.subject}' to {recipient}: {e}")

    return delivered
