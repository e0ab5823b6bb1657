"""
Notification Routes - the caller's own in-app notifications
"""

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime
from typing import Optional
import logging

from database.mongodb import get_database
from services.auth_deps import get_current_user
from services.errors import NotFound
from models.user import User
from models.common import Pagination
from models.notification import Notification, NotificationCategory
from routes.common import envelope, page_limit

router = APIRouter(prefix="/api/notifications", tags=["notifications"])
logger = logging.getLogger(__name__)


@router.get("")
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    category: Optional[NotificationCategory] = None,
    status: Optional[str] = Query(None, pattern="^(read|unread)$"),
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(get_current_user)
):
    limit = page_limit(limit)
    query = {"recipient": current_user.id}
    if category:
        query["category"] = category.value
    if status == "unread":
        query["read_at"] = None
    elif status == "read":
        query["read_at"] = {"$ne": None}

    cursor = db.notifications.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    notifications = await cursor.to_list(length=limit)
    total = await db.notifications.count_documents(query)
    unread = await db.notifications.count_documents({"recipient": current_user.id, "read_at": None})

    return envelope({
        "notifications": [Notification(**n).dict(by_alias=True) for n in notifications],
        "unread_count": unread,
        "pagination": Pagination.build(page, limit, total).dict()
    })


@router.get("/unread-count")
async def unread_count(
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(get_current_user)
):
    count = await db.notifications.count_documents({"recipient": current_user.id, "read_at": None})
    return envelope({"unread_count": count})


@router.patch("/read-all")
async def mark_all_read(
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(get_current_user)
):
    result = await db.notifications.update_many(
        {"recipient": current_user.id, "read_at": None},
        {"$set": {"read_at": datetime.utcnow()}}
    )
    return envelope({"modified_count": result.modified_count}, "All notifications marked as read")


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(get_current_user)
):
    notification = await db.notifications.find_one({"_id": notification_id, "recipient": current_user.id})
    if not notification:
        raise NotFound("Notification not found")

    if notification.get("read_at") is None:
        notification["read_at"] = datetime.utcnow()
        await db.notifications.update_one(
            {"_id": notification_id},
            {"$set": {"read_at": notification["read_at"]}}
        )

    return envelope({"notification": Notification(**notification).dict(by_alias=True)}, "Notification marked as read")


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(get_current_user)
):
    result = await db.notifications.delete_one({"_id": notification_id, "recipient": current_user.id})
    if result.deleted_count == 0:
        raise NotFound("Notification not found")
    return envelope(message="Notification deleted successfully")
