"""
Dashboard Routes - admin, client and revenue overviews
"""

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime
from typing import Optional

from database.mongodb import get_database
from services.auth_deps import get_current_user, require_roles, get_client_record
from services.errors import NotFound
from services import reporting_service
from models.common import to_naive_utc
from models.user import User, BILLING_ROLES
from routes.common import envelope

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/admin")
async def admin_dashboard(
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    return envelope(await reporting_service.admin_dashboard(db))


@router.get("/client")
async def client_dashboard(
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(get_current_user)
):
    client = await get_client_record(db, current_user)
    if not client:
        raise NotFound("Client not found")
    return envelope(await reporting_service.client_dashboard(db, client["_id"]))


@router.get("/revenue")
async def revenue_stats(
    period: str = Query("monthly", pattern="^(daily|weekly|monthly|yearly)$"),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*BILLING_ROLES))
):
    stats = await reporting_service.revenue_stats(
        db,
        start_date=to_naive_utc(start_date),
        end_date=to_naive_utc(end_date),
        period=period
    )
    return envelope(stats)
