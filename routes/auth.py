from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from database.mongodb import get_database
from models.user import User
from services.auth_deps import get_current_user, get_client_record
from routes.common import envelope
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["authentication"])

@router.get("/me")
async def get_me(
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_database)
):
    """Get current user info, with the linked client record for client accounts"""
    client = await get_client_record(db, current_user)
    return envelope({
        "user": current_user.dict(),
        "client_id": client["_id"] if client else None
    })
