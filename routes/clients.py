"""
Client Routes
"""

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime
from typing import Optional
import re
import logging

from database.mongodb import get_database
from services.auth_deps import require_roles
from services.errors import NotFound, ValidationFailed
from models.user import User, STAFF_ROLES
from models.common import Pagination, generate_id
from models.client import Client, ClientCreate
from routes.common import envelope, page_limit

router = APIRouter(prefix="/api/clients", tags=["clients"])
logger = logging.getLogger(__name__)


@router.post("", status_code=201)
async def create_client(
    data: ClientCreate,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*STAFF_ROLES))
):
    email = data.email.lower()
    if await db.clients.find_one({"email": email}):
        raise ValidationFailed("A client with this email already exists")

    now = datetime.utcnow()
    client_doc = {
        "_id": generate_id(),
        **data.dict(),
        "email": email,
        "is_active": True,
        "created_at": now,
        "updated_at": now
    }
    await db.clients.insert_one(client_doc)

    logger.info(f"Client created: {email}")
    return envelope({"client": Client(**client_doc).dict(by_alias=True)}, "Client created successfully")


@router.get("")
async def list_clients(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    search: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*STAFF_ROLES))
):
    limit = page_limit(limit)
    query = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [
            {"first_name": pattern},
            {"last_name": pattern},
            {"email": pattern},
            {"company": pattern}
        ]

    cursor = db.clients.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    clients = await cursor.to_list(length=limit)
    total = await db.clients.count_documents(query)

    return envelope({
        "clients": [Client(**c).dict(by_alias=True) for c in clients],
        "pagination": Pagination.build(page, limit, total).dict()
    })


@router.get("/{client_id}")
async def get_client(
    client_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*STAFF_ROLES))
):
    client = await db.clients.find_one({"_id": client_id})
    if not client:
        raise NotFound("Client not found")
    return envelope({"client": Client(**client).dict(by_alias=True)})
