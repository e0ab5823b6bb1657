"""
Project Routes - the work that quotations and invoices are attached to
"""

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from datetime import datetime
from typing import Optional
import logging

from database.mongodb import get_database
from services.auth_deps import require_roles
from services.errors import NotFound
from services.numbering import next_document_number, PROJECT_PREFIX
from models.user import User, STAFF_ROLES
from models.common import Pagination, generate_id
from models.project import Project, ProjectCreate, ProjectStatus
from routes.common import envelope, page_limit

router = APIRouter(prefix="/api/projects", tags=["projects"])
logger = logging.getLogger(__name__)


@router.post("", status_code=201)
async def create_project(
    data: ProjectCreate,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*STAFF_ROLES))
):
    if not await db.clients.find_one({"_id": data.client}):
        raise NotFound("Client not found")

    now = datetime.utcnow()
    project_doc = {
        "_id": generate_id(),
        "project_number": await next_document_number(db, PROJECT_PREFIX, now),
        **data.dict(),
        "status": ProjectStatus.PENDING.value,
        "quotation": None,
        "invoice": None,
        "created_by": current_user.id,
        "created_at": now,
        "updated_at": now
    }
    await db.projects.insert_one(project_doc)

    logger.info(f"Project {project_doc['project_number']} created for client {data.client}")
    return envelope({"project": Project(**project_doc).dict(by_alias=True)}, "Project created successfully")


@router.get("")
async def list_projects(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    status: Optional[ProjectStatus] = None,
    client: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*STAFF_ROLES))
):
    limit = page_limit(limit)
    query = {}
    if status:
        query["status"] = status.value
    if client:
        query["client"] = client

    cursor = db.projects.find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    projects = await cursor.to_list(length=limit)
    total = await db.projects.count_documents(query)

    return envelope({
        "projects": [Project(**p).dict(by_alias=True) for p in projects],
        "pagination": Pagination.build(page, limit, total).dict()
    })


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    db: AsyncIOMotorDatabase = Depends(get_database),
    current_user: User = Depends(require_roles(*STAFF_ROLES))
):
    project = await db.projects.find_one({"_id": project_id})
    if not project:
        raise NotFound("Project not found")
    return envelope({"project": Project(**project).dict(by_alias=True)})
