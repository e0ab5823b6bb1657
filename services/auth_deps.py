"""
Auth dependencies shared by the routers
"""

from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from motor.motor_asyncio import AsyncIOMotorDatabase
from database.mongodb import get_database
from models.user import User, Role, STAFF_ROLES
from services.auth_service import decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncIOMotorDatabase = Depends(get_database)
) -> User:
    """Get current authenticated user from token"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_access_token(token)
    if payload is None:
        raise credentials_exception

    user_id: str = payload.get("sub")
    if user_id is None:
        raise credentials_exception

    user_doc = await db.users.find_one({"_id": user_id})
    if user_doc is None or not user_doc.get("is_active", True):
        raise credentials_exception

    return User(
        id=user_doc["_id"],
        email=user_doc["email"],
        name=user_doc["name"],
        roles=user_doc.get("roles", []),
        is_active=user_doc.get("is_active", True),
        created_at=user_doc["created_at"]
    )


def require_roles(*roles: Role):
    """Dependency factory: the current user must hold at least one of `roles`"""
    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if not current_user.has_any_role(*roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action"
            )
        return current_user
    return checker


async def get_client_record(db: AsyncIOMotorDatabase, user: User) -> Optional[dict]:
    """The client record linked to a login account, if any"""
    return await db.clients.find_one({"user_id": user.id})


async def ensure_client_access(db: AsyncIOMotorDatabase, user: User, client_id: str):
    """Staff see everything; a client user only documents billed to them"""
    if user.has_any_role(*STAFF_ROLES):
        return

    client = await get_client_record(db, user)
    if not client or client["_id"] != client_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to access this resource"
        )
