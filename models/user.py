from pydantic import BaseModel, EmailStr, Field
from typing import List
from datetime import datetime
from enum import Enum

class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    FINANCE = "finance"
    PROJECT_MANAGER = "project_manager"
    CLIENT = "client"

# Role groups used by the route guards
BILLING_ROLES = (Role.SUPER_ADMIN, Role.FINANCE)
STAFF_ROLES = (Role.SUPER_ADMIN, Role.FINANCE, Role.PROJECT_MANAGER)

class NotificationPreferences(BaseModel):
    in_app: bool = True
    email: bool = True

class UserBase(BaseModel):
    email: EmailStr
    name: str

class UserInDB(UserBase):
    id: str = Field(alias="_id")
    roles: List[Role] = []
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    notification_preferences: NotificationPreferences = Field(default_factory=NotificationPreferences)

    class Config:
        populate_by_name = True

class User(UserBase):
    id: str
    roles: List[Role] = []
    is_active: bool = True
    created_at: datetime

    def has_any_role(self, *roles: Role) -> bool:
        return any(role in self.roles for role in roles)
