from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum

class ProjectStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class ProjectBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    client: str
    assigned_to: List[str] = []  # Staff user IDs
    notes: Optional[str] = Field(None, max_length=1000)

class ProjectCreate(ProjectBase):
    pass

class Project(ProjectBase):
    id: str = Field(alias="_id")
    project_number: str
    status: ProjectStatus = ProjectStatus.PENDING

    # Back-references, each set once when first created
    quotation: Optional[str] = None
    invoice: Optional[str] = None

    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        populate_by_name = True
