"""Shared helpers for document models"""

from pydantic import BaseModel
from typing import Optional
from datetime import datetime, timezone
import uuid


def generate_id() -> str:
    """Generate unique document ID"""
    return str(uuid.uuid4())


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Mongo stores naive UTC datetimes; normalize aware values to match"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = (total + limit - 1) // limit if limit else 0
        return cls(
            current_page=page,
            total_pages=total_pages,
            total=total,
            has_next_page=page < total_pages,
            has_prev_page=page > 1
        )
