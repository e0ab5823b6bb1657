"""
Response envelope and paging helpers shared by the routers
"""

from typing import Any, Optional

from config import get_settings


def envelope(data: Any = None, message: Optional[str] = None) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def page_limit(limit: Optional[int]) -> int:
    settings = get_settings()
    if not limit:
        return settings.default_page_size
    return min(limit, settings.max_page_size)
