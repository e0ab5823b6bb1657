"""
Service errors - raised by the lifecycle services, turned into the
{"success": false, "message": ...} envelope by the handlers in server.py
"""

from fastapi import status


class ServiceError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationFailed(ServiceError):
    """Missing or malformed input"""
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(ServiceError):
    """Referenced document does not exist"""
    status_code = status.HTTP_404_NOT_FOUND


class StateConflict(ServiceError):
    """Operation not allowed in the document's current lifecycle state"""
    status_code = status.HTTP_400_BAD_REQUEST
