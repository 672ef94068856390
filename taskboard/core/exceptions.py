from typing import Any, List, Optional
from fastapi import HTTPException, status

class BaseAppException(HTTPException):
    def __init__(self, status_code: int, detail: str):
        super().__init__(status_code=status_code, detail=detail)

class ValidationError(BaseAppException):
    def __init__(self, detail: str = "Validation error", errors: Optional[List[Any]] = None):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
        self.errors = errors or []

class NotFoundError(BaseAppException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class ForbiddenError(BaseAppException):
    def __init__(self, detail: str = "Not authorized to access this task"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

class StorageError(BaseAppException):
    """Raised when the attachment store fails to write or remove a file"""
    def __init__(self, detail: str = "File storage operation failed"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)

def format_validation_errors(errors: List[dict]) -> List[dict]:
    """Flatten pydantic error entries into field/message pairs"""
    formatted = []
    for error in errors:
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        formatted.append({
            "field": ".".join(location),
            "message": error.get("msg", "Invalid value"),
        })
    return formatted
