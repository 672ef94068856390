from typing import Any, Generic, List, Optional, TypeVar
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base schema exposing camelCase keys on the wire"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    count: Optional[int] = None
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    errors: Optional[List[Any]] = None
