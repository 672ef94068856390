from fastapi import APIRouter
from taskboard.api.v1.endpoints.task import tasks

api_router = APIRouter()

# Task routes
api_router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
