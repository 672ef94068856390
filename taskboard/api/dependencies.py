from functools import lru_cache
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from taskboard.core.config import settings
from taskboard.core.database import get_async_session
from taskboard.auth.jwt_handler import decode_access_token
from taskboard.services.task.task_service import TaskService
from taskboard.utils.file_handler import AttachmentStore, LocalAttachmentStore
import logging

security = HTTPBearer()
logger = logging.getLogger(__name__)

async def get_current_owner(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> str:
    """Get the owner id of the authenticated caller"""
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Get owner id from token
    owner_id = payload.get("sub")
    if not owner_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Add request info to context
    request.state.owner_id = str(owner_id)
    return str(owner_id)

@lru_cache
def get_attachment_store() -> AttachmentStore:
    """Attachment store shared by all requests"""
    return LocalAttachmentStore(settings.UPLOAD_PATH)

async def get_task_service(
    session: AsyncSession = Depends(get_async_session),
    store: AttachmentStore = Depends(get_attachment_store),
) -> TaskService:
    return TaskService(session, store)
