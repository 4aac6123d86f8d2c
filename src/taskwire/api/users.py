"""User task endpoints — kick off background work and return immediately.

Learn: these routes never do the work themselves. They check the user
exists, publish a task event and answer 202 with an id the client can
follow over /ws/task/{task_id} or poll at /api/v1/tasks/{task_id}/status.
"""

import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from taskwire.api.deps import get_db, require_producer
from taskwire.config import MessageType
from taskwire.db.models import User
from taskwire.messaging.base import MessageProducer
from taskwire.messaging.errors import PublishError
from taskwire.tasks import publish_task
from taskwire.tasks.schemas import AvatarUploadResponse
from taskwire.tasks.types import ProcessAvatarUpload, ProcessUserRegistration

logger = structlog.get_logger()
router = APIRouter()


class UploadAvatarRequest(BaseModel):
    file_name: str = Field(min_length=1, max_length=255)


class QueuedResponse(BaseModel):
    event_id: str
    message: str


async def _require_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.post(
    "/users/{user_id}/avatar",
    response_model=AvatarUploadResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def upload_avatar(
    user_id: int,
    body: UploadAvatarRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    producer: MessageProducer = Depends(require_producer),
):
    """Queue avatar processing; progress streams on /ws/task/{task_id}."""
    user = await _require_user(db, user_id)
    task_id = str(uuid.uuid4())

    try:
        await publish_task(
            producer,
            ProcessAvatarUpload(task_id=task_id, user_id=user.id, file_name=body.file_name),
            MessageType.TASKS.value,
        )
    except PublishError as e:
        logger.error("api.avatar_publish_failed", user_id=user_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to queue upload task")

    logger.info("api.avatar_upload_queued", user_id=user_id, task_id=task_id)
    scheme = "wss" if request.url.scheme == "https" else "ws"
    return AvatarUploadResponse(
        task_id=task_id,
        message=(
            f"Avatar upload initiated. Connect to {scheme}://{request.url.netloc}"
            f"/ws/task/{task_id} to track progress."
        ),
    )


@router.post(
    "/users/{user_id}/welcome",
    response_model=QueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def queue_welcome_email(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    producer: MessageProducer = Depends(require_producer),
):
    await _require_user(db, user_id)
    try:
        event = await publish_task(
            producer, ProcessUserRegistration(user_id=user_id), MessageType.TASKS.value
        )
    except PublishError as e:
        logger.error("api.welcome_publish_failed", user_id=user_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to queue welcome email")
    return QueuedResponse(event_id=event.id, message="Welcome email queued.")
