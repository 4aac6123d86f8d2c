"""User-facing background work: welcome mail and avatar processing.

Learn: avatar processing reports progress twice per stage. The snapshot
goes to the task status cache (so a client that connects late can catch
up) and a broadcast goes to the `broadcasts` destination (so a connected
client sees it live). A cache failure only costs late joiners the
snapshot, so it is logged and skipped; a publish failure fails the task.
"""

import asyncio
from typing import Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from taskwire.broadcast.registry import BroadcastMessage
from taskwire.cache.task_cache import CacheError, TaskStatusCache
from taskwire.config import MessageType, settings
from taskwire.db.engine import SessionFactory
from taskwire.db.models import User
from taskwire.messaging.base import MessageProducer
from taskwire.messaging.config import BROADCASTS_DESTINATION
from taskwire.tasks import publish_task
from taskwire.tasks.errors import TaskError
from taskwire.tasks.schemas import COMPLETE_EVENT, PROGRESS_EVENT, AvatarUploadProgress
from taskwire.tasks.types import SendEmail

logger = structlog.get_logger()

APP_NAME = "Taskwire"

# (progress %, message, delay before the stage in seconds)
AVATAR_STAGES: Sequence[tuple[int, str, float]] = (
    (10, "Validating file...", 0.1),
    (25, "Preparing upload...", 0.2),
    (40, "Processing image...", 0.4),
    (60, "Optimizing...", 0.5),
    (80, "Finalizing...", 0.3),
    (100, "Upload complete!", 0.2),
)


async def get_user(session: AsyncSession, user_id: int) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise TaskError(f"User {user_id} not found")
    return user


def render_welcome_html(user: User) -> str:
    name = user.display_name
    return (
        f"<h1>Welcome to {APP_NAME}, {name}!</h1>"
        f"<p>Your account <strong>{user.email}</strong> is ready.</p>"
        f'<p><a href="{settings.app_url}">Open {APP_NAME}</a></p>'
    )


async def send_welcome_email(
    session_factory: SessionFactory,
    producer: MessageProducer,
    user_id: int,
) -> None:
    """Look up the user and queue a welcome SendEmail on the emails destination."""
    async with session_factory() as session:
        user = await get_user(session, user_id)

    event = await publish_task(
        producer,
        SendEmail(
            to=user.email,
            subject=f"Welcome to {APP_NAME}!",
            html_body=render_welcome_html(user),
        ),
        MessageType.EMAILS.value,
    )
    logger.info("tasks.welcome_email_queued", user_id=user_id, email=user.email, event_id=event.id)


async def _report(
    producer: MessageProducer,
    cache: Optional[TaskStatusCache],
    event_type: str,
    progress: AvatarUploadProgress,
) -> None:
    data = progress.model_dump()
    if cache is not None:
        try:
            await cache.cache_status(progress.task_id, data)
        except CacheError as e:
            logger.warning("tasks.status_cache_failed", task_id=progress.task_id, error=str(e))

    message = BroadcastMessage(event_type=event_type, data=data)
    await producer.publish_event_json(message.model_dump_json(), BROADCASTS_DESTINATION)


async def process_avatar_upload(
    session_factory: SessionFactory,
    producer: MessageProducer,
    cache: Optional[TaskStatusCache],
    task_id: str,
    user_id: int,
    file_name: str,
    stages: Sequence[tuple[int, str, float]] = AVATAR_STAGES,
) -> None:
    log = logger.bind(task_id=task_id, user_id=user_id, file_name=file_name)
    log.info("tasks.avatar_upload_started")

    async with session_factory() as session:
        await get_user(session, user_id)

    for percent, text, delay in stages:
        await asyncio.sleep(delay)
        await _report(
            producer,
            cache,
            PROGRESS_EVENT,
            AvatarUploadProgress(
                task_id=task_id,
                user_id=user_id,
                progress=percent,
                status="processing",
                message=text,
            ),
        )
        log.info("tasks.avatar_upload_progress", progress=percent, message=text)

    await _report(
        producer,
        cache,
        COMPLETE_EVENT,
        AvatarUploadProgress(
            task_id=task_id,
            user_id=user_id,
            progress=100,
            status="completed",
            message=f"Avatar '{file_name}' uploaded successfully!",
        ),
    )
    log.info("tasks.avatar_upload_completed")
