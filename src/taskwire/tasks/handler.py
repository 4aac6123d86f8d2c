"""Concrete task handler — routes each task type to its module function.

No business logic lives here and nothing is retried here; a raised
exception is reported to the worker pool, which owns the retry policy.
"""

from typing import Optional

import structlog

from taskwire.cache.task_cache import TaskStatusCache
from taskwire.db.engine import SessionFactory
from taskwire.mail.smtp import SmtpClient
from taskwire.messaging.base import MessageProducer, TaskHandler
from taskwire.tasks import TaskEvent
from taskwire.tasks import auth_tasks, user_tasks
from taskwire.tasks.errors import TaskError
from taskwire.tasks.types import (
    CleanupExpiredToken,
    ProcessAvatarUpload,
    ProcessUserRegistration,
    SendEmail,
)

logger = structlog.get_logger()


class ConcreteTaskHandler(TaskHandler):
    def __init__(
        self,
        session_factory: SessionFactory,
        producer: MessageProducer,
        mailer: Optional[SmtpClient] = None,
        cache: Optional[TaskStatusCache] = None,
        avatar_stages=user_tasks.AVATAR_STAGES,
    ):
        self.session_factory = session_factory
        self.producer = producer
        self.mailer = mailer
        self.cache = cache
        self.avatar_stages = avatar_stages

    async def handle_task(self, event: TaskEvent) -> None:
        task = event.task

        if isinstance(task, SendEmail):
            if self.mailer is None:
                raise TaskError("SMTP client not configured")
            await self.mailer.send_multipart_mail(
                task.to,
                task.subject,
                text_body=task.text_body,
                html_body=task.html_body,
            )
        elif isinstance(task, CleanupExpiredToken):
            await auth_tasks.clean_expired_tokens(self.session_factory)
        elif isinstance(task, ProcessUserRegistration):
            await user_tasks.send_welcome_email(self.session_factory, self.producer, task.user_id)
        elif isinstance(task, ProcessAvatarUpload):
            await user_tasks.process_avatar_upload(
                self.session_factory,
                self.producer,
                self.cache,
                task.task_id,
                task.user_id,
                task.file_name,
                stages=self.avatar_stages,
            )
        else:
            raise TaskError(f"Unsupported task type: {type(task).__name__}")
