"""Progress payloads broadcast to WebSocket clients and cached for late joiners."""

from typing import Literal, Optional

from pydantic import BaseModel, Field

PROGRESS_EVENT = "avatar_upload_progress"
COMPLETE_EVENT = "avatar_upload_complete"


class AvatarUploadProgress(BaseModel):
    task_id: str
    user_id: int
    progress: int = Field(ge=0, le=100)
    status: Literal["processing", "completed", "failed"] = "processing"
    message: Optional[str] = None


class AvatarUploadResponse(BaseModel):
    task_id: str
    message: str
