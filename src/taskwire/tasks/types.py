"""Application task payloads, tagged by `type` on the wire."""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


class SendEmail(BaseModel):
    type: Literal["SendEmail"] = "SendEmail"
    to: str
    subject: str
    text_body: Optional[str] = None
    html_body: Optional[str] = None


class CleanupExpiredToken(BaseModel):
    type: Literal["CleanupExpiredToken"] = "CleanupExpiredToken"


class ProcessUserRegistration(BaseModel):
    type: Literal["ProcessUserRegistration"] = "ProcessUserRegistration"
    user_id: int


class ProcessAvatarUpload(BaseModel):
    type: Literal["ProcessAvatarUpload"] = "ProcessAvatarUpload"
    task_id: str
    user_id: int
    file_name: str


TaskType = Annotated[
    Union[SendEmail, CleanupExpiredToken, ProcessUserRegistration, ProcessAvatarUpload],
    Field(discriminator="type"),
]
