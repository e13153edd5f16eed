from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID
from datetime import datetime
from typing import Literal, Optional


class NotificationRequest(BaseModel):
    """Payload accepted by the notification sink.

    Field names follow the camelCase wire format used by the web client
    and by the match notifier.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["match", "message", "status_change"]
    user_id: UUID = Field(alias="userId")
    title: str
    message: str
    item_id: Optional[UUID] = Field(None, alias="itemId")
    related_item_id: Optional[UUID] = Field(None, alias="relatedItemId")
    send_email: Optional[bool] = Field(None, alias="sendEmail")

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class NotificationSendResponse(BaseModel):
    success: bool = True


class NotificationResponse(BaseModel):
    id: UUID
    user_id: UUID
    type: str
    title: str
    message: str
    item_id: Optional[UUID] = None
    related_item_id: Optional[UUID] = None
    is_read: bool
    created_at: datetime

    model_config = {"from_attributes": True}
