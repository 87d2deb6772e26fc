"""
Attendance records — queued requests, active chats, operators and metrics.

Records are frozen; the router replaces a record whole on every change so a
concurrent reader always sees a consistent version.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, computed_field

from zapdesk.models.envelope import MessageEnvelope

_FROZEN = {"frozen": True, "populate_by_name": True}


class ChatRequest(BaseModel):
    id: str
    phone: str
    customer_name: Optional[str] = Field(None, alias="customerName")
    last_message: str = Field("", alias="lastMessage")
    timestamp: datetime  # last inbound message
    queued_at: datetime = Field(alias="queuedAt")  # first inbound message
    message_count: int = Field(0, alias="messageCount")
    status: str = "queued"  # queued | attending | closed
    operator_id: Optional[str] = Field(None, alias="operatorId")
    messages: tuple[MessageEnvelope, ...] = Field(default=(), exclude=True)

    model_config = _FROZEN

    def has_message(self, external_id: str) -> bool:
        return any(m.id == external_id for m in self.messages)


class ActiveChat(BaseModel):
    id: str
    phone: str
    customer_name: Optional[str] = Field(None, alias="customerName")
    operator_id: str = Field(alias="operatorId")
    queued_at: datetime = Field(alias="queuedAt")
    start_time: datetime = Field(alias="startTime")
    last_activity: datetime = Field(alias="lastActivity")
    messages: tuple[MessageEnvelope, ...] = ()

    model_config = _FROZEN

    @computed_field(alias="messageCount")  # type: ignore[prop-decorator]
    @property
    def message_count(self) -> int:
        return len(self.messages)

    def has_message(self, external_id: str) -> bool:
        return any(m.id == external_id for m in self.messages)


class Operator(BaseModel):
    id: str
    name: Optional[str] = None
    status: str = "available"  # available | busy | away
    max_chats: int = Field(3, alias="maxChats", ge=1)
    active_chat_ids: tuple[str, ...] = Field((), alias="activeChatIds")

    model_config = _FROZEN

    @property
    def free_slots(self) -> int:
        return self.max_chats - len(self.active_chat_ids)


class AttendanceMetrics(BaseModel):
    queue_count: int = Field(0, alias="queueCount")
    attending_count: int = Field(0, alias="attendingCount")
    average_response_time: float = Field(0.0, alias="averageResponseTime")  # seconds
    total_requests: int = Field(0, alias="totalRequests")

    model_config = _FROZEN
