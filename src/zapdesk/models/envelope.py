"""
Broker envelopes — chat messages, control commands and session status.

Field names are snake_case in Python and camelCase on the wire (aliases).
All envelopes are frozen: they are passed by value between the codec, the
router and the producer.
"""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field, model_validator

_FROZEN = {"frozen": True, "populate_by_name": True}


class Attachment(BaseModel):
    data_url: Optional[str] = Field(None, alias="dataUrl")  # data:<mime>;base64,<payload>
    mime_type: Optional[str] = Field(None, alias="mimeType")
    file_name: Optional[str] = Field(None, alias="fileName")
    media_type: Optional[str] = Field(None, alias="mediaType")
    file_size: Optional[int] = Field(None, alias="fileSize")

    model_config = _FROZEN


class Location(BaseModel):
    latitude: float
    longitude: float
    address: Optional[str] = None

    model_config = _FROZEN


class Contact(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None

    model_config = _FROZEN


class SessionStatus(BaseModel):
    """Session fields reported by the messaging client."""
    kind: Optional[str] = Field(None, alias="type")  # qr_code | qr_expired | session_status
    status: Optional[str] = None
    session_connected: Optional[bool] = Field(None, alias="sessionConnected")
    is_fully_validated: Optional[bool] = Field(None, alias="isFullyValidated")
    connected_number: Optional[str] = Field(None, alias="connectedNumber")
    qr_code: Optional[str] = Field(None, alias="qrCode")
    instance_id: Optional[str] = Field(None, alias="instanceId")

    model_config = _FROZEN


class MessageEnvelope(BaseModel):
    id: str = Field(alias="externalMessageId")
    phone: str  # canonical chat key: bare digits of the customer side
    from_: Optional[str] = Field(None, alias="from")
    to: Optional[str] = None
    body: str = ""
    type: str = "text"
    timestamp: datetime
    is_from_me: bool = Field(False, alias="fromMe")
    attachment: Optional[Attachment] = None
    location: Optional[Location] = None
    contact: Optional[Contact] = None
    instance_id: Optional[str] = Field(None, alias="instanceId")
    status: Optional[SessionStatus] = None

    model_config = _FROZEN

    @model_validator(mode="after")
    def _check_embedded_status(self) -> "MessageEnvelope":
        # type and instanceId on the wire belong to the message itself
        if self.status is not None and (self.status.kind is not None or self.status.instance_id is not None):
            raise ValueError("embedded session status cannot carry type or instanceId")
        return self

    @property
    def preview(self) -> str:
        """Short text used as a chat's `lastMessage`."""
        if self.type == "text":
            return self.body
        if self.attachment and self.attachment.file_name:
            return f"[{self.type}] {self.attachment.file_name}"
        return f"[{self.type}]"


class CommandEnvelope(BaseModel):
    command: str
    request_id: str = Field(alias="requestId")
    timestamp: datetime
    phone: Optional[str] = None
    body: Optional[str] = None

    model_config = _FROZEN


class StatusEnvelope(BaseModel):
    status: SessionStatus
    timestamp: datetime

    model_config = _FROZEN


Envelope = Union[MessageEnvelope, CommandEnvelope, StatusEnvelope]


class PublishAck(BaseModel):
    """Local acknowledgment of a publish. Says nothing about the remote effect."""
    queue: str
    message_id: str
    published_at: datetime

    model_config = _FROZEN
