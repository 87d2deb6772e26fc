"""
Session models — pairing state of the messaging client.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class SessionSnapshot(BaseModel):
    state: str = "disconnected"
    qr_code: Optional[str] = Field(None, alias="qrCode")
    connected_number: Optional[str] = Field(None, alias="connectedNumber")
    last_state_change: datetime = Field(alias="lastStateChange")

    model_config = {"frozen": True, "populate_by_name": True}

    @property
    def is_ready(self) -> bool:
        return self.state == "connected"
