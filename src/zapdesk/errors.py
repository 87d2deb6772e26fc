"""
zapdesk error types — decode, publish, assignment and session failures.
"""

from typing import Any, Optional


class ZapdeskError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class DecodeError(ZapdeskError):
    """Envelope could not be decoded. Dropped and logged by the consumer loop."""

    MALFORMED_PAYLOAD = "malformed_payload"
    EMPTY_TEXT = "empty_text"

    def __init__(self, message: str, code: str = MALFORMED_PAYLOAD, details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class PublishError(ZapdeskError):
    """Broker unavailable or publish rejected. Callers retry with the same envelope."""

    def __init__(self, message: str, queue: Optional[str] = None, message_id: Optional[str] = None):
        super().__init__("publish_error", message, {"queue": queue, "message_id": message_id})
        self.queue = queue
        self.message_id = message_id


class AssignError(ZapdeskError):
    """Attendance business rule violated. Surfaced synchronously, never retried."""

    OPERATOR_AT_CAPACITY = "operator_at_capacity"
    CHAT_NOT_QUEUED = "chat_not_queued"
    CHAT_NOT_FOUND = "chat_not_found"
    CHAT_NOT_ATTENDING = "chat_not_attending"
    UNKNOWN_OPERATOR = "unknown_operator"
    OPERATOR_AWAY = "operator_away"

    def __init__(self, message: str, code: str, details: Optional[dict[str, Any]] = None):
        super().__init__(code, message, details)


class AuthStateError(ZapdeskError):
    def __init__(self, message: str, current: Optional[str] = None, target: Optional[str] = None):
        super().__init__("auth_state_error", message, {"current": current, "target": target})
        self.current = current
        self.target = target


class SessionNotReadyError(ZapdeskError):
    def __init__(self, message: str = "WhatsApp session is not connected", state: Optional[str] = None):
        super().__init__("session_not_ready", message, {"state": state})
        self.state = state


class ConnectionError(ZapdeskError):
    def __init__(self, message: str):
        super().__init__("connection_error", message)


class DatastoreError(ZapdeskError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("datastore_error", message, details)
