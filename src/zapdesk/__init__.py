"""
zapdesk — WhatsApp attendance core.

Broker envelope protocol, session pairing state machine and the operator
attendance queue, over RabbitMQ (aio-pika) with a REST datastore.
"""

from zapdesk.client import AsyncZapdesk
from zapdesk.attendance import AttendanceRouter
from zapdesk.session import SessionStateMachine
from zapdesk.errors import (
    ZapdeskError,
    DecodeError,
    PublishError,
    AssignError,
    AuthStateError,
    SessionNotReadyError,
    ConnectionError,
    DatastoreError,
)
from zapdesk.models.envelope import CommandEnvelope, MessageEnvelope, StatusEnvelope
from zapdesk.models.events import Command, MessageType, Queue, SessionState
from zapdesk.transport.envelope import decode, encode

__version__ = "0.1.0"
__all__ = [
    "AsyncZapdesk",
    "AttendanceRouter",
    "SessionStateMachine",
    "ZapdeskError",
    "DecodeError",
    "PublishError",
    "AssignError",
    "AuthStateError",
    "SessionNotReadyError",
    "ConnectionError",
    "DatastoreError",
    "CommandEnvelope",
    "MessageEnvelope",
    "StatusEnvelope",
    "Command",
    "MessageType",
    "Queue",
    "SessionState",
    "decode",
    "encode",
]
