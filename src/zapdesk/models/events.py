"""
Wire constants — broker queues, control commands, message types and session states.
"""


class Queue:
    INCOMING = "whatsapp.incoming"
    OUTGOING = "whatsapp.outgoing"
    SESSION_STATUS = "session.status"
    QR_CODE = "out.qrcode"


class Command:
    GENERATE_QR = "generate_qr"
    FORCE_NEW_AUTH = "force_new_auth"
    DISCONNECT = "disconnect"
    SEND_MESSAGE = "send_message"


KNOWN_COMMANDS = {Command.GENERATE_QR, Command.FORCE_NEW_AUTH, Command.DISCONNECT, Command.SEND_MESSAGE}


class MessageType:
    TEXT = "text"
    AUDIO = "audio"
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"
    LOCATION = "location"
    CONTACT = "contact"


MESSAGE_TYPES = {
    MessageType.TEXT, MessageType.AUDIO, MessageType.IMAGE, MessageType.VIDEO,
    MessageType.DOCUMENT, MessageType.LOCATION, MessageType.CONTACT,
}

MEDIA_TYPES = {MessageType.AUDIO, MessageType.IMAGE, MessageType.VIDEO, MessageType.DOCUMENT}

# Names the messaging client (and older API payloads) use for the same types
MESSAGE_TYPE_ALIASES = {
    "chat": MessageType.TEXT,
    "ptt": MessageType.AUDIO,
    "voice": MessageType.AUDIO,
    "file": MessageType.DOCUMENT,
    "doc": MessageType.DOCUMENT,
    "sticker": MessageType.IMAGE,
}


class SessionState:
    DISCONNECTED = "disconnected"
    QR_READY = "qr_ready"
    CONNECTING = "connecting"
    CONNECTED = "connected"


SESSION_STATES = [
    SessionState.DISCONNECTED,
    SessionState.QR_READY,
    SessionState.CONNECTING,
    SessionState.CONNECTED,
]


class StatusType:
    QR_CODE = "qr_code"
    QR_EXPIRED = "qr_expired"
    SESSION_STATUS = "session_status"


STATUS_TYPES = {StatusType.QR_CODE, StatusType.QR_EXPIRED, StatusType.SESSION_STATUS}


class ChatStatus:
    QUEUED = "queued"
    ATTENDING = "attending"
    CLOSED = "closed"


class OperatorStatus:
    AVAILABLE = "available"
    BUSY = "busy"
    AWAY = "away"
