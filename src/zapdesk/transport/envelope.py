"""
Envelope codec — broker payload bytes <-> typed envelopes.

A payload with a `command` field is a CommandEnvelope; one with message
content is a MessageEnvelope (possibly carrying session fields too); one with
only session fields is a StatusEnvelope. Media arrives either as a data URL in
`body` or as an explicit `attachment` object; both are reconciled into one
normalized Attachment, with the explicit attachment fields taking precedence.
"""

import json
import logging
import mimetypes
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import TypeAdapter, ValidationError

from zapdesk.errors import DecodeError
from zapdesk.models.envelope import (
    Attachment,
    CommandEnvelope,
    Contact,
    Envelope,
    Location,
    MessageEnvelope,
    SessionStatus,
    StatusEnvelope,
)
from zapdesk.models.events import (
    KNOWN_COMMANDS,
    MEDIA_TYPES,
    MESSAGE_TYPE_ALIASES,
    MESSAGE_TYPES,
    SESSION_STATES,
    STATUS_TYPES,
    Command,
    MessageType,
)

logger = logging.getLogger("zapdesk.transport.envelope")

DEFAULT_AUDIO_MIME = "audio/mpeg"
DEFAULT_BINARY_MIME = "application/octet-stream"

_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/ogg": "ogg",
    "audio/wav": "wav",
    "audio/webm": "webm",
    "audio/mp4": "m4a",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "application/pdf": "pdf",
}

_REQUEST_ID_PREFIXES = {
    Command.GENERATE_QR: "generate-qr",
    Command.FORCE_NEW_AUTH: "force-auth",
}

_MESSAGE_KEYS = ("externalMessageId", "id", "body", "attachment", "location", "contact", "from")

_timestamp_adapter = TypeAdapter(datetime)


# helpers

def normalize_phone(raw: Optional[str], is_group: bool = False) -> str:
    """Reduce `5511999999999@c.us`-style identifiers to bare digits.

    Brazilian local numbers (10 or 11 digits) get the 55 country code; group
    ids are left as digits.
    """
    if not raw:
        return ""
    digits = "".join(ch for ch in raw.split("@", 1)[0] if ch.isdigit())
    if is_group or (digits.startswith("120") and len(digits) >= 18):
        return digits
    if len(digits) in (10, 11):
        return f"55{digits}"
    return digits


def parse_data_url(value: Optional[str]) -> Optional[tuple[str, str]]:
    """Split `data:<mime>;base64,<payload>` into (mime, payload)."""
    if not value or not value.startswith("data:") or "," not in value:
        return None
    header, _, payload = value[5:].partition(",")
    mime = header.split(";", 1)[0].strip()
    return mime, payload


def _payload_size(payload: str) -> int:
    payload = payload.strip()
    padding = len(payload) - len(payload.rstrip("="))
    return max(len(payload) * 3 // 4 - padding, 0)


def extension_for(mime_type: str) -> str:
    base = mime_type.split(";", 1)[0].strip().lower()
    if base in _EXTENSIONS:
        return _EXTENSIONS[base]
    guessed = mimetypes.guess_extension(base)
    return guessed.lstrip(".") if guessed else "bin"


def default_mime_type(message_type: str) -> str:
    return DEFAULT_AUDIO_MIME if message_type == MessageType.AUDIO else DEFAULT_BINARY_MIME


def reconcile_attachment(
    message_type: str,
    message_id: str,
    body: str,
    raw: Optional[dict[str, Any]],
) -> Attachment:
    """Merge `body` data URL and explicit attachment fields into one record."""
    raw = raw or {}
    data_url = raw.get("dataUrl") or (body if parse_data_url(body) else None)
    parsed = parse_data_url(data_url)

    mime_type = raw.get("mimeType") or (parsed[0] if parsed and parsed[0] else None) or default_mime_type(message_type)
    media_type = raw.get("mediaType") or message_type
    file_name = raw.get("fileName") or f"{media_type}_{message_id}.{extension_for(mime_type)}"
    file_size = raw.get("fileSize")
    if file_size is None and parsed:
        file_size = _payload_size(parsed[1])

    return Attachment(
        data_url=data_url,
        mime_type=mime_type,
        file_name=file_name,
        media_type=media_type,
        file_size=file_size,
    )


def _parse_timestamp(data: dict[str, Any]) -> datetime:
    value = data.get("timestamp")
    if value is None:
        value = data.get("ts")
    if value is None:
        return datetime.now(timezone.utc)
    try:
        ts = _timestamp_adapter.validate_python(value)
    except ValidationError as e:
        raise DecodeError(f"Invalid timestamp {value!r}", details={"error": str(e)})
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _normalize_type(value: Any) -> str:
    if value is None or value == "":
        return MessageType.TEXT
    if not isinstance(value, str):
        raise DecodeError(f"Invalid message type {value!r}")
    name = value.strip().lower()
    name = MESSAGE_TYPE_ALIASES.get(name, name)
    if name not in MESSAGE_TYPES:
        raise DecodeError(f"Unsupported message type {value!r}")
    return name


def _status_fields(data: dict[str, Any], include_kind: bool) -> Optional[dict[str, Any]]:
    """Return the session-status subset of a payload, or None when it has none."""
    kind = data.get("type") if include_kind else None
    has_signal = (
        data.get("status") in SESSION_STATES
        or data.get("sessionConnected") is not None
        or "qrCode" in data
        or kind in STATUS_TYPES
    )
    if not has_signal:
        return None
    keys = ["sessionConnected", "isFullyValidated", "connectedNumber", "qrCode"]
    if include_kind:
        # a message envelope keeps instanceId on the message itself
        keys.append("instanceId")
    fields = {key: data[key] for key in keys if data.get(key) is not None}
    if data.get("status") in SESSION_STATES:
        fields["status"] = data["status"]
    if kind in STATUS_TYPES:
        fields["type"] = kind
    return fields


def check_content(
    message_type: str,
    body: str,
    has_attachment: bool,
    location: Optional[Location] = None,
    contact: Optional[Contact] = None,
) -> None:
    """Raise DecodeError when `type` and payload disagree."""
    if message_type == MessageType.TEXT:
        if not body.strip():
            raise DecodeError("Text message has an empty body", code=DecodeError.EMPTY_TEXT)
    elif message_type in MEDIA_TYPES:
        if not body and not has_attachment:
            raise DecodeError(f"{message_type} message has neither body nor attachment")
    elif message_type == MessageType.LOCATION:
        if location is None:
            raise DecodeError("location message has no location")
    elif message_type == MessageType.CONTACT:
        if contact is None:
            raise DecodeError("contact message has no contact")


# decode

def _decode_message(data: dict[str, Any]) -> MessageEnvelope:
    message_id = data.get("externalMessageId") or data.get("id")
    if not message_id:
        raise DecodeError("Message has no externalMessageId/id")
    message_id = str(message_id)
    message_type = _normalize_type(data.get("type"))

    body = data.get("body") or ""
    if not isinstance(body, str):
        raise DecodeError("Message body must be a string")

    is_from_me = bool(data.get("fromMe", data.get("isFromMe", False)))
    if is_from_me:
        phone = normalize_phone(data.get("toNormalized") or data.get("phone") or data.get("to"))
    else:
        phone = normalize_phone(data.get("fromNormalized") or data.get("from"))
    if not phone:
        raise DecodeError("Message has no usable phone identifier", details={"id": message_id})

    raw_attachment = data.get("attachment")
    if raw_attachment is not None and not isinstance(raw_attachment, dict):
        raise DecodeError("attachment must be an object")

    try:
        location = Location.model_validate(data["location"]) if data.get("location") else None
        contact = Contact.model_validate(data["contact"]) if data.get("contact") else None
    except ValidationError as e:
        raise DecodeError("Invalid location/contact", details={"error": str(e)})

    check_content(message_type, body, raw_attachment is not None, location, contact)

    attachment = None
    if message_type in MEDIA_TYPES or raw_attachment is not None:
        attachment = reconcile_attachment(message_type, message_id, body, raw_attachment)

    status_fields = _status_fields(data, include_kind=False)

    return MessageEnvelope(
        id=message_id,
        phone=phone,
        from_=data.get("from"),
        to=data.get("to"),
        body=body,
        type=message_type,
        timestamp=_parse_timestamp(data),
        is_from_me=is_from_me,
        attachment=attachment,
        location=location,
        contact=contact,
        instance_id=data.get("instanceId"),
        status=SessionStatus.model_validate(status_fields) if status_fields else None,
    )


def _decode_command(data: dict[str, Any]) -> CommandEnvelope:
    command = data.get("command")
    if not isinstance(command, str) or not command:
        raise DecodeError("command must be a non-empty string")
    request_id = data.get("requestId")
    if not request_id:
        raise DecodeError(f"Command {command!r} has no requestId")
    if command not in KNOWN_COMMANDS:
        logger.warning(f"Decoding unknown command {command!r} ({request_id})")
    return CommandEnvelope(
        command=command,
        request_id=str(request_id),
        timestamp=_parse_timestamp(data),
        phone=data.get("phone"),
        body=data.get("body"),
    )


def decode(raw: Union[bytes, str]) -> Envelope:
    """Decode one broker payload. Raises DecodeError on anything unusable."""
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise DecodeError(f"Payload is not JSON: {e}")
    if not isinstance(data, dict):
        raise DecodeError("Payload is not a JSON object")

    try:
        if "command" in data:
            return _decode_command(data)
        if any(data.get(key) is not None for key in _MESSAGE_KEYS):
            return _decode_message(data)
        status_fields = _status_fields(data, include_kind=True)
        if status_fields is not None:
            return StatusEnvelope(status=SessionStatus.model_validate(status_fields), timestamp=_parse_timestamp(data))
    except ValidationError as e:
        raise DecodeError("Payload fields failed validation", details={"error": str(e)})
    raise DecodeError("Payload is neither a message, a command nor a session status")


# encode

def to_wire(envelope: Envelope) -> dict[str, Any]:
    """Envelope as the JSON object published on the broker."""
    if isinstance(envelope, MessageEnvelope):
        wire = envelope.model_dump(mode="json", by_alias=True, exclude_none=True, exclude={"phone", "status"})
        wire["toNormalized" if envelope.is_from_me else "fromNormalized"] = envelope.phone
        if envelope.status is not None:
            wire.update(envelope.status.model_dump(
                mode="json", by_alias=True, exclude_none=True, exclude={"kind", "instance_id"},
            ))
        return wire
    if isinstance(envelope, CommandEnvelope):
        return envelope.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(envelope, StatusEnvelope):
        wire = envelope.status.model_dump(mode="json", by_alias=True, exclude_none=True)
        wire["timestamp"] = envelope.model_dump(mode="json")["timestamp"]
        return wire
    raise TypeError(f"Not an envelope: {type(envelope).__name__}")


def encode(envelope: Envelope) -> bytes:
    return json.dumps(to_wire(envelope), ensure_ascii=False).encode("utf-8")


# builders

def build_command(
    command: str,
    request_id: Optional[str] = None,
    phone: Optional[str] = None,
    body: Optional[str] = None,
) -> CommandEnvelope:
    """Build a control command with a fresh requestId."""
    prefix = _REQUEST_ID_PREFIXES.get(command, command.replace("_", "-"))
    return CommandEnvelope(
        command=command,
        request_id=request_id or f"{prefix}-{uuid.uuid4()}",
        timestamp=datetime.now(timezone.utc),
        phone=phone,
        body=body,
    )


def build_outbound_message(
    phone: str,
    body: str = "",
    *,
    message_type: str = MessageType.TEXT,
    attachment: Optional[Attachment] = None,
    from_number: Optional[str] = None,
    message_id: Optional[str] = None,
) -> MessageEnvelope:
    """Build an operator reply. Text replies must be non-empty."""
    message_type = _normalize_type(message_type)
    check_content(message_type, body, attachment is not None)
    target = normalize_phone(phone)
    if not target:
        raise DecodeError(f"Invalid destination phone {phone!r}")
    message_id = message_id or str(uuid.uuid4())
    if message_type in MEDIA_TYPES:
        raw = attachment.model_dump(by_alias=True, exclude_none=True) if attachment else None
        attachment = reconcile_attachment(message_type, message_id, body, raw)
    return MessageEnvelope(
        id=message_id,
        phone=target,
        from_=from_number,
        to=target,
        body=body,
        type=message_type,
        timestamp=datetime.now(timezone.utc),
        is_from_me=True,
        attachment=attachment,
    )
