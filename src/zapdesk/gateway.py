"""
Gateway consumer/producer — the broker edge of the attendance core.

Inbound: every delivery is decoded; chat messages go to the attendance
router, session fields go to the session state machine. A bad envelope is
logged and dropped and never stops the consumer.

Outbound: replies and control commands are encoded and published persistent
on the outgoing queue. Publish failures are retried with backoff reusing the
same envelope (same external id / requestId), then surfaced as PublishError.
"""

import logging
from typing import Any, Iterable, Optional

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from zapdesk.attendance import AttendanceRouter
from zapdesk.errors import DecodeError, PublishError, SessionNotReadyError
from zapdesk.models.envelope import (
    Attachment,
    CommandEnvelope,
    Envelope,
    MessageEnvelope,
    PublishAck,
    StatusEnvelope,
)
from zapdesk.models.events import MessageType, Queue
from zapdesk.models.session import SessionSnapshot
from zapdesk.pending import PendingCommands
from zapdesk.session import SessionStateMachine
from zapdesk.transport.envelope import build_outbound_message, decode, encode

logger = logging.getLogger("zapdesk.gateway")


class Gateway:
    def __init__(
        self,
        broker: Any,
        session: SessionStateMachine,
        router: AttendanceRouter,
        pending: Optional[PendingCommands] = None,
        incoming_queue: str = Queue.INCOMING,
        outgoing_queue: str = Queue.OUTGOING,
        status_queues: Iterable[str] = (),
        publish_attempts: int = 3,
        retry_min_wait: float = 1.0,
        retry_max_wait: float = 10.0,
    ):
        self._broker = broker
        self._session = session
        self._router = router
        self._pending = pending if pending is not None else PendingCommands()
        self._incoming_queue = incoming_queue
        self._outgoing_queue = outgoing_queue
        self._status_queues = list(status_queues)
        self._publish_attempts = publish_attempts
        self._retry_min_wait = retry_min_wait
        self._retry_max_wait = retry_max_wait
        self.dropped = 0
        session.add_listener(self._on_session_change)

    @property
    def pending(self) -> PendingCommands:
        return self._pending

    async def start(self) -> None:
        """Start one consumer per inbound queue."""
        for queue in [self._incoming_queue, *self._status_queues]:
            await self._broker.consume(queue, self.handle_delivery)

    def _on_session_change(self, snapshot: SessionSnapshot) -> None:
        for command in self._pending.resolve_for(snapshot):
            logger.info(f"{command.command} {command.request_id} confirmed: session {snapshot.state}")

    # inbound

    async def handle_delivery(self, body: bytes) -> None:
        """Decode and dispatch one broker delivery. Never raises."""
        try:
            envelope = decode(body)
        except DecodeError as e:
            self.dropped += 1
            logger.warning(f"Dropping envelope ({e.code}): {e}")
            return
        try:
            await self.on_inbound_envelope(envelope)
        except Exception:
            self.dropped += 1
            logger.exception(f"Failed to process inbound {type(envelope).__name__}")

    async def on_inbound_envelope(self, envelope: Envelope) -> None:
        if isinstance(envelope, MessageEnvelope):
            if envelope.status is not None:
                self._session.apply(envelope.status)
            if envelope.is_from_me:
                logger.debug(f"Own message {envelope.id} ignored")
                return
            request = self._router.enqueue(envelope.phone, envelope)
            if request is None:
                logger.debug(f"Message {envelope.id} belongs to a closed chat, ignored")
                return
            logger.info(f"Inbound {envelope.type} {envelope.id} from {envelope.phone} -> {request.id} ({request.status})")
        elif isinstance(envelope, StatusEnvelope):
            self._session.apply(envelope.status)
        elif isinstance(envelope, CommandEnvelope):
            logger.warning(f"Command {envelope.command} ({envelope.request_id}) on inbound queue ignored")
        else:
            raise TypeError(f"Unhandled envelope type {type(envelope).__name__}")

    # outbound

    async def publish_outbound(self, envelope: Envelope) -> PublishAck:
        """Publish once. Raises PublishError."""
        if isinstance(envelope, MessageEnvelope):
            message_id = envelope.id
        elif isinstance(envelope, CommandEnvelope):
            message_id = envelope.request_id
        else:
            raise TypeError("Only messages and commands are published")
        return await self._broker.publish(self._outgoing_queue, encode(envelope), message_id=message_id)

    async def publish_with_retry(self, envelope: Envelope) -> PublishAck:
        """Publish, retrying PublishError with exponential backoff, then re-raise."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._publish_attempts),
            wait=wait_exponential(multiplier=self._retry_min_wait, min=self._retry_min_wait, max=self._retry_max_wait),
            retry=retry_if_exception_type(PublishError),
            reraise=True,
        ):
            with attempt:
                n = attempt.retry_state.attempt_number
                if n > 1:
                    logger.warning(f"Retrying publish (attempt {n}/{self._publish_attempts})")
                return await self.publish_outbound(envelope)
        raise PublishError("publish retry loop exited without a result")  # pragma: no cover

    def _ensure_ready(self) -> None:
        if not self._session.is_ready:
            raise SessionNotReadyError(state=self._session.state)

    async def send_message(self, envelope: MessageEnvelope) -> PublishAck:
        self._ensure_ready()
        return await self.publish_with_retry(envelope)

    async def send_text(self, phone: str, text: str) -> PublishAck:
        """Send a text reply. Raises SessionNotReadyError, DecodeError(empty_text), PublishError."""
        self._ensure_ready()
        envelope = build_outbound_message(phone, text, from_number=self._session.snapshot().connected_number)
        return await self.publish_with_retry(envelope)

    async def send_media(
        self,
        phone: str,
        attachment: Attachment,
        message_type: str = MessageType.DOCUMENT,
        caption: str = "",
    ) -> PublishAck:
        self._ensure_ready()
        envelope = build_outbound_message(
            phone, caption,
            message_type=message_type,
            attachment=attachment,
            from_number=self._session.snapshot().connected_number,
        )
        return await self.publish_with_retry(envelope)

    async def send_command(self, command: CommandEnvelope) -> PublishAck:
        self._pending.track(command)
        return await self.publish_with_retry(command)

    async def request_generate_qr(self) -> Optional[PublishAck]:
        """Ask the messaging client for a QR code. None while a session is up."""
        command = self._session.request_generate_qr()
        if command is None:
            return None
        return await self.send_command(command)

    async def request_force_new_auth(self) -> PublishAck:
        return await self.send_command(self._session.request_force_new_auth())

    def stalled_commands(self) -> list[CommandEnvelope]:
        stalled = self._pending.stalled()
        for command in stalled:
            logger.warning(f"{command.command} {command.request_id} got no session update in time")
        return stalled
