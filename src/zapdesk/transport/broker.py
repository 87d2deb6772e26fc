"""
AMQP connection manager — durable queues, persistent publishes, consumers.

Connection: aio-pika robust connection (re-establishes itself and restores
consumers after a broker drop). The first connect is retried with
exponential backoff and jitter.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractQueue, AbstractRobustConnection
from aio_pika.exceptions import AMQPException, ChannelInvalidStateError
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from zapdesk.errors import ConnectionError, PublishError
from zapdesk.models.envelope import PublishAck

logger = logging.getLogger("zapdesk.transport.broker")

DeliveryHandler = Callable[[bytes], Awaitable[None]]

_BROKER_ERRORS = (AMQPException, ChannelInvalidStateError, OSError, asyncio.TimeoutError)


class BrokerConnection:
    def __init__(
        self,
        url: str,
        queues: Iterable[str] = (),
        prefetch: int = 1,
        connect_attempts: int = 50,
        publish_timeout: float = 10.0,
    ):
        self._url = url
        self._queues = list(dict.fromkeys(queues))
        self._prefetch = prefetch
        self._connect_attempts = connect_attempts
        self._publish_timeout = publish_timeout
        self._connection: Optional[AbstractRobustConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._declared: set[str] = set()

    @property
    def connected(self) -> bool:
        return (
            self._connection is not None and not self._connection.is_closed
            and self._channel is not None and not self._channel.is_closed
        )

    async def connect(self) -> None:
        """Open connection + channel and declare every configured queue durable."""
        if self.connected:
            return
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._connect_attempts),
                wait=wait_exponential_jitter(initial=0.5, max=10.0),
                retry=retry_if_exception_type(_BROKER_ERRORS),
            ):
                with attempt:
                    n = attempt.retry_state.attempt_number
                    logger.info(f"Connecting to RabbitMQ (attempt {n}/{self._connect_attempts})")
                    await self._open()
        except RetryError as e:
            raise ConnectionError(f"RabbitMQ unreachable after {self._connect_attempts} attempts: {e.last_attempt.exception()}")
        logger.info("RabbitMQ connected")

    async def _open(self) -> None:
        self._connection = await aio_pika.connect_robust(self._url)
        self._connection.close_callbacks.add(self._on_connection_closed)
        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=self._prefetch)
        self._declared.clear()
        for queue in self._queues:
            await self._declare(queue)

    def _on_connection_closed(self, *_args: object) -> None:
        logger.warning("RabbitMQ connection closed")

    async def _declare(self, queue: str) -> AbstractQueue:
        if self._channel is None:
            raise ConnectionError("RabbitMQ channel is not open")
        declared = await self._channel.declare_queue(queue, durable=True)
        self._declared.add(queue)
        return declared

    async def publish(self, queue: str, body: bytes, message_id: Optional[str] = None) -> PublishAck:
        """Publish a persistent JSON message to `queue` through the default exchange.

        Raises PublishError when the broker is unavailable or rejects the message.
        """
        if not self.connected:
            raise PublishError("RabbitMQ is not connected", queue=queue, message_id=message_id)
        try:
            if queue not in self._declared:
                await self._declare(queue)
            message = aio_pika.Message(
                body=body,
                content_type="application/json",
                delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
                message_id=message_id,
            )
            await self._channel.default_exchange.publish(  # type: ignore[union-attr]
                message, routing_key=queue, timeout=self._publish_timeout,
            )
        except _BROKER_ERRORS as e:
            raise PublishError(f"Publish to {queue} failed: {e}", queue=queue, message_id=message_id) from e
        return PublishAck(queue=queue, message_id=message_id or "", published_at=datetime.now(timezone.utc))

    async def consume(self, queue: str, handler: DeliveryHandler) -> None:
        """Feed every delivery on `queue` to `handler`, acking once it returns."""
        declared = await self._declare(queue)

        async def on_message(message: AbstractIncomingMessage) -> None:
            async with message.process(requeue=False):
                await handler(message.body)

        await declared.consume(on_message)
        logger.info(f"Consumer online: {queue}")

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
        self._connection = None
        self._channel = None
        self._declared.clear()
