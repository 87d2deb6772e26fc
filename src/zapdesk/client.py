"""
AsyncZapdesk — owns the attendance core for the lifetime of the process.

One instance holds the session state machine, the attendance router, the
metrics aggregator, the gateway and the broker connection; it is created at
start-up, handed to whatever serves operator actions, and torn down on
shutdown.
"""

import logging
from typing import Any, Optional

from zapdesk.attendance import AttendanceRouter
from zapdesk.config import Settings
from zapdesk.datastore import DatastoreSync, HttpDatastore, MemoryDatastore
from zapdesk.errors import DatastoreError
from zapdesk.gateway import Gateway
from zapdesk.metrics import MetricsAggregator
from zapdesk.models.attendance import ActiveChat, AttendanceMetrics, ChatRequest, Operator
from zapdesk.models.envelope import CommandEnvelope, PublishAck
from zapdesk.models.session import SessionSnapshot
from zapdesk.pending import PendingCommands
from zapdesk.session import SessionStateMachine
from zapdesk.transport.broker import BrokerConnection
from zapdesk.transport.http import HttpClient

logger = logging.getLogger("zapdesk.client")


class AsyncZapdesk:
    """Async attendance gateway (primary entry point)."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        broker: Optional[Any] = None,
        datastore: Optional[Any] = None,
    ):
        self.settings = settings or Settings()
        s = self.settings

        if broker is None:
            broker = BrokerConnection(
                s.rabbit_url,
                queues=[s.incoming_queue, s.outgoing_queue, *s.status_queues],
                prefetch=s.prefetch,
                connect_attempts=s.connect_attempts,
            )
        self.broker = broker
        if datastore is None:
            datastore = (
                HttpDatastore(HttpClient(s.api_base_url, token=s.api_token))
                if s.api_base_url else MemoryDatastore()
            )
        self.datastore = datastore

        self.session = SessionStateMachine()
        self.metrics_aggregator = MetricsAggregator(window=s.response_window)
        self.router = AttendanceRouter(metrics=self.metrics_aggregator, default_max_chats=s.default_max_chats)
        self._sync = DatastoreSync(datastore)
        self.router.add_transition_handler(self._sync.on_transition)
        self.gateway = Gateway(
            self.broker,
            self.session,
            self.router,
            pending=PendingCommands(timeout=s.command_timeout),
            incoming_queue=s.incoming_queue,
            outgoing_queue=s.outgoing_queue,
            status_queues=s.status_queues,
            publish_attempts=s.publish_attempts,
        )
        self._started = False

    @property
    def connected(self) -> bool:
        return self._started and self.broker.connected

    async def connect(self) -> None:
        """Connect to the broker, load operators and start consuming."""
        if self._started:
            return
        await self.broker.connect()
        try:
            self.router.load_operators(await self.datastore.list_operators())
        except DatastoreError as e:
            logger.warning(f"Could not load operators, continuing without: {e}")
        await self.gateway.start()
        self._started = True

    async def disconnect(self) -> None:
        self._started = False
        await self._sync.drain()
        await self.broker.close()
        await self.datastore.close()

    async def __aenter__(self) -> "AsyncZapdesk":
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.disconnect()

    # attendance

    def register_operator(self, operator_id: str, max_chats: Optional[int] = None, name: Optional[str] = None) -> Operator:
        return self.router.register_operator(operator_id, max_chats=max_chats, name=name)

    def queue(self) -> list[ChatRequest]:
        return self.router.queue()

    def assign(self, chat_id: str, operator_id: str) -> ActiveChat:
        return self.router.assign(chat_id, operator_id)

    def close_chat(self, chat_id: str) -> None:
        self.router.close(chat_id)

    def metrics(self) -> AttendanceMetrics:
        return self.router.metrics()

    # messaging

    def session_state(self) -> SessionSnapshot:
        return self.session.snapshot()

    async def send_text(self, phone: str, text: str) -> PublishAck:
        return await self.gateway.send_text(phone, text)

    async def generate_qr(self) -> Optional[PublishAck]:
        return await self.gateway.request_generate_qr()

    async def force_new_auth(self) -> PublishAck:
        return await self.gateway.request_force_new_auth()

    def stalled_commands(self) -> list[CommandEnvelope]:
        return self.gateway.stalled_commands()
