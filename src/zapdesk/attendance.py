"""
Attendance queue & router — inbound chats waiting for operators, and the
chats each operator currently owns.

    enqueue(phone, message) -> Optional[ChatRequest]
    assign(chat_id, operator_id) -> ActiveChat      (AssignError)
    close(chat_id) -> None
    metrics() -> AttendanceMetrics

Chat status only moves queued -> attending -> closed. There is at most one
unresolved chat per phone, so mutations are serialized per phone; assignment
and closing also hold the operator's lock so capacity checks cannot race.
Records are frozen and replaced whole, so readers never see a half-updated one.
"""

import logging
import threading
import uuid
from collections import OrderedDict
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Hashable, Iterable, Iterator, Optional

from zapdesk.errors import AssignError
from zapdesk.models.attendance import ActiveChat, AttendanceMetrics, ChatRequest, Operator
from zapdesk.models.envelope import MessageEnvelope
from zapdesk.models.events import ChatStatus, OperatorStatus

logger = logging.getLogger("zapdesk.attendance")

DEFAULT_MAX_CHATS = 3
DEFAULT_HISTORY = 10_000  # closed chat ids and applied message ids remembered


class Transition:
    ENQUEUED = "enqueued"
    UPDATED = "updated"
    ASSIGNED = "assigned"
    CLOSED = "closed"


TransitionHandler = Callable[[str, ChatRequest, Optional[ActiveChat]], None]


class _KeyedLocks:
    """One lock per key, kept only while some thread holds or waits for it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list[Any]] = {}  # key -> [lock, users]

    def __len__(self) -> int:
        return len(self._locks)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class _Recent:
    """Thread-safe set that forgets its oldest keys past `capacity`."""

    def __init__(self, capacity: int = DEFAULT_HISTORY):
        self._capacity = capacity
        self._lock = threading.Lock()
        self._keys: OrderedDict[Hashable, None] = OrderedDict()

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def add(self, key: Hashable) -> None:
        with self._lock:
            self._keys[key] = None
            self._keys.move_to_end(key)
            while len(self._keys) > self._capacity:
                self._keys.popitem(last=False)


class AttendanceRouter:
    def __init__(
        self,
        metrics: Optional[Any] = None,
        default_max_chats: int = DEFAULT_MAX_CHATS,
        clock: Optional[Callable[[], datetime]] = None,
        history: int = DEFAULT_HISTORY,
    ):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._default_max_chats = default_max_chats
        self._requests: dict[str, ChatRequest] = {}    # chat id -> unresolved request
        self._by_phone: dict[str, str] = {}            # phone -> unresolved chat id
        self._active: dict[str, ActiveChat] = {}       # chat id -> active chat
        self._operators: dict[str, Operator] = {}
        self._closed = _Recent(history)                # closed chat ids
        self._applied = _Recent(history)               # (phone, external id) already applied
        self._phone_locks = _KeyedLocks()
        self._operator_locks = _KeyedLocks()
        self._handlers: list[TransitionHandler] = []
        self._metrics = metrics
        if metrics is not None:
            self.add_transition_handler(metrics.on_transition)

    # listeners

    def add_transition_handler(self, handler: TransitionHandler) -> Callable[[], None]:
        """Call `handler(kind, request, active_chat)` after every state change."""
        self._handlers.append(handler)
        def remove() -> None:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass
        return remove

    def _emit(self, kind: str, request: ChatRequest, chat: Optional[ActiveChat] = None) -> None:
        for handler in list(self._handlers):
            try:
                handler(kind, request, chat)
            except Exception:
                logger.exception(f"Transition handler failed for {kind} {request.id}")

    # operators

    def register_operator(
        self,
        operator_id: str,
        max_chats: Optional[int] = None,
        name: Optional[str] = None,
        status: str = OperatorStatus.AVAILABLE,
    ) -> Operator:
        """Add an operator, or update name/capacity of a known one.

        Active chats are kept, so capacity never drops below the current load.
        """
        with self._operator_locks.hold(operator_id):
            existing = self._operators.get(operator_id)
            if existing is not None:
                capacity = max_chats or existing.max_chats
                load = len(existing.active_chat_ids)
                if capacity < load:
                    logger.warning(f"Operator {operator_id} owns {load} chats; max_chats {capacity} raised to {load}")
                    capacity = load
                operator = existing.model_copy(update={
                    "name": name if name is not None else existing.name,
                    "max_chats": capacity,
                })
            else:
                operator = Operator(
                    id=operator_id,
                    name=name,
                    status=status,
                    max_chats=max_chats or self._default_max_chats,
                )
            self._operators[operator_id] = operator
            return operator

    def load_operators(self, operators: Iterable[dict[str, Any]]) -> list[Operator]:
        """Register operators from datastore records (`id`, `name`, `maxChats`, `status`)."""
        loaded = []
        for record in operators:
            loaded.append(self.register_operator(
                str(record["id"]),
                max_chats=record.get("maxChats") or record.get("max_chats"),
                name=record.get("name"),
                status=record.get("status") or OperatorStatus.AVAILABLE,
            ))
        return loaded

    def set_operator_status(self, operator_id: str, status: str) -> Operator:
        if status not in (OperatorStatus.AVAILABLE, OperatorStatus.BUSY, OperatorStatus.AWAY):
            raise ValueError(f"Invalid operator status {status!r}")
        with self._operator_locks.hold(operator_id):
            operator = self._require_operator(operator_id)
            if status != OperatorStatus.AWAY:
                status = OperatorStatus.BUSY if operator.active_chat_ids else OperatorStatus.AVAILABLE
            operator = operator.model_copy(update={"status": status})
            self._operators[operator_id] = operator
            return operator

    def get_operator(self, operator_id: str) -> Optional[Operator]:
        return self._operators.get(operator_id)

    def operators(self) -> list[Operator]:
        return list(self._operators.values())

    def suggest_operator(self) -> Optional[Operator]:
        """Non-away operator with the most free capacity (advisory only)."""
        candidates = [
            op for op in self._operators.values()
            if op.status != OperatorStatus.AWAY and op.free_slots > 0
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda op: (op.free_slots, -len(op.active_chat_ids)))

    def _require_operator(self, operator_id: str) -> Operator:
        operator = self._operators.get(operator_id)
        if operator is None:
            raise AssignError(f"Unknown operator {operator_id}", AssignError.UNKNOWN_OPERATOR,
                              {"operator_id": operator_id})
        return operator

    @staticmethod
    def _with_load(operator: Operator, chat_ids: tuple[str, ...]) -> Operator:
        status = operator.status
        if status != OperatorStatus.AWAY:
            status = OperatorStatus.BUSY if chat_ids else OperatorStatus.AVAILABLE
        return operator.model_copy(update={"active_chat_ids": chat_ids, "status": status})

    # queue

    def enqueue(self, phone: str, message: MessageEnvelope) -> Optional[ChatRequest]:
        """Record an inbound message for `phone`.

        Creates a queued ChatRequest, or appends to the unresolved one for the
        same phone (queued or attending). Re-delivery of an already applied
        external id changes nothing: it returns the open request, or None when
        that message's chat has been closed since.
        """
        with self._phone_locks.hold(phone):
            chat_id = self._by_phone.get(phone)
            request = self._requests.get(chat_id) if chat_id else None

            if (phone, message.id) in self._applied:
                logger.debug(f"Duplicate message {message.id} for {phone} ignored")
                return request if request is not None and request.has_message(message.id) else None
            self._applied.add((phone, message.id))

            if request is None:
                request = ChatRequest(
                    id=f"chat_{phone}_{uuid.uuid4().hex[:8]}",
                    phone=phone,
                    customer_name=message.contact.name if message.contact else None,
                    last_message=message.preview,
                    timestamp=message.timestamp,
                    queued_at=message.timestamp,
                    message_count=1,
                    messages=(message,),
                )
                self._requests[request.id] = request
                self._by_phone[phone] = request.id
                logger.info(f"Chat {request.id} queued for {phone}")
                kind, chat = Transition.ENQUEUED, None
            else:
                if request.has_message(message.id):
                    logger.debug(f"Duplicate message {message.id} for {phone} ignored")
                    return request
                request = request.model_copy(update={
                    "last_message": message.preview,
                    "timestamp": max(request.timestamp, message.timestamp),
                    "message_count": request.message_count + 1,
                    "messages": request.messages + (message,),
                })
                self._requests[request.id] = request
                kind, chat = Transition.UPDATED, None
                active = self._active.get(request.id)
                if active is not None:
                    chat = active.model_copy(update={
                        "last_activity": max(active.last_activity, message.timestamp),
                        "messages": active.messages + (message,),
                    })
                    self._active[request.id] = chat

        self._emit(kind, request, chat)
        return request

    def queue(self) -> list[ChatRequest]:
        """Queued requests, oldest first message first."""
        queued = [r for r in self._requests.values() if r.status == ChatStatus.QUEUED]
        return sorted(queued, key=lambda r: (r.queued_at, r.id))

    def get_request(self, chat_id: str) -> Optional[ChatRequest]:
        return self._requests.get(chat_id)

    def get_chat(self, chat_id: str) -> Optional[ActiveChat]:
        return self._active.get(chat_id)

    def active_chats(self, operator_id: Optional[str] = None) -> list[ActiveChat]:
        chats = list(self._active.values())
        if operator_id is not None:
            chats = [c for c in chats if c.operator_id == operator_id]
        return sorted(chats, key=lambda c: c.start_time)

    def find_active_chat_by_phone(self, phone: str) -> Optional[ActiveChat]:
        chat_id = self._by_phone.get(phone)
        return self._active.get(chat_id) if chat_id else None

    # assign / close

    def _phone_of(self, chat_id: str) -> str:
        request = self._requests.get(chat_id)
        if request is None:
            if chat_id in self._closed:
                raise AssignError(f"Chat {chat_id} is closed", AssignError.CHAT_NOT_QUEUED, {"chat_id": chat_id})
            raise AssignError(f"Chat {chat_id} not found", AssignError.CHAT_NOT_FOUND, {"chat_id": chat_id})
        return request.phone

    def assign(self, chat_id: str, operator_id: str) -> ActiveChat:
        """Hand a queued chat to an operator."""
        phone = self._phone_of(chat_id)
        with self._phone_locks.hold(phone), self._operator_locks.hold(operator_id):
            operator = self._require_operator(operator_id)
            if len(operator.active_chat_ids) >= operator.max_chats:
                raise AssignError(
                    f"Operator {operator_id} is at capacity ({operator.max_chats})",
                    AssignError.OPERATOR_AT_CAPACITY,
                    {"operator_id": operator_id, "max_chats": operator.max_chats},
                )
            request = self._requests.get(chat_id)
            if request is None or request.status != ChatStatus.QUEUED:
                raise AssignError(f"Chat {chat_id} is not queued", AssignError.CHAT_NOT_QUEUED,
                                  {"chat_id": chat_id, "status": request.status if request else ChatStatus.CLOSED})
            if operator.status == OperatorStatus.AWAY:
                raise AssignError(f"Operator {operator_id} is away", AssignError.OPERATOR_AWAY,
                                  {"operator_id": operator_id})

            now = self._clock()
            chat = ActiveChat(
                id=request.id,
                phone=request.phone,
                customer_name=request.customer_name,
                operator_id=operator_id,
                queued_at=request.queued_at,
                start_time=now,
                last_activity=request.timestamp,
                messages=request.messages,
            )
            request = request.model_copy(update={"status": ChatStatus.ATTENDING, "operator_id": operator_id})
            self._requests[chat_id] = request
            self._active[chat_id] = chat
            self._operators[operator_id] = self._with_load(operator, operator.active_chat_ids + (chat_id,))

        logger.info(f"Chat {chat_id} assigned to {operator_id}")
        self._emit(Transition.ASSIGNED, request, chat)
        return chat

    def close(self, chat_id: str) -> None:
        """Close an attended chat. Closing a closed chat is a no-op."""
        request = self._requests.get(chat_id)
        if request is None:
            # _close_locked marks the id closed before dropping the request
            if chat_id in self._closed:
                logger.debug(f"Chat {chat_id} already closed")
                return
            raise AssignError(f"Chat {chat_id} not found", AssignError.CHAT_NOT_FOUND, {"chat_id": chat_id})
        phone = request.phone
        with self._phone_locks.hold(phone):
            request = self._requests.get(chat_id)
            if request is None:
                return  # closed while waiting for the lock
            if request.status == ChatStatus.QUEUED:
                raise AssignError(f"Chat {chat_id} was never assigned", AssignError.CHAT_NOT_ATTENDING,
                                  {"chat_id": chat_id})
            operator_id = request.operator_id or ""
            with self._operator_locks.hold(operator_id):
                chat, request = self._close_locked(chat_id, phone, operator_id)

        logger.info(f"Chat {chat_id} closed")
        self._emit(Transition.CLOSED, request, chat)

    def _close_locked(self, chat_id: str, phone: str, operator_id: str) -> tuple[Optional[ActiveChat], ChatRequest]:
        self._closed.add(chat_id)
        chat = self._active.pop(chat_id, None)
        request = self._requests.pop(chat_id).model_copy(update={"status": ChatStatus.CLOSED})
        if self._by_phone.get(phone) == chat_id:
            del self._by_phone[phone]
        operator = self._operators.get(operator_id)
        if operator is not None:
            remaining = tuple(c for c in operator.active_chat_ids if c != chat_id)
            self._operators[operator_id] = self._with_load(operator, remaining)
        return chat, request

    # metrics

    def counts(self) -> tuple[int, int]:
        """(queued, attending) right now."""
        requests = list(self._requests.values())
        queued = sum(1 for r in requests if r.status == ChatStatus.QUEUED)
        return queued, len(requests) - queued

    def metrics(self) -> AttendanceMetrics:
        if self._metrics is not None:
            return self._metrics.snapshot(self)
        queued, attending = self.counts()
        return AttendanceMetrics(queue_count=queued, attending_count=attending, total_requests=queued + attending)
