"""
Session state machine — pairing lifecycle of the headless messaging client.

    disconnected -> qr_ready -> connecting -> connected
    any state    -> disconnected  (force_new_auth, reported session loss)

State only moves on what the messaging client reports. Commands are issued
fire-and-forget; their effect shows up later as an inbound status envelope.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional

from transitions import Machine, MachineError

from zapdesk.errors import AuthStateError
from zapdesk.models.envelope import CommandEnvelope, SessionStatus
from zapdesk.models.events import SESSION_STATES, Command, SessionState, StatusType
from zapdesk.models.session import SessionSnapshot
from zapdesk.transport.envelope import build_command

logger = logging.getLogger("zapdesk.session")

_TRIGGERS = {
    SessionState.QR_READY: "qr_issued",
    SessionState.CONNECTING: "scanned",
    SessionState.CONNECTED: "authenticated",
    SessionState.DISCONNECTED: "session_lost",
}


def target_state(status: SessionStatus) -> Optional[str]:
    """Map a reported status onto the state it announces, if any."""
    if status.status in SESSION_STATES:
        return status.status
    if status.kind == StatusType.QR_CODE and status.qr_code:
        return SessionState.QR_READY
    if status.kind == StatusType.QR_EXPIRED:
        return SessionState.DISCONNECTED
    if status.session_connected is True:
        return SessionState.CONNECTED if status.is_fully_validated else SessionState.CONNECTING
    if status.session_connected is False:
        return SessionState.DISCONNECTED
    return None


class SessionStateMachine:
    state: str

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._qr_code: Optional[str] = None
        self._connected_number: Optional[str] = None
        self._last_state_change = self._clock()
        self._listeners: list[Callable[[SessionSnapshot], None]] = []

        self._machine = Machine(
            model=self,
            states=SESSION_STATES,
            initial=SessionState.DISCONNECTED,
            auto_transitions=False,
            ignore_invalid_triggers=False,
        )
        self._machine.add_transition("qr_issued", [SessionState.DISCONNECTED, SessionState.QR_READY], SessionState.QR_READY)
        # a restored session reconnects without showing a QR code
        self._machine.add_transition("scanned", [SessionState.QR_READY, SessionState.DISCONNECTED], SessionState.CONNECTING)
        self._machine.add_transition("authenticated", SessionState.CONNECTING, SessionState.CONNECTED)
        self._machine.add_transition("session_lost", "*", SessionState.DISCONNECTED)

    if TYPE_CHECKING:
        def trigger(self, event: str, *args: Any, **kwargs: Any) -> bool:
            """FSM trigger placeholder."""
            ...

    @property
    def qr_code(self) -> Optional[str]:
        return self._qr_code

    @property
    def is_ready(self) -> bool:
        return self.state == SessionState.CONNECTED

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self.state,
            qr_code=self._qr_code,
            connected_number=self._connected_number,
            last_state_change=self._last_state_change,
        )

    def add_listener(self, handler: Callable[[SessionSnapshot], None]) -> Callable[[], None]:
        """Call `handler` with a snapshot after every state change. Returns a cleanup function."""
        self._listeners.append(handler)
        def remove() -> None:
            try:
                self._listeners.remove(handler)
            except ValueError:
                pass
        return remove

    def _notify(self, snapshot: SessionSnapshot) -> None:
        for handler in list(self._listeners):
            try:
                handler(snapshot)
            except Exception:
                logger.exception("Session listener failed")

    def observe(
        self,
        target: str,
        qr_code: Optional[str] = None,
        connected_number: Optional[str] = None,
    ) -> SessionSnapshot:
        """Move to `target` as reported by the messaging client.

        Raises AuthStateError for a transition the lifecycle does not allow.
        Re-reporting the current state is a no-op (except a QR refresh).
        """
        trigger = _TRIGGERS.get(target)
        if trigger is None:
            raise AuthStateError(f"Unknown session state {target!r}", target=target)

        with self._lock:
            current = self.state
            if target == current and target != SessionState.QR_READY:
                if connected_number and target != SessionState.DISCONNECTED:
                    self._connected_number = connected_number
                return self.snapshot()
            try:
                self.trigger(trigger)
            except MachineError as e:
                raise AuthStateError(
                    f"Session cannot move from {current} to {target}", current=current, target=target,
                ) from e

            self._qr_code = qr_code if target == SessionState.QR_READY else None
            if target in (SessionState.CONNECTING, SessionState.CONNECTED):
                self._connected_number = connected_number or self._connected_number
            else:
                self._connected_number = None
            self._last_state_change = self._clock()
            snapshot = self.snapshot()

        logger.info(f"Session {current} -> {target}")
        self._notify(snapshot)
        return snapshot

    def apply(self, status: SessionStatus) -> bool:
        """Apply an inbound status. Invalid or stray transitions are logged and ignored."""
        target = target_state(status)
        if target is None:
            logger.debug(f"Status without a session signal ignored: {status!r}")
            return False
        if status.kind == StatusType.QR_EXPIRED and self.state != SessionState.QR_READY:
            logger.debug(f"qr_expired ignored in state {self.state}")
            return False
        try:
            self.observe(target, qr_code=status.qr_code, connected_number=status.connected_number)
        except AuthStateError as e:
            logger.warning(f"Ignoring session status: {e}")
            return False
        return True

    def request_generate_qr(self) -> Optional[CommandEnvelope]:
        """Issue `generate_qr`, or None while a session is connecting/connected."""
        if self.state in (SessionState.CONNECTING, SessionState.CONNECTED):
            logger.info(f"Session is {self.state} – ignoring generate_qr")
            return None
        return build_command(Command.GENERATE_QR)

    def request_force_new_auth(self) -> CommandEnvelope:
        """Issue `force_new_auth` and reset to disconnected unconditionally."""
        self.observe(SessionState.DISCONNECTED)
        return build_command(Command.FORCE_NEW_AUTH)
