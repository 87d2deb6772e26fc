"""
Pending command table — pairs issued control commands with the session state
that later confirms them, and evicts the ones that never got an answer.
"""

import time
from typing import Callable, Optional

from zapdesk.models.envelope import CommandEnvelope
from zapdesk.models.events import Command, SessionState
from zapdesk.models.session import SessionSnapshot

DEFAULT_COMMAND_TIMEOUT_S = 30.0

# states that confirm each command took effect
CONFIRMING_STATES = {
    Command.GENERATE_QR: {SessionState.QR_READY, SessionState.CONNECTING, SessionState.CONNECTED},
    Command.FORCE_NEW_AUTH: {SessionState.QR_READY},
}


class PendingCommands:
    def __init__(self, timeout: float = DEFAULT_COMMAND_TIMEOUT_S, clock: Optional[Callable[[], float]] = None):
        self._timeout = timeout
        self._clock = clock or time.monotonic
        self._pending: dict[str, tuple[CommandEnvelope, float]] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def track(self, command: CommandEnvelope) -> None:
        if command.command in CONFIRMING_STATES:
            self._pending[command.request_id] = (command, self._clock())

    def resolve_for(self, snapshot: SessionSnapshot) -> list[CommandEnvelope]:
        """Drop and return the commands `snapshot` confirms."""
        resolved = [
            cmd for cmd, _ in self._pending.values()
            if snapshot.state in CONFIRMING_STATES[cmd.command]
        ]
        for cmd in resolved:
            self._pending.pop(cmd.request_id, None)
        return resolved

    def stalled(self) -> list[CommandEnvelope]:
        """Drop and return commands with no confirmation after the timeout."""
        now = self._clock()
        expired = [cmd for cmd, issued in self._pending.values() if now - issued >= self._timeout]
        for cmd in expired:
            self._pending.pop(cmd.request_id, None)
        return expired
