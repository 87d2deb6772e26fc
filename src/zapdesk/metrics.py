"""
Metrics aggregator — queue depth, attending count and average response time,
derived from the router's transitions.
"""

from collections import deque
from typing import TYPE_CHECKING, Optional

from zapdesk.models.attendance import ActiveChat, AttendanceMetrics, ChatRequest

if TYPE_CHECKING:
    from zapdesk.attendance import AttendanceRouter

DEFAULT_WINDOW = 100


class MetricsAggregator:
    """Keeps response-time samples of the last `window` closed chats.

    Response time of a chat = assignment time - first queued message time.
    """

    def __init__(self, window: int = DEFAULT_WINDOW):
        self._samples: deque[float] = deque(maxlen=window)

    def on_transition(self, kind: str, request: ChatRequest, chat: Optional[ActiveChat]) -> None:
        if kind == "closed" and chat is not None:
            waited = (chat.start_time - chat.queued_at).total_seconds()
            self._samples.append(max(waited, 0.0))

    @property
    def average_response_time(self) -> float:
        samples = list(self._samples)
        return sum(samples) / len(samples) if samples else 0.0

    def snapshot(self, router: "AttendanceRouter") -> AttendanceMetrics:
        queued, attending = router.counts()
        return AttendanceMetrics(
            queue_count=queued,
            attending_count=attending,
            average_response_time=self.average_response_time,
            total_requests=queued + attending,
        )
