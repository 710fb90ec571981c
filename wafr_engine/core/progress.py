"""In-process progress channel streamed to clients as Server-Sent Events.

Emitting is fire-and-forget: events go into bounded per-subscriber queues and are
dropped for subscribers that fall behind.
"""

import asyncio
import json
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from pydantic import BaseModel

from wafr_engine.core.logging import get_logger
from wafr_engine.core.schemas_analysis import AnalysisProgressEvent
from wafr_engine.core.schemas_iac import ImplementationProgressEvent

logger = get_logger(__name__)


def sse_event(data: dict) -> str:
    """Format a dict as an SSE data line."""
    return f"data: {json.dumps(data)}\n\n"


class ProgressBroadcaster:
    """Fans progress events out to every open stream of a user."""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)

    def _publish(self, user_id: str, event: BaseModel) -> None:
        payload = event.model_dump(mode="json")
        for queue in list(self._subscribers.get(user_id, ())):
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                logger.debug(f"Dropping progress event for slow subscriber of user {user_id}")

    def emit_analysis_progress(self, user_id: str, event: AnalysisProgressEvent) -> None:
        self._publish(user_id, event)

    def emit_implementation_progress(self, user_id: str, event: ImplementationProgressEvent) -> None:
        self._publish(user_id, event)

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, ()))

    @asynccontextmanager
    async def subscribe(self, user_id: str) -> AsyncIterator[asyncio.Queue]:
        """Register a queue receiving the user's events until the context exits."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[user_id].add(queue)
        try:
            yield queue
        finally:
            self._subscribers[user_id].discard(queue)
            if not self._subscribers[user_id]:
                del self._subscribers[user_id]

    async def stream(self, user_id: str, heartbeat_seconds: float = 15.0) -> AsyncIterator[str]:
        """Yield SSE lines for the user's events, with periodic heartbeats."""
        async with self.subscribe(user_id) as queue:
            yield sse_event({"type": "connected"})
            while True:
                try:
                    payload = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
                except asyncio.TimeoutError:
                    yield ": heartbeat\n\n"
                    continue
                yield sse_event(payload)
