"""
Progress sink for chunk status changes.
The core only ever appends; a full buffer drops its oldest event so
publishing never blocks the runner.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from subchunker.core.constants import PROGRESS_QUEUE_SIZE
from subchunker.core.models import ChunkStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    kind: str                        # "chunk" or "message"
    idx: Optional[int] = None
    status: Optional[str] = None
    message: str = ""


class ProgressSink:
    """Bounded event buffer plus optional observer callbacks."""

    def __init__(self, maxlen: int = PROGRESS_QUEUE_SIZE):
        self._events: deque[ProgressEvent] = deque(maxlen=maxlen)
        self.dropped = 0

        # Callbacks
        self.on_chunk_updated: Optional[Callable[[ChunkStatus], None]] = None
        self.on_progress: Optional[Callable[[str], None]] = None

    def _push(self, event: ProgressEvent):
        if len(self._events) == self._events.maxlen:
            self.dropped += 1
        self._events.append(event)

    def _notify(self, callback, arg):
        if callback is None:
            return
        try:
            callback(arg)
        except Exception as e:
            # observer errors are logged, never raised into the runner
            logger.error("Progress observer failed: %s", e, exc_info=True)

    def publish_chunk(self, status: ChunkStatus):
        self._push(ProgressEvent(kind="chunk", idx=status.idx, status=status.status))
        self._notify(self.on_chunk_updated, status)

    def publish_message(self, message: str):
        self._push(ProgressEvent(kind="message", message=message))
        self._notify(self.on_progress, message)

    def drain(self) -> list[ProgressEvent]:
        """Return all buffered events, oldest first, and clear the buffer."""
        events = list(self._events)
        self._events.clear()
        return events

    def __len__(self) -> int:
        return len(self._events)
