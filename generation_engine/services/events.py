"""
Progress event sinks.

A sink receives progress events from a generation run. Once closed the
sink emits its end marker exactly once; once its consumer has gone away
it drops further events, which the orchestrator treats as cancellation
of remaining streaming work.
"""

import asyncio
import inspect
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from ..core.models.events import EventType, ProgressEvent


logger = logging.getLogger(__name__)

END_MARKER = "[DONE]"


class EventSink(ABC):
    """Abstract progress event sink."""

    def __init__(self):
        self._ended = False
        self._disconnected = False

    @property
    def closed(self) -> bool:
        return self._ended or self._disconnected

    async def emit(self, event: ProgressEvent) -> bool:
        """
        Deliver one event.

        Returns:
            False if the sink is closed and the event was dropped
        """
        if self.closed:
            return False
        try:
            await self._send(event.to_payload())
        except ConnectionError as e:
            logger.info(f"Event consumer disconnected: {e.__class__.__name__}")
            self._disconnected = True
            return False
        return True

    async def emit_type(self, event_type: EventType, **data) -> bool:
        return await self.emit(ProgressEvent(type=event_type, data=data))

    async def close(self):
        """Emit the end marker once."""
        if self.closed:
            self._ended = True
            return
        self._ended = True
        try:
            await self._end()
        except ConnectionError:
            self._disconnected = True

    def disconnect(self):
        """Mark the consumer as gone."""
        self._disconnected = True

    @abstractmethod
    async def _send(self, payload: Dict[str, Any]):
        """Deliver one payload."""

    async def _end(self):
        pass


class QueueEventSink(EventSink):
    """Sink backed by an asyncio queue; ``None`` marks the end."""

    def __init__(self, maxsize: int = 0):
        super().__init__()
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    async def _send(self, payload: Dict[str, Any]):
        await self.queue.put(payload)

    async def _end(self):
        await self.queue.put(None)

    async def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        while True:
            payload = await self.queue.get()
            if payload is None:
                return
            yield payload

    def drain(self) -> List[Dict[str, Any]]:
        """Take every queued payload without waiting, end marker excluded."""
        payloads = []
        while not self.queue.empty():
            payload = self.queue.get_nowait()
            if payload is not None:
                payloads.append(payload)
        return payloads


class SSEEventSink(EventSink):
    """Sink writing server-sent event lines through a write callable."""

    def __init__(self, write: Callable[[str], Any]):
        super().__init__()
        self.write = write

    async def _write(self, line: str):
        result = self.write(line)
        if inspect.isawaitable(result):
            await result

    async def _send(self, payload: Dict[str, Any]):
        await self._write(f"data: {json.dumps(payload, default=str)}\n\n")

    async def _end(self):
        await self._write(f"data: {END_MARKER}\n\n")


async def emit_event(sink: Optional[EventSink], event_type: EventType, **data) -> bool:
    """Emit to an optional sink."""
    if sink is None:
        return False
    return await sink.emit_type(event_type, **data)
