"""
Tests for progress event sinks.
"""

import json

import pytest

from generation_engine.core.models.events import EventType
from generation_engine.services.events import QueueEventSink, SSEEventSink, emit_event


@pytest.mark.asyncio
async def test_queue_sink_delivers_in_order():
    """Events arrive in emission order, then the iterator ends."""
    sink = QueueEventSink()

    await sink.emit_type(EventType.STEP_START, step="idea", progress=0.0)
    await sink.emit_type(EventType.STEP_COMPLETE, step="idea", progress=1.0)
    await sink.close()

    payloads = [payload async for payload in sink]

    assert [p["type"] for p in payloads] == ["step_start", "step_complete"]
    assert payloads[0]["step"] == "idea"
    assert "timestamp" in payloads[0]


@pytest.mark.asyncio
async def test_sse_sink_format_and_end_marker():
    """SSE lines are JSON records followed by one end marker."""
    lines = []
    sink = SSEEventSink(lines.append)

    await sink.emit_type(EventType.OUTPUT_START, index=0)
    await sink.close()
    await sink.close()

    assert len(lines) == 2
    assert lines[0].startswith("data: ")
    assert lines[0].endswith("\n\n")
    assert json.loads(lines[0][len("data: "):])["type"] == "output_start"
    assert lines[1] == "data: [DONE]\n\n"


@pytest.mark.asyncio
async def test_sse_sink_async_writer():
    """Async write callables are awaited."""
    lines = []

    async def write(line):
        lines.append(line)

    sink = SSEEventSink(write)
    assert await sink.emit_type(EventType.CONTENT, content="Hi") is True

    assert json.loads(lines[0][len("data: "):])["content"] == "Hi"


@pytest.mark.asyncio
async def test_disconnected_sink_drops_events():
    """A consumer disconnect closes the sink without raising."""
    def write(line):
        raise ConnectionError("gone")

    sink = SSEEventSink(write)

    assert await sink.emit_type(EventType.CONTENT, content="Hi") is False
    assert sink.closed is True
    assert await sink.emit_type(EventType.CONTENT, content="again") is False
    await sink.close()


@pytest.mark.asyncio
async def test_emit_without_sink():
    """Emitting to no sink is a no-op."""
    assert await emit_event(None, EventType.ERROR, message="x") is False


@pytest.mark.asyncio
async def test_closed_sink_rejects_events():
    """Nothing is emitted after the end marker."""
    sink = QueueEventSink()
    await sink.close()

    assert await sink.emit_type(EventType.CONTENT, content="late") is False
    assert sink.drain() == []
