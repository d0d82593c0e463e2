"""
Usage buffer.

Usage log entries are appended to an in-memory queue and written to
the repository in batches by one background task, woken either when
the queue reaches its batch size or by a periodic timer. Adding an
entry never waits on the repository. A batch that fails to persist is
put back at the head of the queue and retried on the next flush.
"""

import asyncio
import contextlib
import logging
from collections import deque
from typing import Optional, List, Dict, Any

from ..core.models.usage import UsageLogEntry
from ..repositories.base import NodeRepository


logger = logging.getLogger(__name__)


class UsageBuffer:
    """Batched, append-only usage log writer with summary statistics."""

    def __init__(
        self,
        repository: NodeRepository,
        buffer_size: int = 100,
        flush_interval: float = 30.0,
        history_size: int = 10000
    ):
        """
        Initialize usage buffer.

        Args:
            repository: Destination of ``batch_log_usage``
            buffer_size: Entries per batch; reaching it triggers a flush
            flush_interval: Seconds between timer flushes (0 disables the timer)
            history_size: Entries kept for statistics and the pending queue bound
        """
        self.repository = repository
        self.buffer_size = buffer_size
        self.flush_interval = flush_interval
        self.history_size = history_size

        self._pending: List[UsageLogEntry] = []
        self.history: deque = deque(maxlen=history_size)
        self.dropped_entries = 0

        self._flush_lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self._flush_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def add(self, entry: UsageLogEntry):
        """
        Queue one entry.

        A full batch wakes the background flush task; the caller does
        not wait for the write.
        """
        self._pending.append(entry)
        self.history.append(entry)
        self._enforce_bound()

        if len(self._pending) >= self.buffer_size:
            self._wake.set()
            self._ensure_worker()
        elif self.flush_interval > 0:
            self._ensure_worker()

    def _enforce_bound(self):
        overflow = len(self._pending) - self.history_size
        if overflow > 0:
            del self._pending[:overflow]
            self.dropped_entries += overflow
            logger.warning(f"Usage queue full, dropped {overflow} oldest entries")

    def _requeue(self, batch: List[UsageLogEntry]):
        self._pending = batch + self._pending
        self._enforce_bound()

    async def flush(self) -> int:
        """
        Write queued entries to the repository.

        Returns:
            Number of entries written
        """
        async with self._flush_lock:
            batch, self._pending = self._pending, []

            if not batch:
                return 0

            try:
                await self.repository.batch_log_usage(batch)
            except asyncio.CancelledError:
                self._requeue(batch)
                raise
            except Exception as e:
                logger.error(f"Failed to flush {len(batch)} usage entries: {str(e)}")
                self._requeue(batch)
                return 0

            logger.debug(f"Flushed {len(batch)} usage entries")
            return len(batch)

    def _ensure_worker(self):
        if self._closed:
            return
        if self._flush_task is not None and not self._flush_task.done():
            return
        self._flush_task = asyncio.get_running_loop().create_task(self._flush_loop())

    async def _flush_loop(self):
        timeout = self.flush_interval if self.flush_interval > 0 else None
        while not self._closed:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wake.wait(), timeout)
            self._wake.clear()
            await self.flush()

    async def close(self):
        """Stop the flush task and flush what remains."""
        self._closed = True
        if self._flush_task is not None:
            self._wake.set()
            await self._flush_task
            self._flush_task = None
        await self.flush()

    def get_usage_stats(self) -> Dict[str, Any]:
        """Summarize recent usage by provider and by task."""
        stats = {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "total_tokens": 0,
            "total_cost": 0.0,
            "by_provider": {},
            "by_task": {},
            "pending": len(self._pending)
        }

        for entry in self.history:
            stats["total_requests"] += 1
            if entry.success:
                stats["successful_requests"] += 1
            else:
                stats["failed_requests"] += 1
            stats["total_tokens"] += entry.tokens_total
            stats["total_cost"] += entry.cost

            for key, group in ((entry.provider, "by_provider"), (entry.task or "unknown", "by_task")):
                bucket = stats[group].setdefault(key, {
                    "requests": 0, "failures": 0, "tokens": 0, "cost": 0.0, "latency_ms": 0
                })
                bucket["requests"] += 1
                bucket["failures"] += 0 if entry.success else 1
                bucket["tokens"] += entry.tokens_total
                bucket["cost"] += entry.cost
                bucket["latency_ms"] += entry.latency_ms

        for group in ("by_provider", "by_task"):
            for bucket in stats[group].values():
                bucket["average_latency_ms"] = bucket.pop("latency_ms") / bucket["requests"]

        return stats
