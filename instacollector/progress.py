#!/usr/bin/env python3
"""
Progress - Transfer progress tracking

A ByteCounter is fed by the copying side while a ProgressTicker samples it
once per interval in the background and reports (copied, total, remaining)
to a callback. Stopping the ticker always delivers one last tick with the
final byte count.
"""

import asyncio
import logging
import threading
import time
from datetime import timedelta
from typing import Callable, Optional

from .utils import human_size

# progress(copied_bytes, total_bytes, remaining_duration)
ProgressFunc = Callable[[int, int, Optional[timedelta]], None]


class ByteCounter:
    """Monotonic byte counter shared between a copier and a ticker"""

    def __init__(self):
        self._lock = threading.Lock()
        self._n = 0

    def add(self, size: int):
        if size <= 0:
            return
        with self._lock:
            self._n += size

    @property
    def value(self) -> int:
        with self._lock:
            return self._n


class ProgressTicker:
    """Background task reporting the state of a ByteCounter"""

    def __init__(self, counter: ByteCounter, total: int, callback: ProgressFunc,
                 interval: float = 1.0):
        self.counter = counter
        self.total = total
        self.callback = callback
        self.interval = interval
        self._started: float = 0
        self._task: Optional[asyncio.Task] = None
        self.logger = logging.getLogger(__name__)

    def start(self):
        self._started = time.monotonic()
        self._task = asyncio.get_running_loop().create_task(self._tick_loop())

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._tick()

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    async def _tick_loop(self):
        while True:
            await asyncio.sleep(self.interval)
            self._tick()

    def _tick(self):
        copied = self.counter.value
        try:
            self.callback(copied, self.total, self._remaining(copied))
        except Exception as e:
            self.logger.warning(f"Progress callback failed: {e}")

    def _remaining(self, copied: int) -> Optional[timedelta]:
        if copied >= self.total:
            return timedelta(0)
        elapsed = time.monotonic() - self._started
        if copied <= 0 or elapsed <= 0:
            return None
        rate = copied / elapsed
        return timedelta(seconds=(self.total - copied) / rate)


def log_progress(logger, what: str) -> ProgressFunc:
    """Progress callback writing throughput and ETA to the run log"""
    def progress(copied: int, total: int, remaining: Optional[timedelta]):
        percent = 100.0 * copied / total if total > 0 else 100.0
        eta = str(timedelta(seconds=int(remaining.total_seconds()))) if remaining is not None else 'unknown'
        logger.info(f"{what}: {human_size(copied)} / {human_size(total)} ({percent:.1f}%), remaining {eta}")
    return progress
