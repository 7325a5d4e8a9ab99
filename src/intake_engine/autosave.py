"""DebouncedSaver — coalesces bursts of field saves into one store write.

Each :meth:`DebouncedSaver.schedule` call merges its data into a pending
queue and (re)starts the debounce timer.  When the timer fires, the whole
queue is handed to the writer in a single call.  Writes are serialised, so
a newer write always lands after an older one (last write wins on the
merged snapshot).

Pending writes survive the owner going away: :meth:`detach` only marks the
saver as detached, and the timer task keeps a strong reference in a
module-level set until it completes.  Failures in a background write are
logged, never raised; the failed data is kept for :meth:`retry` and the
saver reports ``status == "error"`` until a later write succeeds.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Literal

from intake_engine.constants import AUTOSAVE_DEBOUNCE
from intake_engine.models.base import utcnow

logger = logging.getLogger(__name__)

Writer = Callable[[dict[str, Any]], Awaitable[Any]]
SaveStatus = Literal["idle", "saving", "saved", "error"]

# Strong references to in-flight timer tasks so they are not garbage
# collected when their saver is dropped.
_BACKGROUND_TASKS: set[asyncio.Task] = set()


class DebouncedSaver:
    """Debounced, serialised writer of merged field snapshots.

    Args:
        write: coroutine function receiving the merged queue.
        delay: debounce window in seconds.
        name: label used in log lines.
    """

    def __init__(self, write: Writer, *, delay: float = AUTOSAVE_DEBOUNCE, name: str = "autosave") -> None:
        self._write = write
        self._delay = delay
        self._name = name
        self._queue: dict[str, Any] = {}
        self._timer: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._lock = asyncio.Lock()
        self.detached = False
        self.last_error: BaseException | None = None
        self.last_saved: datetime | None = None
        # Data of writes that failed, merged; resent by retry()
        self._failed: dict[str, Any] = {}

    @property
    def pending(self) -> bool:
        """True while data is queued or a write is in flight."""
        return bool(self._queue) or any(not t.done() for t in self._tasks)

    @property
    def status(self) -> SaveStatus:
        if self.pending:
            return "saving"
        if self.last_error is not None:
            return "error"
        if self.last_saved is not None:
            return "saved"
        return "idle"

    def schedule(self, data: dict[str, Any]) -> None:
        """Queue *data* and restart the debounce timer."""
        self._queue = {**self._queue, **data}
        if self._timer is not None:
            self._timer.cancel()
        task = asyncio.create_task(self._fire_after_delay())
        self._timer = task
        self._tasks.add(task)
        _BACKGROUND_TASKS.add(task)
        task.add_done_callback(self._forget)

    def _forget(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        _BACKGROUND_TASKS.discard(task)

    async def _fire_after_delay(self) -> None:
        await asyncio.sleep(self._delay)
        # Past this point the timer can no longer be cancelled by schedule()
        if self._timer is asyncio.current_task():
            self._timer = None
        await self._write_queue()

    async def _write_queue(self) -> None:
        async with self._lock:
            if not self._queue:
                return
            data, self._queue = self._queue, {}
            try:
                await self._write(data)
            except Exception as exc:
                self.last_error = exc
                self._failed = {**self._failed, **data}
                logger.exception("%s: background write failed", self._name)
                return
            self.last_error = None
            self.last_saved = utcnow()
            self._failed = {}

    async def flush(self) -> None:
        """Write the queue now, skipping the remaining debounce window."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        await self._write_queue()

    async def retry(self) -> bool:
        """Resend the data of failed writes now.  Returns True on success."""
        if not self._failed:
            return self.last_error is None
        # Newer queued values win over the failed ones
        self._queue = {**self._failed, **self._queue}
        self._failed = {}
        await self.flush()
        return self.last_error is None

    async def drain(self) -> None:
        """Wait for every scheduled or in-flight write to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def detach(self) -> None:
        """Release the saver from its view; pending writes still complete."""
        self.detached = True
        if self._queue:
            logger.debug("%s: detached with a pending write", self._name)
