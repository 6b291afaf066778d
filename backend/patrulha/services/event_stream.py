"""Newline-delimited JSON transport for import events.

The orchestrator runs as a background task that pushes events into an
``EventChannel``; the HTTP response reads lines out of it. When the caller
disconnects the channel is detached: later sends become no-ops and the batch
runs to completion. Rows already persisted are not rolled back.
"""

import asyncio
import json
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional, Set

from patrulha.core.metrics import metrics
from patrulha.models.import_models import ErrorEvent, ImportEvent

logger = logging.getLogger(__name__)

_EOF = object()


def encode_event(event: ImportEvent) -> str:
    """Serialize one event as a single JSON line."""
    return json.dumps(event.to_wire(), ensure_ascii=False, default=str) + "\n"


class EventChannel:
    """Single-producer, single-consumer queue of encoded event lines."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._detached = False
        self._closed = False
        self.sent = 0

    @property
    def detached(self) -> bool:
        return self._detached

    def send(self, event: ImportEvent) -> None:
        """Queue an event for the consumer; silently dropped once detached."""
        if self._detached or self._closed:
            return
        try:
            line = encode_event(event)
        except (TypeError, ValueError):
            logger.error("Failed to encode %s event", getattr(event, "type", "?"), exc_info=True)
            return
        self._queue.put_nowait(line)
        self.sent += 1

    def close(self) -> None:
        """Signal end of stream to the consumer."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_EOF)

    def detach(self) -> None:
        """Mark the consumer as gone."""
        if not self._detached:
            self._detached = True
            logger.info("Import stream consumer detached after %d events", self.sent)

    async def lines(self) -> AsyncIterator[str]:
        """Yield encoded lines in order until the producer closes the channel."""
        try:
            while True:
                item = await self._queue.get()
                if item is _EOF:
                    break
                yield item
        finally:
            self.detach()


async def pump_events(
    events: AsyncIterator[ImportEvent],
    channel: EventChannel,
    before: Optional[Callable[[], Awaitable[None]]] = None,
    after: Optional[Callable[[], Awaitable[None]]] = None,
) -> None:
    """
    Feed every event from ``events`` into ``channel``.

    ``before`` runs ahead of the first event (e.g. connecting to the store) and
    ``after`` always runs at the end. Any failure outside the per-row handling
    is reported as one terminal ``error`` event. The channel is always closed.
    The run is counted as ``completed`` or ``aborted`` in the import metrics.
    """
    try:
        if before is not None:
            await before()
        async for event in events:
            channel.send(event)
        metrics.record_import_run("import", "completed")
    except Exception as e:
        logger.exception("Import stream aborted")
        metrics.record_import_run("import", "aborted")
        channel.send(ErrorEvent(error=getattr(e, "message", None) or str(e) or type(e).__name__))
    finally:
        if after is not None:
            try:
                await after()
            except Exception:
                logger.warning("Import stream cleanup failed", exc_info=True)
        channel.close()


# Strong references to running import tasks; a disconnected client must not
# let the event loop garbage-collect a batch mid-flight.
_running_tasks: Set[asyncio.Task] = set()


def start_background(coro: Awaitable[None]) -> asyncio.Task:
    """Run ``coro`` as a tracked background task."""
    task = asyncio.ensure_future(coro)
    _running_tasks.add(task)
    task.add_done_callback(_running_tasks.discard)
    return task


def running_task_count() -> int:
    return len(_running_tasks)
