"""Per-request progress channels streamed to a single subscriber."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, Optional

from f95catalog.config import config
from f95catalog.schemas import ProgressEvent
from f95catalog.utils.helpers import get_timestamp

logger = logging.getLogger(__name__)

TERMINAL_EVENT_TYPES = frozenset({"completed", "error"})
PIPELINE_TOTAL_STEPS = 6


def make_event(
    event_type: str,
    correlation_id: str,
    step: int,
    total_steps: int,
    message: str,
    stage: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
    error: Optional[Dict[str, Any]] = None,
) -> ProgressEvent:
    """Build a progress event with its percentage derived from the step index."""
    percentage = int(round(step * 100 / total_steps)) if total_steps else 0
    return ProgressEvent(
        type=event_type,
        timestamp=get_timestamp(),
        correlation_id=correlation_id,
        step=step,
        total_steps=total_steps,
        percentage=max(0, min(100, percentage)),
        message=message,
        stage=stage,
        payload=payload,
        error=error,
    )


class ProgressChannel:
    """Buffered event queue for one pipeline run."""

    def __init__(self, correlation_id: str) -> None:
        self.correlation_id = correlation_id
        self.subscribed = False
        self.disconnected = False
        self.closed = False
        self._queue: "asyncio.Queue[ProgressEvent]" = asyncio.Queue()
        self._reaper: Optional[asyncio.TimerHandle] = None

    def publish(self, event: ProgressEvent) -> bool:
        """Queue ``event``; returns False once the subscriber is gone or the run finished."""
        if self.disconnected or self.closed:
            return False
        self._queue.put_nowait(event)
        if event.type in TERMINAL_EVENT_TYPES:
            self.closed = True
        return True

    async def next_event(self, timeout: Optional[float] = None) -> ProgressEvent:
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout=timeout)


class ProgressBroker:
    """Registry of progress channels keyed by correlation id.

    Channels that nobody subscribes to are torn down after the idle timeout.
    """

    def __init__(self, idle_timeout_seconds: Optional[float] = None) -> None:
        self._idle_timeout = idle_timeout_seconds or config.PROGRESS_IDLE_TIMEOUT_SECONDS
        self._channels: Dict[str, ProgressChannel] = {}

    def open(self, correlation_id: str, fresh: bool = False) -> ProgressChannel:
        """Return the channel for ``correlation_id``, creating it if needed.

        Args:
            correlation_id: Progress stream identifier.
            fresh: Replace a channel left over from a finished run. Runs pass
                True; subscribers keep a closed channel so they can replay it.
        """
        channel = self._channels.get(correlation_id)
        if channel is not None and fresh and channel.closed:
            self._discard(correlation_id, channel)
            channel = None
        if channel is None:
            channel = ProgressChannel(correlation_id)
            self._channels[correlation_id] = channel
            loop = asyncio.get_running_loop()
            channel._reaper = loop.call_later(self._idle_timeout, self._reap_if_idle, correlation_id, channel)
        return channel

    def get(self, correlation_id: str) -> Optional[ProgressChannel]:
        return self._channels.get(correlation_id)

    def __contains__(self, correlation_id: str) -> bool:
        return correlation_id in self._channels

    def publish(self, correlation_id: str, event: ProgressEvent) -> bool:
        channel = self._channels.get(correlation_id)
        if channel is None:
            return False
        return channel.publish(event)

    def _reap_if_idle(self, correlation_id: str, channel: ProgressChannel) -> None:
        if channel.subscribed:
            return
        if self._channels.get(correlation_id) is channel:
            del self._channels[correlation_id]
        channel.closed = True
        logger.info("Dropped unconsumed progress channel", extra={"correlation_id": correlation_id})

    def _discard(self, correlation_id: str, channel: ProgressChannel) -> None:
        if channel._reaper is not None:
            channel._reaper.cancel()
        if self._channels.get(correlation_id) is channel:
            del self._channels[correlation_id]

    async def subscribe(self, correlation_id: str) -> AsyncIterator[ProgressEvent]:
        """Stream events for ``correlation_id`` until a terminal event.

        Yields a ``connected`` event first. If the consumer goes away the
        channel is marked disconnected so the pipeline stops publishing,
        but the run itself keeps going.

        Raises:
            RuntimeError: When the channel already has a subscriber.
        """
        channel = self.open(correlation_id)
        if channel.subscribed:
            raise RuntimeError(f"Progress stream {correlation_id} already has a subscriber")
        channel.subscribed = True
        if channel._reaper is not None:
            channel._reaper.cancel()

        try:
            yield make_event("connected", correlation_id, 0, PIPELINE_TOTAL_STEPS, "Connected to progress stream")
            while True:
                try:
                    event = await channel.next_event(timeout=self._idle_timeout)
                except asyncio.TimeoutError:
                    logger.info("Progress stream idle; closing", extra={"correlation_id": correlation_id})
                    break
                yield event
                if event.type in TERMINAL_EVENT_TYPES:
                    break
        except (asyncio.CancelledError, GeneratorExit):
            channel.disconnected = True
            logger.info("Progress subscriber disconnected", extra={"correlation_id": correlation_id})
            raise
        finally:
            self._discard(correlation_id, channel)
