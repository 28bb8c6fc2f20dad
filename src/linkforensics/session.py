"""Post-capture session tracking.

After the record is captured, focus and visibility transitions keep
arriving until the visitor leaves. ``SessionEventTracker`` collects them in
order and appends them to the stored record, either every
``checkpoint_interval`` events or when flushed. A final flush on page
teardown is best effort and may be lost; checkpoints bound how much history
such a loss can drop.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set
import asyncio
import logging

from linkforensics.core.record import FocusEvent, FocusKind, utc_now
from linkforensics.integrations.logging import ForensicLogger
from linkforensics.store.base import ForensicStore

logger = logging.getLogger(__name__)


class SessionEventTracker:
    """Collects the focus history and download state of one access.

    Example:
        >>> tracker = SessionEventTracker(record.access_id, store)
        >>> tracker.on_blur()
        >>> tracker.on_focus()
        >>> await tracker.record_download()
        >>> await tracker.flush()
    """

    def __init__(
        self,
        access_id: str,
        store: ForensicStore,
        clock: Callable[[], datetime] = utc_now,
        checkpoint_interval: int = 10,
        events: Optional[ForensicLogger] = None,
    ):
        """Initialize the tracker.

        Args:
            access_id: Access whose record receives the events
            store: Store holding the record
            clock: Source of aware UTC timestamps
            checkpoint_interval: Pending events that trigger a checkpoint (0 disables)
            events: Optional structured event logger
        """
        self.access_id = access_id
        self.store = store
        self.clock = clock
        self.checkpoint_interval = checkpoint_interval
        self.events = events

        self._history: List[FocusEvent] = []
        self._pending: List[FocusEvent] = []
        self._pending_fields: Dict[str, Any] = {}
        self._last_timestamp: Optional[datetime] = None
        self._write_lock = asyncio.Lock()
        self._checkpoints: Set[asyncio.Task] = set()
        self.downloaded = False

    @property
    def focus_events(self) -> List[FocusEvent]:
        """All events recorded so far, oldest first."""
        return list(self._history)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def download_pending(self) -> bool:
        """True while a recorded download has not reached the store."""
        return "downloaded" in self._pending_fields

    def _now(self) -> datetime:
        now = self.clock()
        if self._last_timestamp is not None and now < self._last_timestamp:
            # Clock went backwards
            now = self._last_timestamp
        self._last_timestamp = now
        return now

    def _record(self, kind: FocusKind) -> FocusEvent:
        event = FocusEvent(timestamp=self._now(), kind=kind)
        self._history.append(event)
        self._pending.append(event)
        if self.checkpoint_interval and len(self._pending) >= self.checkpoint_interval:
            self._schedule_checkpoint()
        return event

    def on_focus(self) -> FocusEvent:
        return self._record(FocusKind.FOCUS)

    def on_blur(self) -> FocusEvent:
        return self._record(FocusKind.BLUR)

    def on_visibility_change(self, hidden: bool) -> FocusEvent:
        """A hidden page counts as blur, a visible one as focus."""
        return self._record(FocusKind.BLUR if hidden else FocusKind.FOCUS)

    def _schedule_checkpoint(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; checkpoint for %s deferred to flush", self.access_id)
            return
        task = loop.create_task(self.checkpoint())
        self._checkpoints.add(task)
        task.add_done_callback(self._checkpoints.discard)

    async def _write(self, extra: Dict[str, Any]) -> bool:
        async with self._write_lock:
            batch = list(self._pending)
            del self._pending[: len(batch)]
            fields = {**self._pending_fields, **extra}
            partial: Dict[str, Any] = dict(fields)
            if batch:
                partial["focus_events"] = batch
            if not partial:
                return True

            persisted = await self.store.update(self.access_id, partial)
            if persisted:
                self._pending_fields = {}
            else:
                # Keep the batch for the next attempt, ahead of newer events
                self._pending[:0] = batch
                self._pending_fields = fields
            return persisted

    async def checkpoint(self) -> bool:
        """Append pending focus events to the stored record.

        A download whose earlier write failed is retried along with them.

        Returns:
            True if nothing was pending or the events were stored
        """
        persisted = await self._write({})
        if not persisted:
            logger.warning("Checkpoint for %s failed; events kept pending", self.access_id)
        return persisted

    async def record_download(self) -> bool:
        """Mark the resource as downloaded and close the session.

        If the store rejects the write (for instance because the captured
        record has not landed yet), the download stays pending and is
        retried by the next checkpoint or flush.
        """
        now = self._now()
        persisted = await self._write(
            {"downloaded": True, "download_time": now, "session_end": now}
        )
        self.downloaded = True
        if self.events:
            self.events.download_recorded(self.access_id, persisted)
        return persisted

    async def flush(self) -> bool:
        """Best-effort final write of pending events and the session end."""
        if self._checkpoints:
            await asyncio.gather(*list(self._checkpoints), return_exceptions=True)
        count = len(self._pending)
        persisted = await self._write({"session_end": self._now()})
        if self.events:
            self.events.session_flushed(self.access_id, count, persisted)
        return persisted
