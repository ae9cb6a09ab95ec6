"""Live Firestore subscriptions for one couple, owned by a single asyncio actor.

Firestore delivers snapshots on its own watch threads. Callbacks here only
post events to the actor's queue; the actor task is the single writer of the
published ``SyncSnapshot``, so observers always see one consistent state.

A periodic check re-selects today's content after local midnight and turns
streams that Firestore closed on its own into a sync error.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, List, NamedTuple, Optional

from config import CONTENT_WINDOW, SYNC_CHECK_INTERVAL_SECONDS, get_logger
from day_calculator import today_string
from models import ContentKind, DailyContent, DailyResponse, SyncSnapshot

logger = get_logger(__name__)

SnapshotObserver = Callable[[SyncSnapshot], None]


class _SyncEvent(NamedTuple):
    epoch: int
    source: str  # "settings" | "content" | "responses" | "error"
    value: object
    content_id: Optional[str] = None


def select_today_content(contents: List[DailyContent], today: str) -> Optional[DailyContent]:
    """Pick today's document from a content window, or None if it still needs generating."""
    matches = [content for content in contents if content.scheduled_date == today]
    if not matches:
        return None
    if len(matches) > 1:
        logger.warning(f"{len(matches)} documents scheduled for {today}, using {min(m.id for m in matches)}")
    return min(matches, key=lambda content: content.id)


def order_responses(responses: List[DailyResponse]) -> List[DailyResponse]:
    """Sort ascending by server timestamp; unacknowledged writes go last."""
    floor = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(
        responses,
        key=lambda response: (response.responded_at is None, response.responded_at or floor, response.id),
    )


class RealtimeSyncListeners:
    """Settings, content and responses subscriptions for the attached couple."""

    def __init__(self,
                 store,
                 kind: ContentKind,
                 timezone_name: Optional[str] = None,
                 content_window: int = CONTENT_WINDOW,
                 clock: Optional[Callable[[], datetime]] = None,
                 check_interval: float = SYNC_CHECK_INTERVAL_SECONDS):
        self.store = store
        self.kind = kind
        self.timezone_name = timezone_name
        self.content_window = content_window
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.check_interval = check_interval

        self._snapshot = SyncSnapshot()
        self._observers: List[SnapshotObserver] = []
        self._epoch = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._checker: Optional[asyncio.Task] = None
        self._settings_subscription = None
        self._content_subscription = None
        self._responses_subscription = None
        self._responses_content_id: Optional[str] = None
        self._contents: List[DailyContent] = []
        self._closed_reported = False

    @property
    def snapshot(self) -> SyncSnapshot:
        return self._snapshot

    @property
    def couple_id(self) -> Optional[str]:
        return self._snapshot.couple_id

    @property
    def is_attached(self) -> bool:
        return self._worker is not None

    def add_observer(self, observer: SnapshotObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: SnapshotObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def attach(self, couple_id: str) -> None:
        """Open the subscriptions for a couple, closing any previous ones first.

        Must be called from the event loop that will run the actor.
        """
        self.detach()

        self._loop = asyncio.get_running_loop()
        self._epoch += 1
        epoch = self._epoch
        queue: asyncio.Queue = asyncio.Queue()
        self._queue = queue
        self._worker = self._loop.create_task(self._run(queue))
        self._checker = self._loop.create_task(self._check_periodically(epoch))
        self._snapshot = SyncSnapshot(couple_id=couple_id)
        self._contents = []
        self._closed_reported = False

        logger.info(f"Attaching {self.kind.value} listeners for couple: {couple_id}")
        self._settings_subscription = self.store.watch_settings(
            couple_id,
            self._poster(epoch, queue, "settings"),
            self._poster(epoch, queue, "error"),
        )
        self._content_subscription = self.store.watch_content(
            couple_id,
            self.content_window,
            self._poster(epoch, queue, "content"),
            self._poster(epoch, queue, "error"),
        )

    def detach(self) -> None:
        """Close every subscription and stop the actor. Safe to call repeatedly."""
        if self._worker is None:
            return
        logger.info(f"Detaching {self.kind.value} listeners for couple: {self._snapshot.couple_id}")
        self._epoch += 1
        for subscription in (self._settings_subscription, self._content_subscription, self._responses_subscription):
            _unsubscribe(subscription)
        self._settings_subscription = None
        self._content_subscription = None
        self._responses_subscription = None
        self._responses_content_id = None
        self._contents = []

        self._worker.cancel()
        self._worker = None
        if self._checker is not None:
            self._checker.cancel()
            self._checker = None
        self._queue = None
        self._snapshot = SyncSnapshot()

    async def wait_idle(self) -> None:
        """Wait until every event posted so far has been handled."""
        if self._queue is not None:
            await self._queue.join()

    def refresh_day(self) -> bool:
        """Re-select today's content when the local date moved since the last selection.

        Returns True when a re-selection was queued. Call from the actor's loop.
        """
        if self._queue is None or not self._snapshot.content_loaded:
            return False
        today = today_string(self.timezone_name, self.clock())
        if today == self._snapshot.today:
            return False
        logger.info(f"Local date is now {today}, re-selecting {self.kind.value} for couple: {self.couple_id}")
        self._queue.put_nowait(_SyncEvent(self._epoch, "content", list(self._contents)))
        return True

    def check_streams(self) -> bool:
        """Report subscriptions Firestore closed without being asked to.

        A watch whose stream ended (revoked permission, terminated RPC) never
        calls back again, so it is detected here and published as a sync
        error. Returns False when a closed stream was found.
        """
        if self._queue is None:
            return True
        subscriptions = (
            ("settings", self._settings_subscription),
            ("content", self._content_subscription),
            ("responses", self._responses_subscription),
        )
        closed = [name for name, subscription in subscriptions if subscription is not None and not subscription.is_active]
        if not closed:
            return True
        if not self._closed_reported:
            self._closed_reported = True
            message = f"Live sync stopped: {', '.join(closed)} stream closed"
            self._queue.put_nowait(_SyncEvent(self._epoch, "error", message))
        return False

    async def _check_periodically(self, epoch: int) -> None:
        while epoch == self._epoch:
            await asyncio.sleep(self.check_interval)
            if epoch != self._epoch:
                return
            self.refresh_day()
            self.check_streams()

    def _poster(self, epoch: int, queue: asyncio.Queue, source: str, content_id: Optional[str] = None):
        loop = self._loop

        def post(value) -> None:
            event = _SyncEvent(epoch, source, value, content_id)
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                queue.put_nowait(event)
            elif not loop.is_closed():
                loop.call_soon_threadsafe(queue.put_nowait, event)
        return post

    async def _run(self, queue: asyncio.Queue) -> None:
        while True:
            event = await queue.get()
            try:
                self._handle(event)
            except Exception as e:
                logger.error(f"Failed to apply {event.source} update: {e}")
            finally:
                queue.task_done()

    def _handle(self, event: _SyncEvent) -> None:
        if event.epoch != self._epoch:
            logger.debug(f"Dropping {event.source} event from a detached subscription")
            return

        if event.source == "error":
            logger.error(f"{self.kind.value} sync error: {event.value}")
            self._snapshot = self._snapshot.model_copy(update={"sync_error": str(event.value) or "Sync error"})
        elif event.source == "settings":
            self._snapshot = self._snapshot.model_copy(update={"settings": event.value})
        elif event.source == "content":
            self._apply_content(event.value)
        elif event.source == "responses":
            if event.content_id != self._responses_content_id:
                logger.debug(f"Dropping responses for stale content: {event.content_id}")
                return
            self._snapshot = self._snapshot.model_copy(update={"responses": order_responses(event.value)})

        self._publish()

    def _apply_content(self, contents: List[DailyContent]) -> None:
        self._contents = list(contents)
        today = today_string(self.timezone_name, self.clock())
        current = select_today_content(contents, today)
        update = {"current_content": current, "content_loaded": True, "today": today}

        current_id = current.id if current is not None and self.kind.supports_responses else None
        if current_id != self._responses_content_id:
            update["responses"] = []
            self._rescope_responses(current_id)
        self._snapshot = self._snapshot.model_copy(update=update)

    def _rescope_responses(self, content_id: Optional[str]) -> None:
        _unsubscribe(self._responses_subscription)
        self._responses_subscription = None
        self._responses_content_id = content_id
        if content_id is None:
            return
        logger.debug(f"Watching responses for content: {content_id}")
        self._responses_subscription = self.store.watch_responses(
            content_id,
            self._poster(self._epoch, self._queue, "responses", content_id),
            self._poster(self._epoch, self._queue, "error"),
        )

    def _publish(self) -> None:
        snapshot = self._snapshot
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception as e:
                logger.error(f"Snapshot observer failed: {e}")


def _unsubscribe(subscription) -> None:
    if subscription is None:
        return
    try:
        subscription.unsubscribe()
    except Exception as e:
        logger.warning(f"Failed to close subscription: {e}")
