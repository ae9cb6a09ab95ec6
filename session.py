"""Couple session controller wiring the daily content engine together."""

import asyncio
from datetime import datetime, timezone
from typing import Callable, List, Optional, Set

from config import DEFAULT_TIMEZONE, FIRST_SNAPSHOT_TIMEOUT_SECONDS, FREE_DAY_LIMIT, get_logger
from content_cache import get_content_cache
from content_generator import ContentGenerator
from day_calculator import expected_day, today_string
from errors import Love2LoveError, NoActiveContentError, SessionInitializationError
from models import ContentKind, DailyContent, PaywallRoute, RoutingState, SessionState, SubmissionResult, SyncSnapshot
from notifications import LoggingNotificationSink, NotificationDispatcher
from response_submitter import ResponseSubmitter
from routing import route
from sync_listeners import RealtimeSyncListeners

logger = get_logger(__name__)

RouteObserver = Callable[[RoutingState], None]


def build_couple_id(user_id: Optional[str], partner_id: Optional[str]) -> Optional[str]:
    """Couple id shared by both partners: the two user ids sorted and joined."""
    partner_id = (partner_id or "").strip()
    if not user_id or not partner_id:
        return None
    return "_".join(sorted([user_id, partner_id]))


class CoupleSession:
    """One user's live view of a couple's daily content stream.

    ``initialize_for_couple`` and ``close`` are the only lifecycle entry
    points. Every input change recomputes the routing state.
    """

    def __init__(self,
                 kind: ContentKind,
                 identity_provider,
                 store,
                 functions_client,
                 preferences,
                 notification_sink=None,
                 subscription_service=None,
                 analytics=None,
                 cache=None,
                 timezone_name: str = DEFAULT_TIMEZONE,
                 free_day_limit: int = FREE_DAY_LIMIT,
                 first_snapshot_timeout: float = FIRST_SNAPSHOT_TIMEOUT_SECONDS,
                 clock: Optional[Callable[[], datetime]] = None):
        self.kind = kind
        self.identity_provider = identity_provider
        self.store = store
        self.preferences = preferences
        self.subscription_service = subscription_service
        self.analytics = analytics
        self.cache = cache or get_content_cache(kind)
        self.timezone_name = timezone_name
        self.free_day_limit = free_day_limit
        self.first_snapshot_timeout = first_snapshot_timeout
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.listeners = RealtimeSyncListeners(store, kind, timezone_name, clock=self.clock)
        self.generator = ContentGenerator(store, functions_client, self.listeners, identity_provider,
                                          timezone_name, clock=self.clock)
        self.submitter = ResponseSubmitter(functions_client, self.listeners, identity_provider)
        self.dispatcher = NotificationDispatcher(notification_sink or LoggingNotificationSink())
        self.listeners.add_observer(self._on_snapshot)

        self.partner_id: Optional[str] = None
        self.is_subscribed = False
        self.error_message: Optional[str] = None
        self.cached_content: Optional[DailyContent] = None
        self._content_seen = asyncio.Event()
        self._generation_task: Optional[asyncio.Task] = None
        self._content_day: Optional[str] = None
        self._background: Set[asyncio.Task] = set()
        self._route_observers: List[RouteObserver] = []
        self._route: RoutingState = self._compute_route()

    # Derived state

    @property
    def couple_id(self) -> Optional[str]:
        return self.listeners.couple_id

    @property
    def route(self) -> RoutingState:
        return self._route

    @property
    def has_connected_partner(self) -> bool:
        return bool((self.partner_id or "").strip())

    @property
    def displayed_content(self) -> Optional[DailyContent]:
        """Live content once the listener has answered, the cached copy before that.

        Content scheduled for another day is never displayed, even before the
        listeners re-select after local midnight.
        """
        snapshot = self.listeners.snapshot
        content = snapshot.current_content if snapshot.content_loaded else self.cached_content
        if content is not None and content.scheduled_date != today_string(self.timezone_name, self.clock()):
            return None
        return content

    def has_seen_intro(self) -> bool:
        identity = self.identity_provider.current_identity()
        if identity is None:
            return False
        return self.preferences.get_bool(self.kind.intro_seen_key(identity.user_id))

    def current_day(self) -> int:
        settings = self.listeners.snapshot.settings
        if settings is not None:
            return expected_day(settings, self.clock())
        content = self.displayed_content
        return content.day if content is not None and content.day > 0 else 1

    def add_route_observer(self, observer: RouteObserver) -> None:
        self._route_observers.append(observer)

    def state(self) -> SessionState:
        snapshot = self.listeners.snapshot
        settings = snapshot.settings
        return SessionState(
            kind=self.kind,
            couple_id=self.couple_id,
            route=self._route,
            expected_day=expected_day(settings, self.clock()) if settings else None,
            current_content=self.displayed_content,
            responses=list(snapshot.responses),
        )

    # Lifecycle

    async def initialize_for_couple(self, partner_id: Optional[str]) -> None:
        """Attach to the couple formed with ``partner_id`` and make sure today's content exists.

        Re-initializing for the couple already attached keeps the listeners and
        only makes sure the current day's content exists.

        Raises:
            SessionInitializationError: If no identity can be resolved
        """
        identity = self.identity_provider.current_identity()
        if identity is None:
            self._teardown()
            self.error_message = "No user available"
            self._recompute()
            raise SessionInitializationError("No authenticated or guest user available")

        self.partner_id = partner_id
        couple_id = build_couple_id(identity.user_id, partner_id)
        if couple_id is None:
            logger.info(f"No partner connected for user {identity.user_id}, {self.kind.value} sync idle")
            self._teardown()
            self.error_message = None
            self._recompute()
            return

        if couple_id == self.listeners.couple_id and self.listeners.is_attached:
            logger.debug(f"Session already attached to couple: {couple_id}")
            self.listeners.check_streams()
            self.listeners.refresh_day()
            if self.error_message is None:
                self._schedule_generation(couple_id)
            return

        self._teardown()
        self.error_message = None
        self.cached_content = self.cache.get(couple_id, today_string(self.timezone_name, self.clock()))
        self.listeners.attach(couple_id)
        if self.subscription_service is not None:
            self.is_subscribed = await self.subscription_service.has_couple_access(identity.user_id, partner_id)
        self._recompute()
        self._schedule_generation(couple_id, wait_for_listener=True)

    async def regenerate(self) -> None:
        """Retry after an error. Re-attaches the listeners when they failed."""
        couple_id = self.couple_id
        if couple_id is None:
            return
        logger.info(f"Retrying {self.kind.value} sync for couple: {couple_id}")
        self.error_message = None
        streams_alive = self.listeners.check_streams()
        if self.listeners.snapshot.sync_error or not streams_alive:
            self.cached_content = None
            self._content_day = None
            self._content_seen.clear()
            self.listeners.attach(couple_id)
        self.generator.forget(couple_id)
        self._recompute()
        self._schedule_generation(couple_id, wait_for_listener=True, replace=True)
        await self.settle()

    async def settle(self) -> None:
        """Wait for the pending generation step and the listener queue."""
        task = self._generation_task
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.listeners.wait_idle()

    def close(self) -> None:
        """Tear the session down; late results are discarded."""
        self._teardown()
        self.partner_id = None
        self._recompute()

    def _teardown(self) -> None:
        if self._generation_task is not None:
            self._generation_task.cancel()
            self._generation_task = None
        self.generator.cancel()
        self.listeners.detach()
        self.dispatcher.reset()
        self.cached_content = None
        self._content_day = None
        self._content_seen.clear()

    # Actions

    def mark_intro_seen(self) -> None:
        identity = self.identity_provider.current_identity()
        if identity is None:
            return
        self.preferences.set_bool(self.kind.intro_seen_key(identity.user_id), True)
        self._recompute()

    def set_subscribed(self, is_subscribed: bool) -> None:
        self.is_subscribed = is_subscribed
        self._recompute()

    async def submit_response(self, text: str) -> SubmissionResult:
        return await self.submitter.submit(text)

    async def set_completion(self, content_id: str, completed: bool) -> None:
        """Toggle completion of the content currently shown.

        Raises:
            NoActiveContentError: If ``content_id`` is not the current content
        """
        current = self.displayed_content
        if current is None or current.id != content_id:
            raise NoActiveContentError()
        await asyncio.to_thread(self.store.set_completion, content_id, completed)

    # Internals

    def _schedule_generation(self, couple_id: str, wait_for_listener: bool = False, replace: bool = False) -> None:
        """Start an ensure step unless one is pending; ``replace`` cancels the pending one."""
        task = self._generation_task
        if task is not None and not task.done():
            if not replace:
                return
            task.cancel()
        self._generation_task = asyncio.ensure_future(self._ensure_content(couple_id, wait_for_listener))

    async def _ensure_content(self, couple_id: str, wait_for_listener: bool = False) -> None:
        if wait_for_listener:
            try:
                await asyncio.wait_for(self._content_seen.wait(), self.first_snapshot_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"No {self.kind.value} snapshot after {self.first_snapshot_timeout}s, generating anyway")
        else:
            await self.listeners.wait_idle()

        try:
            await self.generator.ensure_today_content(couple_id)
        except Love2LoveError as e:
            self._fail(couple_id, str(e))
        except Exception as e:
            logger.error(f"Unexpected {self.kind.value} generation failure: {e}")
            self._fail(couple_id, str(e))

    def _fail(self, couple_id: str, message: str) -> None:
        if self.couple_id != couple_id:
            logger.warning(f"Ignoring failure for detached couple {couple_id}: {message}")
            return
        self.error_message = message
        self._recompute()
        if self.analytics is not None:
            identity = self.identity_provider.current_identity()
            self._spawn(self.analytics.track_generation_failure(
                self.kind.value, message, identity.user_id if identity else None
            ))

    def _on_snapshot(self, snapshot: SyncSnapshot) -> None:
        if snapshot.content_loaded:
            self._content_seen.set()
        current = snapshot.current_content
        previous_day = self._content_day
        self._content_day = snapshot.today
        if previous_day is not None and snapshot.today not in (None, previous_day) and current is None:
            logger.info(f"{self.kind.value} day rolled over to {snapshot.today} for couple: {snapshot.couple_id}")
            if self.error_message is None:
                self._schedule_generation(snapshot.couple_id)
        if current is not None:
            self.cache.put(current)
            self.dispatcher.on_content(current, f"New daily {self.kind.value}")
        if self.kind.supports_responses and snapshot.responses:
            identity = self.identity_provider.current_identity()
            self.dispatcher.on_responses(snapshot.responses, identity.user_id if identity else None)
        self._recompute()

    def _is_loading(self) -> bool:
        if not self.listeners.is_attached:
            return False
        return self.displayed_content is None

    def _compute_route(self) -> RoutingState:
        sync_error = self.listeners.snapshot.sync_error
        error_message = self.error_message or sync_error
        return route(
            has_connected_partner=self.has_connected_partner,
            has_seen_intro=self.has_seen_intro(),
            is_subscribed=self.is_subscribed,
            current_day=self.current_day(),
            free_day_limit=self.free_day_limit,
            has_error=error_message is not None,
            error_message=error_message,
            is_loading=self._is_loading() and error_message is None,
        )

    def _recompute(self) -> None:
        previous = self._route
        self._route = self._compute_route()
        if self._route == previous:
            return

        logger.debug(f"{self.kind.value} route: {previous.kind} -> {self._route.kind}")
        if isinstance(self._route, PaywallRoute) and self.analytics is not None:
            identity = self.identity_provider.current_identity()
            self._spawn(self.analytics.track_paywall_shown(
                self.kind.value, self._route.day, identity.user_id if identity else None
            ))
        for observer in list(self._route_observers):
            try:
                observer(self._route)
            except Exception as e:
                logger.error(f"Route observer failed: {e}")

    def _spawn(self, coroutine) -> None:
        task = asyncio.ensure_future(coroutine)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
