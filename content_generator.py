"""Ensures a couple has today's content document."""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from config import get_logger
from day_calculator import expected_day, today_string
from errors import CallableError, GenerationError, NoUserError
from models import ContentKind, CoupleSettings, GenerateContentRequest, GenerationResult
from sync_listeners import RealtimeSyncListeners

logger = get_logger(__name__)


class ContentGenerator:
    """Asks the backend to generate today's content when the listeners have none.

    The generation callable is the only writer of content documents and is
    idempotent per (couple, day). This class only suppresses its own redundant
    calls: it skips the call once today's document is observed and shares a
    single in-flight call between concurrent callers.
    """

    def __init__(self,
                 store,
                 functions_client,
                 listeners: RealtimeSyncListeners,
                 identity_provider,
                 timezone_name: Optional[str] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.functions_client = functions_client
        self.listeners = listeners
        self.identity_provider = identity_provider
        self.timezone_name = timezone_name
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._generated: Dict[str, str] = {}  # couple id -> date of the last acknowledged call

    @property
    def kind(self) -> ContentKind:
        return self.listeners.kind

    async def load_or_create_settings(self, couple_id: str) -> CoupleSettings:
        """Return the couple's settings, creating the defaults if absent."""
        settings = self.listeners.snapshot.settings
        if settings is not None and settings.couple_id == couple_id:
            return settings

        settings = await asyncio.to_thread(self.store.get_settings, couple_id)
        if settings is None:
            settings = await asyncio.to_thread(
                self.store.create_settings, couple_id, self.timezone_name, self.clock()
            )
        return settings

    def has_today_content(self, couple_id: str) -> bool:
        today = today_string(self.timezone_name, self.clock())
        if self._generated.get(couple_id) == today:
            return True
        current = self.listeners.snapshot.current_content
        return current is not None and current.couple_id == couple_id and current.scheduled_date == today

    def forget(self, couple_id: str) -> None:
        """Allow the next ensure call to reach the backend again."""
        self._generated.pop(couple_id, None)

    def cancel(self) -> None:
        """Cancel every in-flight generation call."""
        for task in list(self._in_flight.values()):
            task.cancel()
        self._in_flight.clear()

    async def ensure_today_content(self, couple_id: str) -> Optional[GenerationResult]:
        """Generate today's content unless it already exists.

        Returns:
            The callable's result, or None when no call was made or the
            session moved to another couple while the call was running

        Raises:
            GenerationError: If the callable fails or reports failure
            NoUserError: If no identity is available for the call
        """
        if self.has_today_content(couple_id):
            logger.debug(f"Today's {self.kind.value} already present for couple: {couple_id}")
            return None

        task = self._in_flight.get(couple_id)
        if task is None:
            task = asyncio.ensure_future(self._generate(couple_id))
            self._in_flight[couple_id] = task
            task.add_done_callback(lambda _: self._in_flight.pop(couple_id, None))
        else:
            logger.debug(f"Joining in-flight {self.kind.value} generation for couple: {couple_id}")

        result = await asyncio.shield(task)
        if self.listeners.couple_id != couple_id:
            logger.warning(f"Discarding {self.kind.value} generation result for detached couple: {couple_id}")
            return None
        return result

    async def _generate(self, couple_id: str) -> Optional[GenerationResult]:
        identity = self.identity_provider.current_identity()
        if identity is None:
            raise NoUserError()

        settings = await self.load_or_create_settings(couple_id)
        # Another caller may have observed today's document while settings loaded
        if self.has_today_content(couple_id):
            return None

        day = expected_day(settings, self.clock())
        request = GenerateContentRequest(
            couple_id=couple_id,
            user_id=identity.user_id,
            day=day,
            timezone=self.timezone_name or settings.timezone,
        )
        logger.info(f"Requesting {self.kind.value} day {day} for couple: {couple_id}")

        try:
            result = await self.functions_client.generate_content(self.kind, request, identity.id_token)
        except GenerationError:
            raise
        except CallableError as e:
            raise GenerationError(e.function_name, e.message, e.status) from e
        except Exception as e:
            raise GenerationError(self.kind.generate_function, str(e)) from e

        if not result.success:
            raise GenerationError(self.kind.generate_function, result.message or "generation failed")

        # The content listener publishes the new document; the reply is not applied locally
        self._generated[couple_id] = today_string(self.timezone_name, self.clock())
        logger.info(f"{self.kind.value} generation acknowledged for couple {couple_id}: {result.message}")
        return result
