"""GA4 Measurement Protocol events for the daily content engine."""

import os
from typing import Any, Dict, Optional

import httpx

from config import get_logger

logger = get_logger(__name__)

MEASUREMENT_PROTOCOL_URL = "https://www.google-analytics.com/mp/collect"
SERVER_CLIENT_ID = "backend-server"


class GoogleAnalyticsService:
    """Sends server-side events (paywall shown, generation failures) to GA4.

    Tracking is a logged no-op unless both GA_MEASUREMENT_ID and
    GA_API_SECRET are set. Failures never propagate to the caller.
    """

    def __init__(self,
                 measurement_id: Optional[str] = None,
                 api_secret: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.measurement_id = measurement_id or os.getenv('GA_MEASUREMENT_ID')  # G-XXXXXXXXXX
        self.api_secret = api_secret or os.getenv('GA_API_SECRET')
        self.transport = transport

        if not self.is_configured:
            logger.warning("Analytics disabled: GA_MEASUREMENT_ID or GA_API_SECRET is missing")

    @property
    def is_configured(self) -> bool:
        return bool(self.measurement_id and self.api_secret)

    async def track_event(self,
                          event_name: str,
                          client_id: str = SERVER_CLIENT_ID,
                          parameters: Optional[Dict[str, Any]] = None) -> bool:
        """Send one event.

        Returns:
            True when GA accepted the event (HTTP 204), False otherwise
        """
        if not self.is_configured:
            logger.debug(f"Analytics disabled, dropping event: {event_name}")
            return False

        body = {"client_id": client_id, "events": [{"name": event_name, "params": parameters or {}}]}
        query = {"measurement_id": self.measurement_id, "api_secret": self.api_secret}
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=10.0) as client:
                response = await client.post(MEASUREMENT_PROTOCOL_URL, params=query, json=body)
        except httpx.HTTPError as e:
            logger.error(f"Could not send analytics event {event_name}: {e}")
            return False

        if response.status_code != 204:
            logger.warning(f"Analytics event {event_name} rejected with HTTP {response.status_code}")
            return False
        logger.debug(f"Analytics event sent: {event_name}")
        return True

    async def track_paywall_shown(self, kind: str, day: int, user_id: Optional[str] = None) -> bool:
        """Routing moved a non-subscriber to the paywall on ``day``."""
        return await self.track_event(
            "paywall_shown",
            user_id or SERVER_CLIENT_ID,
            {"kind": kind, "day": day, "source": f"daily_{kind}_freemium"}
        )

    async def track_generation_failure(self, kind: str, message: str, user_id: Optional[str] = None) -> bool:
        return await self.track_event(
            "daily_content_generation_failed",
            user_id or SERVER_CLIENT_ID,
            {"kind": kind, "message": message[:100]}
        )


_analytics_service = None


def get_analytics_service() -> GoogleAnalyticsService:
    """Process-wide analytics client."""
    global _analytics_service
    if _analytics_service is None:
        _analytics_service = GoogleAnalyticsService()
    return _analytics_service
