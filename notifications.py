"""Decides when partner activity should surface as a notification."""

from enum import Enum
from typing import List, Optional

from firebase_admin import messaging
from pydantic import BaseModel

from config import NOTIFICATION_PREVIEW_LENGTH, get_logger
from models import DailyContent, DailyResponse

logger = get_logger(__name__)


class NotificationKind(str, Enum):
    NEW_CONTENT = "new_content"
    NEW_MESSAGE = "new_message"


class NotificationRequest(BaseModel):
    kind: NotificationKind
    title: str
    body: str
    correlation_id: str


def preview(text: str, limit: int = NOTIFICATION_PREVIEW_LENGTH) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[:limit - 1].rstrip() + "…"


class NotificationDispatcher:
    """Emits at most one notification per new partner message or new content.

    The last seen ids live in process memory only, so a restart may surface
    one already-seen message again.
    """

    def __init__(self, sink, preview_length: int = NOTIFICATION_PREVIEW_LENGTH):
        self.sink = sink
        self.preview_length = preview_length
        self.last_seen_response_id: Optional[str] = None
        self.last_content_id: Optional[str] = None

    def on_responses(self, responses: List[DailyResponse], acting_user_id: Optional[str]) -> Optional[NotificationRequest]:
        """Notify about the partner's latest response if it was not notified yet.

        ``responses`` must be ordered ascending by server timestamp.
        """
        latest = next((r for r in reversed(responses) if r.user_id != acting_user_id), None)
        if latest is None or latest.id == self.last_seen_response_id:
            return None

        self.last_seen_response_id = latest.id
        request = NotificationRequest(
            kind=NotificationKind.NEW_MESSAGE,
            title=latest.user_name,
            body=preview(latest.text, self.preview_length),
            correlation_id=f"new_message_{latest.content_id}_{latest.id}",
        )
        self._emit(request)
        return request

    def on_content(self, content: Optional[DailyContent], title: str = "New daily content") -> Optional[NotificationRequest]:
        """Notify when the current content rolls over to a new document.

        The first content observed in a session never notifies.
        """
        if content is None:
            return None
        previous = self.last_content_id
        self.last_content_id = content.id
        if previous is None or previous == content.id:
            return None

        request = NotificationRequest(
            kind=NotificationKind.NEW_CONTENT,
            title=title,
            body=content.content_key,
            correlation_id=f"new_content_{content.id}",
        )
        self._emit(request)
        return request

    def reset(self) -> None:
        self.last_seen_response_id = None
        self.last_content_id = None

    def _emit(self, request: NotificationRequest) -> None:
        try:
            self.sink.notify(request.kind, request.title, request.body, request.correlation_id)
        except Exception as e:
            logger.error(f"Failed to dispatch {request.kind.value} notification: {e}")


class LoggingNotificationSink:
    """Sink that only logs notification requests."""

    def notify(self, kind: NotificationKind, title: str, body: str, correlation_id: str) -> None:
        logger.info(f"Notification [{kind.value}] {title}: {body} ({correlation_id})")


class FirebaseMessagingSink:
    """Sends notification requests to one device through Firebase Cloud Messaging."""

    def __init__(self, token: str):
        self.token = token

    def notify(self, kind: NotificationKind, title: str, body: str, correlation_id: str) -> None:
        message = messaging.Message(
            token=self.token,
            notification=messaging.Notification(title=title, body=body),
            data={"kind": kind.value, "correlationId": correlation_id},
        )
        try:
            message_id = messaging.send(message)
            logger.debug(f"FCM notification sent: {message_id}")
        except Exception as e:
            logger.error(f"Failed to send FCM notification {correlation_id}: {e}")
