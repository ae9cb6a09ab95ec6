"""Firestore access for couple settings, daily content and responses."""

from datetime import datetime
from typing import Callable, List, Optional

from firebase_admin import firestore
from google.cloud.firestore import FieldFilter

from config import DEFAULT_TIMEZONE, get_logger
from day_calculator import start_of_day_utc
from models import ContentKind, CoupleSettings, DailyContent, DailyResponse

logger = get_logger(__name__)

ErrorCallback = Callable[[Exception], None]


class WatchHandle:
    """A Firestore ``Watch`` seen as a subscription.

    Firestore has no error callback for snapshot listeners: when the stream
    terminates for good, the watch closes itself and goes quiet. Its
    ``is_active`` flag is the only trace of that.
    """

    def __init__(self, watch):
        self.watch = watch
        self._unsubscribed = False

    @property
    def is_active(self) -> bool:
        return not self._unsubscribed and bool(self.watch.is_active)

    def unsubscribe(self) -> None:
        self._unsubscribed = True
        self.watch.unsubscribe()


class FirestoreContentStore:
    """Point reads, live subscriptions and the few client writes for one content kind.

    Every ``watch_*`` method returns a ``WatchHandle``; callers close it with
    ``unsubscribe()`` and poll ``is_active`` to notice a stream Firestore
    closed on its own. Decoded values are handed to ``on_next`` from
    Firestore's watch thread, decode failures to ``on_error``.
    """

    def __init__(self, db, kind: ContentKind):
        self.db = db
        self.kind = kind

    def _settings_ref(self, couple_id: str):
        return self.db.collection(self.kind.settings_collection).document(couple_id)

    def _content_ref(self, content_id: str):
        return self.db.collection(self.kind.content_collection).document(content_id)

    def get_settings(self, couple_id: str) -> Optional[CoupleSettings]:
        snapshot = self._settings_ref(couple_id).get()
        if not snapshot.exists:
            logger.debug(f"No {self.kind.value} settings for couple: {couple_id}")
            return None
        return CoupleSettings.from_firestore(couple_id, snapshot.to_dict() or {})

    def create_settings(
        self,
        couple_id: str,
        timezone_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CoupleSettings:
        """Write default settings for a couple.

        Both partners' devices may race here; the merge write is last-writer-wins
        and both writers compute the same defaults.
        """
        settings = CoupleSettings(
            couple_id=couple_id,
            start_date=start_of_day_utc(now),
            timezone=timezone_name or DEFAULT_TIMEZONE,
            current_day=1,
            is_active=True,
        )
        data = settings.to_firestore_dict()
        data["createdAt"] = firestore.SERVER_TIMESTAMP
        data["updatedAt"] = firestore.SERVER_TIMESTAMP
        self._settings_ref(couple_id).set(data, merge=True)
        logger.info(f"Created {self.kind.value} settings for couple: {couple_id}")
        return settings

    def watch_settings(
        self,
        couple_id: str,
        on_next: Callable[[Optional[CoupleSettings]], None],
        on_error: ErrorCallback,
    ):
        def decode(snapshots) -> Optional[CoupleSettings]:
            for snapshot in snapshots:
                if snapshot.exists:
                    return CoupleSettings.from_firestore(couple_id, snapshot.to_dict() or {})
            return None

        return WatchHandle(self._settings_ref(couple_id).on_snapshot(_guarded(decode, on_next, on_error)))

    def watch_content(
        self,
        couple_id: str,
        limit: int,
        on_next: Callable[[List[DailyContent]], None],
        on_error: ErrorCallback,
    ):
        query = (
            self.db.collection(self.kind.content_collection)
            .where(filter=FieldFilter("coupleId", "==", couple_id))
            .order_by("scheduledDateTime", direction="DESCENDING")
            .limit(limit)
        )

        def decode(snapshots) -> List[DailyContent]:
            contents = []
            for snapshot in snapshots:
                content = DailyContent.from_firestore(snapshot.id, snapshot.to_dict() or {}, self.kind)
                if content is None:
                    logger.warning(f"Skipping undecodable {self.kind.value} document: {snapshot.id}")
                    continue
                contents.append(content)
            return contents

        return WatchHandle(query.on_snapshot(_guarded(decode, on_next, on_error)))

    def watch_responses(
        self,
        content_id: str,
        on_next: Callable[[List[DailyResponse]], None],
        on_error: ErrorCallback,
    ):
        query = self._content_ref(content_id).collection("responses").order_by("respondedAt")

        def decode(snapshots) -> List[DailyResponse]:
            responses = []
            for snapshot in snapshots:
                response = DailyResponse.from_firestore(snapshot.id, content_id, snapshot.to_dict() or {})
                if response is not None:
                    responses.append(response)
            return responses

        return WatchHandle(query.on_snapshot(_guarded(decode, on_next, on_error)))

    def set_completion(self, content_id: str, completed: bool) -> None:
        """Toggle the completion flags of a content document."""
        self._content_ref(content_id).update({
            "isCompleted": completed,
            "completedAt": firestore.SERVER_TIMESTAMP if completed else firestore.DELETE_FIELD,
        })
        logger.debug(f"{self.kind.value} {content_id} completion set to {completed}")


def _guarded(decode, on_next, on_error):
    """Wrap a decoder into a Firestore snapshot callback that never raises."""
    def callback(snapshots, changes, read_time):
        try:
            value = decode(snapshots)
        except Exception as e:
            logger.error(f"Failed to decode snapshot: {e}")
            on_error(e)
            return
        on_next(value)
    return callback
