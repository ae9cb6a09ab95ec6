from typing import Dict, Optional

from config import get_logger
from models import ContentKind, DailyContent

logger = get_logger(__name__)


# Today's content per couple, so a warm relaunch can render before the listeners answer
class ContentCache:
    def __init__(self):
        self.cache: Dict[str, DailyContent] = {}

    def get(self, couple_id: str, today: str) -> Optional[DailyContent]:
        """Return the cached content if it is today's content for this couple."""
        content = self.cache.get(couple_id)
        if content is None:
            logger.debug(f"Content cache miss for couple: {couple_id}")
            return None

        # Stale day or foreign couple: never display it
        if content.scheduled_date != today or content.couple_id != couple_id:
            logger.debug(
                f"Evicting stale cached content {content.id} "
                f"(scheduled {content.scheduled_date}, today {today})"
            )
            self.invalidate(couple_id)
            return None

        logger.debug(f"Content retrieved from cache for couple: {couple_id}")
        return content

    def put(self, content: DailyContent) -> None:
        self.cache[content.couple_id] = content
        logger.debug(f"Content {content.id} cached for couple: {content.couple_id}")

    def invalidate(self, couple_id: str) -> None:
        self.cache.pop(couple_id, None)

    def clear(self) -> None:
        self.cache.clear()
        logger.debug("Content cache cleared")


_caches: Dict[ContentKind, ContentCache] = {}


def get_content_cache(kind: ContentKind) -> ContentCache:
    """Get or create the process-wide cache for a content kind."""
    if kind not in _caches:
        _caches[kind] = ContentCache()
    return _caches[kind]
