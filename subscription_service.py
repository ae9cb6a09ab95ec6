"""Service for querying user subscription information."""

from typing import Optional

from auth import get_firestore_client
from config import get_logger
from models import UserSubscription

logger = get_logger(__name__)


class SubscriptionService:
    """Service for querying user subscription information."""

    def __init__(self, db=None):
        self.db = db

    def _client(self):
        return self.db or get_firestore_client()

    async def get_user_subscription(self, user_id: str) -> Optional[UserSubscription]:
        """Get the subscription flags stored on the user's document."""
        try:
            db = self._client()
            if not db:
                logger.error("Firestore client not available")
                return None

            doc = db.collection('users').document(user_id).get()
            if not doc.exists:
                logger.debug(f"No user document found for user: {user_id}")
                return None

            data = doc.to_dict() or {}
            return UserSubscription(
                user_id=user_id,
                is_subscribed=bool(data.get('isSubscribed', False)),
                inherited_from=data.get('subscriptionInheritedFrom'),
            )

        except Exception as e:
            logger.error(f"Error getting user subscription: {e}")
            return None

    async def has_premium_access(self, user_id: str) -> bool:
        """Check if user has an active subscription, own or inherited from the partner."""
        subscription = await self.get_user_subscription(user_id)
        return bool(subscription and subscription.is_subscribed)

    async def has_couple_access(self, user_id: str, partner_id: Optional[str] = None) -> bool:
        """A subscription unlocks the daily content for both partners."""
        if await self.has_premium_access(user_id):
            return True
        if partner_id and await self.has_premium_access(partner_id):
            logger.debug(f"Premium access for {user_id} shared by partner {partner_id}")
            return True
        return False


# Global instance
_subscription_service = None


def get_subscription_service() -> SubscriptionService:
    """Get or create the global subscription service instance."""
    global _subscription_service
    if _subscription_service is None:
        _subscription_service = SubscriptionService()
    return _subscription_service
