"""Tests for subscription lookups."""

import asyncio
import unittest
from unittest.mock import MagicMock, patch

from subscription_service import SubscriptionService, get_subscription_service


def _user_doc(data, exists=True):
    doc = MagicMock()
    doc.exists = exists
    doc.to_dict.return_value = data
    return doc


class TestSubscriptionService(unittest.TestCase):

    def setUp(self):
        self.db = MagicMock()
        self.users = {}
        self.db.collection.return_value.document.side_effect = self._document
        self.service = SubscriptionService(self.db)

    def _document(self, user_id):
        ref = MagicMock()
        data = self.users.get(user_id)
        ref.get.return_value = _user_doc(data, exists=data is not None)
        return ref

    def test_subscribed_user(self):
        self.users["alice"] = {"isSubscribed": True}
        subscription = asyncio.run(self.service.get_user_subscription("alice"))
        self.assertTrue(subscription.is_subscribed)
        self.db.collection.assert_called_with("users")
        self.assertTrue(asyncio.run(self.service.has_premium_access("alice")))

    def test_inherited_subscription_is_reported(self):
        self.users["bob"] = {"isSubscribed": True, "subscriptionInheritedFrom": "alice"}
        subscription = asyncio.run(self.service.get_user_subscription("bob"))
        self.assertEqual(subscription.inherited_from, "alice")

    def test_missing_user_document(self):
        self.assertIsNone(asyncio.run(self.service.get_user_subscription("ghost")))
        self.assertFalse(asyncio.run(self.service.has_premium_access("ghost")))

    def test_partner_subscription_unlocks_couple(self):
        self.users["alice"] = {"isSubscribed": False}
        self.users["bob"] = {"isSubscribed": True}
        self.assertTrue(asyncio.run(self.service.has_couple_access("alice", "bob")))
        self.assertFalse(asyncio.run(self.service.has_couple_access("alice", None)))

    def test_firestore_failure_means_not_subscribed(self):
        self.db.collection.side_effect = RuntimeError("unavailable")
        self.assertIsNone(asyncio.run(self.service.get_user_subscription("alice")))
        self.assertFalse(asyncio.run(self.service.has_couple_access("alice", "bob")))

    def test_no_database(self):
        with patch("subscription_service.get_firestore_client", return_value=None):
            self.assertIsNone(asyncio.run(SubscriptionService().get_user_subscription("alice")))


def test_global_instance():
    assert get_subscription_service() is get_subscription_service()
