"""End-to-end tests of a couple session against in-memory collaborators."""

import asyncio
import unittest
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from auth import FallbackIdentityProvider, GuestIdentityProvider, StaticIdentityProvider
from content_cache import ContentCache
from errors import CallableError, NoActiveContentError, SessionInitializationError
from fakes import (
    NOW,
    TODAY,
    TOMORROW,
    YESTERDAY,
    FakeFunctionsClient,
    FakeStore,
    RecordingSink,
    fixed_clock,
    make_content,
    make_identity_provider,
    make_response,
)
from models import ContentKind, CoupleSettings, ErrorRoute, IntroRoute, LoadingRoute, MainRoute, PaywallRoute
from notifications import NotificationKind
from preferences import InMemoryPreferences
from session import CoupleSession, build_couple_id

COUPLE = "alice_bob"


def _session(store=None, functions=None, kind=ContentKind.QUESTION, intro_seen=True,
             identity_provider=None, **kwargs):
    store = store or FakeStore(kind)
    functions = functions or FakeFunctionsClient(store)
    preferences = InMemoryPreferences({kind.intro_seen_key("alice"): intro_seen})
    session = CoupleSession(
        kind,
        identity_provider or make_identity_provider(),
        store,
        functions,
        preferences,
        cache=kwargs.pop("cache", ContentCache()),
        clock=kwargs.pop("clock", fixed_clock),
        first_snapshot_timeout=1.0,
        **kwargs,
    )
    return session, store, functions


def test_build_couple_id():
    assert build_couple_id("bob", "alice") == "alice_bob"
    assert build_couple_id("alice", "bob") == "alice_bob"
    assert build_couple_id("alice", "  ") is None
    assert build_couple_id("alice", None) is None
    assert build_couple_id(None, "bob") is None


class TestSessionLifecycle(unittest.TestCase):

    def test_fresh_couple_generates_day_one(self):
        session, store, functions = _session()

        async def scenario():
            await session.initialize_for_couple("bob")
            await session.settle()
            return session.state()

        state = asyncio.run(scenario())
        self.assertEqual(len(functions.generate_calls), 1)
        self.assertEqual(state.couple_id, COUPLE)
        self.assertEqual(state.expected_day, 1)
        self.assertEqual(state.current_content.id, f"{COUPLE}_{TODAY}")
        self.assertEqual(state.route, MainRoute())

    def test_loading_until_content_observed(self):
        session, store, functions = _session()
        routes = []
        session.add_route_observer(routes.append)

        async def scenario():
            await session.initialize_for_couple("bob")
            loading = session.route
            await session.settle()
            return loading

        self.assertEqual(asyncio.run(scenario()), LoadingRoute())
        self.assertEqual(routes[0], LoadingRoute())
        self.assertEqual(routes[-1], MainRoute())

    def test_reinitialize_same_couple_keeps_listeners(self):
        session, store, functions = _session()

        async def scenario():
            await session.initialize_for_couple("bob")
            await session.settle()
            await session.initialize_for_couple("bob")
            await session.settle()

        asyncio.run(scenario())
        self.assertEqual(len(functions.generate_calls), 1)
        self.assertEqual(len(store.content_watches), 1)

    def test_existing_content_needs_no_call(self):
        store = FakeStore()
        store.put_settings(CoupleSettings(couple_id=COUPLE, start_date=NOW - timedelta(days=1)))
        store.add_content(make_content(COUPLE, 2, TODAY))
        session, store, functions = _session(store)

        async def scenario():
            await session.initialize_for_couple("bob")
            await session.settle()

        asyncio.run(scenario())
        self.assertEqual(functions.generate_calls, [])
        self.assertEqual(session.current_day(), 2)

    def test_cached_content_shown_before_listeners_answer(self):
        cache = ContentCache()
        cache.put(make_content(COUPLE, 2, TODAY))
        session, store, functions = _session(cache=cache)

        async def scenario():
            await session.initialize_for_couple("bob")
            # Listener events are queued but not applied yet
            self.assertFalse(session.listeners.snapshot.content_loaded)
            route = session.route
            content = session.displayed_content
            await session.settle()
            return route, content

        route, content = asyncio.run(scenario())
        self.assertEqual(route, MainRoute())
        self.assertEqual(content.day, 2)

    def test_stale_cache_is_ignored(self):
        cache = ContentCache()
        cache.put(make_content(COUPLE, 1, YESTERDAY))
        session, store, functions = _session(cache=cache)

        async def scenario():
            await session.initialize_for_couple("bob")
            route = session.route
            await session.settle()
            return route

        self.assertEqual(asyncio.run(scenario()), LoadingRoute())
        # Today's document replaced the stale entry
        self.assertEqual(cache.get(COUPLE, TODAY).scheduled_date, TODAY)

    def test_close_detaches_everything(self):
        session, store, functions = _session()

        async def scenario():
            await session.initialize_for_couple("bob")
            await session.settle()
            session.close()

        asyncio.run(scenario())
        self.assertEqual(store.active_watches, 0)
        self.assertIsNone(session.couple_id)
        self.assertEqual(session.route, MainRoute())

    def test_switching_partner_reattaches(self):
        session, store, functions = _session()

        async def scenario():
            await session.initialize_for_couple("bob")
            await session.settle()
            await session.initialize_for_couple("carol")
            await session.settle()

        asyncio.run(scenario())
        self.assertEqual(session.couple_id, "alice_carol")
        self.assertEqual(len(functions.generate_calls), 2)
        self.assertEqual(store.active_watches, 3)
        self.assertEqual(session.displayed_content.couple_id, "alice_carol")

    def test_no_partner_shows_intro_with_connect(self):
        session, store, functions = _session(intro_seen=False)

        async def scenario():
            await session.initialize_for_couple(None)

        asyncio.run(scenario())
        self.assertEqual(session.route, IntroRoute(show_connect=True))
        self.assertEqual(store.active_watches, 0)
        self.assertEqual(functions.generate_calls, [])

    def test_no_identity_aborts_before_listening(self):
        session, store, functions = _session(identity_provider=StaticIdentityProvider(None))

        async def scenario():
            await session.initialize_for_couple("bob")

        with self.assertRaises(SessionInitializationError):
            asyncio.run(scenario())
        self.assertEqual(store.active_watches, 0)
        self.assertIsInstance(session.route, ErrorRoute)


class TestSessionRouting(unittest.TestCase):

    def test_intro_until_dismissed(self):
        session, store, functions = _session(intro_seen=False)

        async def scenario():
            await session.initialize_for_couple("bob")
            await session.settle()
            before = session.route
            session.mark_intro_seen()
            return before

        self.assertEqual(asyncio.run(scenario()), IntroRoute(show_connect=False))
        self.assertEqual(session.route, MainRoute())
        self.assertTrue(session.preferences.get_bool("intro_seen_alice"))

    def test_paywall_after_free_days_and_tracked(self):
        store = FakeStore()
        store.put_settings(CoupleSettings(couple_id=COUPLE, start_date=NOW - timedelta(days=3)))
        analytics = AsyncMock()
        session, store, functions = _session(store, analytics=analytics)

        async def scenario():
            await session.initialize_for_couple("bob")
            await session.settle()

        asyncio.run(scenario())
        self.assertEqual(session.route, PaywallRoute(day=4))
        analytics.track_paywall_shown.assert_called_with("question", 4, "alice")

    def test_subscription_unlocks_paywall(self):
        store = FakeStore()
        store.put_settings(CoupleSettings(couple_id=COUPLE, start_date=NOW - timedelta(days=10)))
        subscriptions = AsyncMock()
        subscriptions.has_couple_access.return_value = True
        session, store, functions = _session(store, subscription_service=subscriptions)

        async def scenario():
            await session.initialize_for_couple("bob")
            await session.settle()

        asyncio.run(scenario())
        subscriptions.has_couple_access.assert_called_with("alice", "bob")
        self.assertEqual(session.route, MainRoute())
        session.set_subscribed(False)
        self.assertEqual(session.route, PaywallRoute(day=11))

    def test_generation_failure_routes_to_error_then_retry(self):
        store = FakeStore()
        functions = FakeFunctionsClient(store, fail_with=CallableError("generateDailyQuestion", "internal"))
        analytics = AsyncMock()
        session, store, functions = _session(store, functions, analytics=analytics)

        async def scenario():
            await session.initialize_for_couple("bob")
            await session.settle()
            failed = session.route
            functions.fail_with = None
            await session.regenerate()
            return failed

        failed = asyncio.run(scenario())
        self.assertEqual(failed, ErrorRoute(message="generateDailyQuestion: internal"))
        analytics.track_generation_failure.assert_called_with("question", "generateDailyQuestion: internal", "alice")
        self.assertEqual(session.route, MainRoute())
        self.assertEqual(len(functions.generate_calls), 2)

    def test_listener_error_needs_reattach(self):
        store = FakeStore()
        store.add_content(make_content(COUPLE, 1, TODAY))
        session, store, functions = _session(store)

        async def scenario():
            await session.initialize_for_couple("bob")
            await session.settle()
            store.fail(RuntimeError("Missing or insufficient permissions"))
            await session.listeners.wait_idle()
            failed = session.route
            await session.regenerate()
            return failed

        failed = asyncio.run(scenario())
        self.assertEqual(failed, ErrorRoute(message="Missing or insufficient permissions"))
        self.assertEqual(session.route, MainRoute())
        self.assertEqual(store.active_watches, 3)
        self.assertEqual(functions.generate_calls, [])


class TestSessionActivity:

    def test_partner_response_notifies(self):
        store = FakeStore()
        content = make_content(COUPLE, 1, TODAY)
        store.add_content(content)
        sink = RecordingSink()
        session, store, functions = _session(store, notification_sink=sink)

        async def scenario():
            await session.initialize_for_couple("bob")
            await session.settle()
            store.add_response(make_response(content.id, "r1", "bob", "Tell me more", NOW))
            await session.listeners.wait_idle()
            await session.submit_response("Sure!")
            await session.listeners.wait_idle()

        asyncio.run(scenario())
        assert sink.notifications == [
            (NotificationKind.NEW_MESSAGE, "Bob", "Tell me more", f"new_message_{content.id}_r1"),
        ]
        assert [r.text for r in session.state().responses] == ["Tell me more", "Sure!"]

    def test_challenge_completion_toggle(self):
        store = FakeStore(ContentKind.CHALLENGE)
        content = make_content(COUPLE, 1, TODAY, ContentKind.CHALLENGE)
        store.add_content(content)
        session, store, functions = _session(store, kind=ContentKind.CHALLENGE)

        async def scenario():
            await session.initialize_for_couple("bob")
            await session.settle()
            await session.set_completion(content.id, True)
            await asyncio.sleep(0.01)
            await session.listeners.wait_idle()
            with pytest.raises(NoActiveContentError):
                await session.set_completion("some-other-day", True)

        asyncio.run(scenario())
        assert store.completion_calls == [(content.id, True)]
        assert session.displayed_content.is_completed

    def test_challenge_intro_flag_is_separate(self):
        session, store, functions = _session(kind=ContentKind.CHALLENGE, intro_seen=False)
        session.preferences.set_bool("intro_seen_alice", True)
        assert not session.has_seen_intro()
        session.mark_intro_seen()
        assert session.preferences.get_bool("challenge_intro_seen_alice")


class TestDayRollover(unittest.TestCase):

    def setUp(self):
        self.clock_now = [NOW]
        self.sink = RecordingSink()
        self.session, self.store, self.functions = _session(
            clock=lambda: self.clock_now[0], notification_sink=self.sink
        )

    def _next_day(self):
        self.clock_now[0] = NOW + timedelta(days=1)
        self.functions.today = TOMORROW

    def test_reopen_next_day_generates_new_content(self):
        session = self.session

        async def scenario():
            await session.initialize_for_couple("bob")
            await session.settle()
            self._next_day()
            await session.initialize_for_couple("bob")
            await session.settle()
            return session.state()

        state = asyncio.run(scenario())
        self.assertEqual(len(self.functions.generate_calls), 2)
        self.assertEqual(self.functions.generate_calls[1][1].day, 2)
        self.assertEqual(state.expected_day, 2)
        self.assertEqual(state.current_content.scheduled_date, TOMORROW)
        self.assertEqual(len(self.store.content_watches), 1)

    def test_live_session_rolls_over_at_midnight(self):
        session = self.session

        async def scenario():
            await session.initialize_for_couple("bob")
            await session.settle()
            self._next_day()
            # Yesterday's document is hidden before the listeners re-select
            self.assertIsNone(session.displayed_content)
            session.listeners.refresh_day()
            await session.listeners.wait_idle()
            await session.settle()

        asyncio.run(scenario())
        self.assertEqual(len(self.functions.generate_calls), 2)
        self.assertEqual(session.displayed_content.scheduled_date, TOMORROW)
        self.assertEqual(session.route, MainRoute())
        self.assertEqual(
            [n[0] for n in self.sink.notifications], [NotificationKind.NEW_CONTENT]
        )

    def test_no_rollover_generation_while_in_error(self):
        session = self.session

        async def scenario():
            await session.initialize_for_couple("bob")
            await session.settle()
            session.error_message = "generateDailyQuestion: internal"
            self._next_day()
            session.listeners.refresh_day()
            await session.listeners.wait_idle()
            await session.settle()

        asyncio.run(scenario())
        self.assertEqual(len(self.functions.generate_calls), 1)


class TestStreamHealth(unittest.TestCase):

    def test_closed_stream_routes_to_error_until_retry(self):
        store = FakeStore()
        store.add_content(make_content(COUPLE, 1, TODAY))
        session, store, functions = _session(store)

        async def scenario():
            await session.initialize_for_couple("bob")
            await session.settle()
            store.close_streams()
            session.listeners.check_streams()
            await session.listeners.wait_idle()
            failed = session.route
            await session.regenerate()
            return failed

        failed = asyncio.run(scenario())
        self.assertIsInstance(failed, ErrorRoute)
        self.assertIn("stream closed", failed.message)
        self.assertEqual(session.route, MainRoute())
        self.assertEqual(len([w for w in store.content_watches if w.is_active]), 1)
        self.assertEqual(functions.generate_calls, [])

    def test_regenerate_replaces_pending_step(self):
        session, store, functions = _session()

        async def scenario():
            await session.initialize_for_couple("bob")
            first = session._generation_task
            await session.regenerate()
            return first

        first = asyncio.run(scenario())
        self.assertTrue(first.cancelled())
        self.assertEqual(len(functions.generate_calls), 1)
        self.assertEqual(session.route, MainRoute())


def test_embedded_session_with_guest_identity():
    provider = FallbackIdentityProvider(StaticIdentityProvider(None), GuestIdentityProvider("alice", "Ally"))
    session, store, functions = _session(identity_provider=provider)

    async def scenario():
        await session.initialize_for_couple("bob")
        await session.settle()

    asyncio.run(scenario())
    assert session.couple_id == COUPLE
    kind, request, id_token = functions.generate_calls[0]
    assert request.user_id == "alice"
    assert id_token is None
