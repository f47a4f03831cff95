import asyncio
import json
import unittest
from unittest.mock import patch

from support import DatabaseTestCase, movie
from urnext.errors import NotYourTurn
from urnext.feed import ChangeFeed, SubscriptionSlot, feed, items_topic, user_topic, watchlist_topic
from urnext.identity import Identity
from urnext.routers.stream import KEEPALIVE, member_events, user_frame, watchlist_events
from urnext.services.invites import accept_account_invite, invite, sync_user
from urnext.services.watchlist import add_item


def parse(frame: str) -> tuple[str, object]:
    lines = frame.strip().split("\n")
    event = lines[0][len("event: "):]
    data = json.loads(lines[1][len("data: "):])
    return event, data


class TestChangeFeed(unittest.IsolatedAsyncioTestCase):
    async def test_publish_reaches_matching_subscribers_only(self) -> None:
        changes = ChangeFeed()
        first = changes.subscribe("watchlist:1")
        second = changes.subscribe("watchlist:2")

        changes.publish("watchlist:1")

        self.assertEqual(await first.get(timeout=0.1), "watchlist:1")
        self.assertIsNone(await second.get(timeout=0.01))

    async def test_repeated_changes_are_coalesced(self) -> None:
        changes = ChangeFeed()
        subscription = changes.subscribe("items:1")

        changes.publish("items:1")
        changes.publish("items:1")

        self.assertEqual(subscription.queue.qsize(), 1)
        self.assertEqual(await subscription.get(timeout=0.1), "items:1")

        changes.publish("items:1")
        self.assertEqual(await subscription.get(timeout=0.1), "items:1")

    async def test_release_is_idempotent(self) -> None:
        changes = ChangeFeed()
        subscription = changes.subscribe("a", "b")
        self.assertEqual(changes.subscriber_count("a"), 1)

        subscription.release()
        subscription.release()

        self.assertEqual(changes.subscriber_count("a"), 0)
        self.assertEqual(changes.subscriber_count("b"), 0)
        changes.publish("a")
        self.assertEqual([topic async for topic in subscription], [])

    async def test_context_manager_releases(self) -> None:
        changes = ChangeFeed()
        async with changes.subscribe("a") as subscription:
            changes.publish("a")
            self.assertEqual(await subscription.get(timeout=0.1), "a")
        self.assertTrue(subscription.released)
        self.assertEqual(changes.subscriber_count("a"), 0)

    async def test_slot_replaces_previous_subscription(self) -> None:
        changes = ChangeFeed()
        slot = SubscriptionSlot(changes)

        old = slot.replace("user:1", "watchlist:1")
        new = slot.replace("user:1", "watchlist:2")

        self.assertTrue(old.released)
        self.assertIs(slot.current, new)
        self.assertEqual(changes.subscriber_count("watchlist:1"), 0)
        self.assertEqual(changes.subscriber_count("user:1"), 1)

        slot.release()
        self.assertIsNone(slot.current)
        self.assertEqual(changes.subscriber_count("user:1"), 0)

    async def test_slot_keeps_queued_changes_it_still_covers(self) -> None:
        changes = ChangeFeed()
        slot = SubscriptionSlot(changes)

        slot.replace("user:1", "watchlist:1")
        changes.publish("user:1", "watchlist:1")
        new = slot.replace("user:1", "watchlist:2")

        self.assertEqual(await new.get(timeout=0.1), "user:1")
        self.assertIsNone(await new.get(timeout=0.01))

    async def test_iteration_drains_then_stops_on_release(self) -> None:
        changes = ChangeFeed()
        subscription = changes.subscribe("a", "b")
        changes.publish("a", "b")
        subscription.release()

        self.assertEqual([topic async for topic in subscription], ["a", "b"])

    async def test_release_wakes_a_waiting_reader(self) -> None:
        changes = ChangeFeed()
        subscription = changes.subscribe("a")

        async def collect():
            return [topic async for topic in subscription]

        task = asyncio.create_task(collect())
        await asyncio.sleep(0)
        changes.publish("a")
        await asyncio.sleep(0)
        subscription.release()

        self.assertEqual(await asyncio.wait_for(task, 1), ["a"])


class TestCommitPublishes(DatabaseTestCase):
    async def test_successful_write_notifies_watchers(self) -> None:
        wid = self.watchlist.id
        async with feed.subscribe(watchlist_topic(wid), items_topic(wid)) as subscription:
            await add_item(self.session, wid, "a", movie("M1"))

            topics = {await subscription.get(timeout=0.1), await subscription.get(timeout=0.1)}
            self.assertEqual(topics, {watchlist_topic(wid), items_topic(wid)})

    async def test_rejected_write_notifies_nobody(self) -> None:
        wid = self.watchlist.id
        await add_item(self.session, wid, "a", movie("M1"))
        async with feed.subscribe(watchlist_topic(wid)) as subscription:
            with self.assertRaises(NotYourTurn):
                await add_item(self.session, wid, "a", movie("M2"))
            self.assertIsNone(await subscription.get(timeout=0.01))


class TestWatchlistEvents(DatabaseTestCase):
    async def test_initial_state_then_changes(self) -> None:
        wid = self.watchlist.id
        events = watchlist_events(wid, "a", session_factory=self.session_factory, keepalive=0.05)
        try:
            event, snapshot = parse(await events.__anext__())
            self.assertEqual(event, "watchlist")
            self.assertEqual(snapshot["pending_count"], 0)

            event, items = parse(await events.__anext__())
            self.assertEqual(event, "items")
            self.assertEqual(items, {"pending": [], "finished": []})

            self.assertEqual(feed.subscriber_count(watchlist_topic(wid)), 1)
            await add_item(self.session, wid, "b", movie("M1"))

            event, snapshot = parse(await events.__anext__())
            self.assertEqual(event, "watchlist")
            self.assertEqual(snapshot["last_added_by"]["movie"], "b")

            event, items = parse(await events.__anext__())
            self.assertEqual(event, "items")
            self.assertEqual([i["title"] for i in items["pending"]], ["M1"])

            self.assertEqual(await events.__anext__(), KEEPALIVE)
        finally:
            await events.aclose()

        self.assertEqual(feed.subscriber_count(watchlist_topic(wid)), 0)

    async def test_non_member_gets_error_frame(self) -> None:
        events = watchlist_events(
            self.watchlist.id, "carol", session_factory=self.session_factory, keepalive=0.05
        )
        event, error = parse(await events.__anext__())

        self.assertEqual(event, "error")
        self.assertEqual(error["error"], "permission_denied")
        with self.assertRaises(StopAsyncIteration):
            await events.__anext__()
        self.assertEqual(feed.subscriber_count(watchlist_topic(self.watchlist.id)), 0)


class TestMemberEvents(DatabaseTestCase):
    async def test_follows_active_watchlist_after_joining(self) -> None:
        wid = self.watchlist.id
        carol = await sync_user(self.session, Identity("c", "carol@example.com", "Carol"))
        events = member_events("c", session_factory=self.session_factory, keepalive=0.05)
        try:
            event, profile = parse(await events.__anext__())
            self.assertEqual(event, "user")
            self.assertIsNone(profile["active_watchlist_id"])
            self.assertEqual(feed.subscriber_count(user_topic("c")), 1)

            await invite(self.session, wid, self.alice, "carol@example.com")
            event, profile = parse(await events.__anext__())
            self.assertEqual(event, "user")
            self.assertEqual(profile["invites"][0]["watchlist_id"], wid)

            await accept_account_invite(self.session, carol, wid)
            event, profile = parse(await events.__anext__())
            self.assertEqual(profile["active_watchlist_id"], wid)
            self.assertEqual(profile["invites"], [])

            event, snapshot = parse(await events.__anext__())
            self.assertEqual(event, "watchlist")
            self.assertIn("c", [m["id"] for m in snapshot["members"]])
            event, _ = parse(await events.__anext__())
            self.assertEqual(event, "items")

            await add_item(self.session, wid, "a", movie("M1"))
            event, snapshot = parse(await events.__anext__())
            self.assertEqual(event, "watchlist")
            self.assertEqual(snapshot["pending_count"], 1)
        finally:
            await events.aclose()

        self.assertEqual(feed.subscriber_count(user_topic("c")), 0)
        self.assertEqual(feed.subscriber_count(watchlist_topic(wid)), 0)

    async def test_change_during_first_read_is_not_missed(self) -> None:
        await sync_user(self.session, Identity("c", "carol@example.com", "Carol"))
        reads = []

        async def read_then_change(session, user_id):
            frame = await user_frame(session, user_id)
            if not reads:
                # Another request updates the user right after the initial read
                feed.publish(user_topic(user_id))
            reads.append(user_id)
            return frame

        events = member_events("c", session_factory=self.session_factory, keepalive=0.05)
        try:
            with patch("urnext.routers.stream.user_frame", read_then_change):
                event, _ = parse(await events.__anext__())
                self.assertEqual(event, "user")

                event, _ = parse(await events.__anext__())
                self.assertEqual(event, "user")
            self.assertEqual(reads, ["c", "c"])
        finally:
            await events.aclose()


if __name__ == "__main__":
    unittest.main()
