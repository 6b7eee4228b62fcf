import unittest

from event_channel import ChannelKey, EventChannel, Topic


class EventChannelTests(unittest.IsolatedAsyncioTestCase):
    async def test_events_reach_only_matching_key_and_topic(self):
        channel = EventChannel()
        received = []
        await channel.subscribe(ChannelKey("a"), Topic.CHUNK, received.append)
        await channel.emit(ChannelKey("a"), Topic.CHUNK, "one")
        await channel.emit(ChannelKey("b"), Topic.CHUNK, "other job")
        await channel.emit(ChannelKey("a"), Topic.FINAL, "other topic")
        await channel.emit(ChannelKey("a"), Topic.CHUNK, "two")
        self.assertEqual(received, ["one", "two"])

    async def test_async_handlers_are_awaited_in_order(self):
        channel = EventChannel()
        received = []

        async def handler(payload):
            received.append(payload)

        await channel.subscribe(ChannelKey("a"), Topic.PROGRESS, handler)
        for value in (0.1, 0.5, 1.0):
            await channel.emit(ChannelKey("a"), Topic.PROGRESS, value)
        self.assertEqual(received, [0.1, 0.5, 1.0])

    async def test_release_is_idempotent_and_stops_delivery(self):
        channel = EventChannel()
        received = []
        subscription = await channel.subscribe(ChannelKey("a"), Topic.DONE, received.append)
        subscription.release()
        subscription.release()
        await channel.emit(ChannelKey("a"), Topic.DONE, {"ok": True})
        self.assertEqual(received, [])
        self.assertFalse(subscription.active)
        self.assertEqual(channel.subscriber_count(ChannelKey("a")), 0)

    async def test_handler_errors_are_contained(self):
        channel = EventChannel()
        received = []

        def broken(payload):
            raise ValueError("bad handler")

        await channel.subscribe(ChannelKey("a"), Topic.CHUNK, broken)
        await channel.subscribe(ChannelKey("a"), Topic.CHUNK, received.append)
        with self.assertLogs("event_channel", level="ERROR"):
            await channel.emit(ChannelKey("a"), Topic.CHUNK, "x")
        self.assertEqual(received, ["x"])

    async def test_handler_released_during_emit_is_skipped(self):
        channel = EventChannel()
        received = []
        second = None

        def first(payload):
            received.append(("first", payload))
            second.release()

        await channel.subscribe(ChannelKey("a"), Topic.CHUNK, first)
        second = await channel.subscribe(ChannelKey("a"), Topic.CHUNK, lambda p: received.append(("second", p)))
        await channel.emit(ChannelKey("a"), Topic.CHUNK, "x")
        self.assertEqual(received, [("first", "x")])

    def test_topic_names_are_namespaced_by_job(self):
        self.assertEqual(ChannelKey("42").topic_name(Topic.DONE), "translate:42:done")


if __name__ == "__main__":
    unittest.main()
