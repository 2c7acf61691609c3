from unittest.mock import AsyncMock

from asgiref.sync import async_to_sync
from channels.layers import InMemoryChannelLayer
from django.test import SimpleTestCase, TestCase

from realtime import bus as events
from realtime.bus import EventBus, RideEvent, is_stale, ride_channel
from realtime.consumers.ride_consumer import RideConsumer
from realtime.delivery import LocmemBackend, NotificationDelivery


def _event(event_type, seq, ride_id=1, status="accepted"):
    return RideEvent(
        type=event_type,
        ride_id=ride_id,
        status=status,
        seq=seq,
        timestamp="2024-01-01T00:00:00+00:00",
    )


class StaleEventTests(SimpleTestCase):
    def test_status_events_must_move_forward(self):
        self.assertTrue(is_stale(_event(events.RIDE_STARTED, 3).as_dict(), 3))
        self.assertTrue(is_stale(_event(events.DRIVER_ARRIVED, 2).as_dict(), 3))
        self.assertFalse(is_stale(_event(events.RIDE_COMPLETED, 4).as_dict(), 3))

    def test_informational_events_may_share_seq(self):
        self.assertFalse(is_stale(_event(events.LOCATION_UPDATE, 3).as_dict(), 3))
        self.assertTrue(is_stale(_event(events.LOCATION_UPDATE, 2).as_dict(), 3))

    def test_nothing_is_stale_before_the_first_event(self):
        self.assertFalse(is_stale(_event(events.RIDE_ACCEPTED, 0).as_dict(), None))


class EventBusTests(SimpleTestCase):
    def test_subscribers_receive_events_for_their_channel(self):
        bus = EventBus(channel_layer=InMemoryChannelLayer())
        received = []
        unsubscribe = bus.subscribe(ride_channel(1), received.append)

        bus.publish(ride_channel(1), _event(events.RIDE_ACCEPTED, 1))
        bus.publish(ride_channel(2), _event(events.RIDE_ACCEPTED, 1, ride_id=2))
        unsubscribe()
        bus.publish(ride_channel(1), _event(events.DRIVER_ARRIVED, 2))

        self.assertEqual([event.type for event in received], [events.RIDE_ACCEPTED])

    def test_failing_subscriber_does_not_stop_delivery(self):
        bus = EventBus(channel_layer=InMemoryChannelLayer())
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(ride_channel(1), broken)
        bus.subscribe(ride_channel(1), received.append)

        with self.assertLogs("realtime.bus", level="ERROR"):
            bus.publish(ride_channel(1), _event(events.RIDE_ACCEPTED, 1))

        self.assertEqual(len(received), 1)

    def test_events_reach_channel_layer_groups(self):
        layer = InMemoryChannelLayer()
        channel_name = async_to_sync(layer.new_channel)()
        async_to_sync(layer.group_add)(ride_channel(1), channel_name)

        EventBus(channel_layer=layer).publish(ride_channel(1), _event(events.RIDE_ACCEPTED, 1))
        message = async_to_sync(layer.receive)(channel_name)

        self.assertEqual(message["type"], "bus.event")
        self.assertEqual(message["event"]["type"], events.RIDE_ACCEPTED)
        self.assertEqual(message["event"]["seq"], 1)


class PublishOnCommitTests(TestCase):
    def test_events_wait_for_commit(self):
        bus = EventBus(channel_layer=InMemoryChannelLayer())
        received = []
        bus.subscribe(ride_channel(1), received.append)

        with self.captureOnCommitCallbacks() as callbacks:
            bus.publish_on_commit([ride_channel(1)], _event(events.RIDE_ACCEPTED, 1))
            self.assertEqual(received, [])

        for callback in callbacks:
            callback()
        self.assertEqual(len(received), 1)


class RideConsumerOrderingTests(SimpleTestCase):
    def setUp(self):
        self.consumer = RideConsumer()
        self.consumer.last_seq = {1: 3}
        self.consumer.send_json = AsyncMock()

    def _deliver(self, event):
        async_to_sync(self.consumer.deliver_event)(event.as_dict())

    def _sent_types(self):
        return [call.args[0]["type"] for call in self.consumer.send_json.call_args_list]

    def test_drops_stale_status_events(self):
        self._deliver(_event(events.RIDE_STARTED, 3))
        self._deliver(_event(events.DRIVER_ARRIVED, 2))
        self._deliver(_event(events.RIDE_COMPLETED, 4))
        self._deliver(_event(events.RIDE_STARTED, 4))

        self.assertEqual(self._sent_types(), [events.RIDE_COMPLETED])
        self.assertEqual(self.consumer.last_seq[1], 4)

    def test_location_updates_share_the_current_seq(self):
        self._deliver(_event(events.LOCATION_UPDATE, 3))
        self.assertEqual(self._sent_types(), [events.LOCATION_UPDATE])
        self.assertEqual(self.consumer.last_seq[1], 3)

    def test_untracked_rides_pass_through(self):
        self._deliver(_event(events.RIDE_ACCEPTED, 1, ride_id=2))
        self.assertEqual(self._sent_types(), [events.RIDE_ACCEPTED])


class NotificationDeliveryTests(SimpleTestCase):
    def setUp(self):
        LocmemBackend.outbox.clear()

    def test_backend_comes_from_settings(self):
        delivery = NotificationDelivery()

        self.assertTrue(delivery.deliver("9000000000", "hello"))
        self.assertEqual(LocmemBackend.outbox, [("9000000000", "hello")])

    def test_failures_are_logged_not_raised(self):
        class BrokenBackend:
            def send(self, subject, message):
                raise ConnectionError("gateway down")

        with self.assertLogs("realtime.delivery", level="ERROR"):
            self.assertFalse(NotificationDelivery(backend=BrokenBackend()).deliver("9000000000", "hello"))

    def test_instances_share_one_outbox(self):
        LocmemBackend().send("9000000001", "first")
        NotificationDelivery().deliver("9000000002", "second")

        self.assertEqual(
            LocmemBackend.outbox,
            [("9000000001", "first"), ("9000000002", "second")],
        )
