from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.test import SimpleTestCase
from unittest.mock import AsyncMock, MagicMock, patch

from realtime.notifications import (
    OPERATORS_GROUP,
    driver_group,
    notify_admins,
    notify_provider,
    notify_requester,
    requester_group,
)


class GroupNameTests(SimpleTestCase):
    def test_personal_groups(self):
        self.assertEqual(driver_group(7), 'driver_7')
        self.assertEqual(requester_group(7), 'user_7')


class ChannelDeliveryTests(SimpleTestCase):
    def setUp(self):
        self.layer = get_channel_layer()
        self.channel = async_to_sync(self.layer.new_channel)()

    def join(self, group):
        async_to_sync(self.layer.group_add)(group, self.channel)
        self.addCleanup(async_to_sync(self.layer.group_discard), group, self.channel)

    def receive(self):
        return async_to_sync(self.layer.receive)(self.channel)

    def test_driver_receives_offer(self):
        self.join(driver_group(11))

        self.assertTrue(notify_provider(11, {'type': 'booking_offer', 'booking_id': 3}))

        self.assertEqual(self.receive(), {'type': 'booking_offer', 'booking_id': 3})

    def test_requester_receives_event(self):
        self.join(requester_group(12))

        self.assertTrue(notify_requester(12, {'type': 'no_driver_available', 'booking_id': 4}))

        self.assertEqual(self.receive()['type'], 'no_driver_available')

    def test_operators_group(self):
        self.join(OPERATORS_GROUP)

        notify_admins({'type': 'booking_approval_required', 'booking_id': 5})

        self.assertEqual(self.receive()['booking_id'], 5)


class DeliveryFailureTests(SimpleTestCase):
    def test_missing_recipient(self):
        self.assertFalse(notify_provider(None, {'type': 'booking_offer'}))
        self.assertFalse(notify_requester(0, {'type': 'trip_started'}))

    @patch('realtime.notifications.get_channel_layer', return_value=None)
    def test_no_channel_layer(self, mock_layer):
        self.assertFalse(notify_provider(1, {'type': 'booking_offer'}))

    @patch('realtime.notifications.get_channel_layer')
    def test_send_errors_are_reported_not_raised(self, mock_layer):
        broken = MagicMock()
        broken.group_send = AsyncMock(side_effect=ConnectionError("redis down"))
        mock_layer.return_value = broken

        with self.assertLogs('realtime.notifications', level='ERROR'):
            self.assertFalse(notify_requester(1, {'type': 'trip_started'}))
