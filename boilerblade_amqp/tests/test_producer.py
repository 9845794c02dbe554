"""
Unit tests for the producer components.
Tests publish_message() and the BaseProducer class.
"""
import json
import unittest
from unittest.mock import MagicMock, patch

from ..core.exceptions import ConnectionClosedError
from ..core.models import QueueInfo
from ..producers.base_producer import BaseProducer, publish_message


class TestPublishMessage(unittest.TestCase):
    """Tests for publish_message()."""

    def setUp(self):
        self.channel = MagicMock()

    def test_publishes_persistent_message(self):
        publish_message(self.channel, None, 'order.created', 'application/json', 'shop', b'{"id": 1}')

        kwargs = self.channel.basic_publish.call_args[1]
        self.assertEqual(kwargs['exchange'], 'shop')
        self.assertEqual(kwargs['routing_key'], 'order.created')
        self.assertEqual(kwargs['body'], b'{"id": 1}')
        self.assertEqual(kwargs['properties'].delivery_mode, 2)
        self.assertEqual(kwargs['properties'].content_type, 'application/json')

    def test_queue_info_name_overrides_routing_key(self):
        publish_message(self.channel, QueueInfo(name='orders'), 'ignored', 'text/plain', '', b'hello')

        kwargs = self.channel.basic_publish.call_args[1]
        self.assertEqual(kwargs['routing_key'], 'orders')
        self.assertEqual(kwargs['exchange'], '')

    def test_failure_is_raised_not_retried(self):
        self.channel.basic_publish.side_effect = ConnectionClosedError("channel 1 is closed")

        with self.assertRaises(ConnectionClosedError):
            publish_message(self.channel, None, 'k', 'text/plain', 'shop', b'x')

        self.assertEqual(self.channel.basic_publish.call_count, 1)


class TestBaseProducer(unittest.TestCase):
    """Tests for the BaseProducer class."""

    def setUp(self):
        """Set up the test environment."""
        self.mock_channel = MagicMock()
        self.mock_channel.is_closed.return_value = False

        # Patch the get_channel function to return our mock
        self.channel_patcher = patch('boilerblade_amqp.producers.base_producer.get_channel')
        self.mock_get_channel = self.channel_patcher.start()
        self.mock_get_channel.return_value = self.mock_channel

        self.producer = BaseProducer(exchange_name='shop', routing_key='order.created')

    def tearDown(self):
        """Clean up after each test."""
        self.channel_patcher.stop()

    def test_get_channel_reuses_open_channel(self):
        self.assertIs(self.producer.get_channel(), self.mock_channel)
        self.assertIs(self.producer.get_channel(), self.mock_channel)
        self.mock_get_channel.assert_called_once()

    def test_get_channel_replaces_closed_channel(self):
        self.producer.get_channel()
        self.mock_channel.is_closed.return_value = True

        self.producer.get_channel()

        self.assertEqual(self.mock_get_channel.call_count, 2)

    def test_publish_dict(self):
        message_id = self.producer.publish({'order_id': 42})

        kwargs = self.mock_channel.basic_publish.call_args[1]
        self.assertEqual(json.loads(kwargs['body'].decode('utf-8')), {'order_id': 42})
        self.assertEqual(kwargs['routing_key'], 'order.created')
        self.assertEqual(kwargs['properties'].message_id, message_id)
        self.assertIn('x-published-at', kwargs['properties'].headers)

    def test_publish_routing_key_override(self):
        self.producer.publish('plain text', routing_key='order.cancelled', headers={'source': 'test'})

        kwargs = self.mock_channel.basic_publish.call_args[1]
        self.assertEqual(kwargs['routing_key'], 'order.cancelled')
        self.assertEqual(kwargs['body'], b'plain text')
        self.assertEqual(kwargs['properties'].headers['source'], 'test')


if __name__ == '__main__':
    unittest.main()
