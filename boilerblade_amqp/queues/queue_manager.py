"""
Queue manager for declaring AMQP queues.
Declares each primary queue together with a retry queue that holds rejected
messages for a fixed interval before dead-lettering them back.
"""
from ..core.channel_manager import get_channel
from ..core.logger import get_logger
from ..core.naming import retry_name, retry_routing_key

# Module logger
logger = get_logger(__name__)

class QueueManager:
    """
    Manages AMQP queues and the primary/retry queue pairs.
    """

    def declare_queue(self, queue_name, durable=True, exclusive=False,
                      auto_delete=False, arguments=None, channel=None):
        """
        Declare a queue.

        Args:
            queue_name: Name of the queue
            durable: Whether the queue survives broker restarts
            exclusive: Whether the queue can only be used by the declaring connection
            auto_delete: Whether to delete the queue when no consumers are subscribed
            arguments: Additional queue arguments
            channel: Optional channel to use, otherwise gets one

        Returns:
            QueueInfo with the declaration result
        """
        try:
            if channel is None:
                channel = get_channel()

            logger.info(f"Declaring queue '{queue_name}' (durable={durable}, arguments={arguments})")

            result = channel.queue_declare(
                queue=queue_name,
                durable=durable,
                exclusive=exclusive,
                auto_delete=auto_delete,
                arguments=arguments
            )

            logger.debug(f"Queue '{queue_name}' declared successfully with {result.message_count} messages")
            return result

        except Exception as e:
            logger.error(f"Failed to declare queue '{queue_name}': {e}")
            raise

    def declare_queue_with_retry(self, queue_name, queue_type, exchange_name,
                                 routing_key, interval_ms, channel=None):
        """
        Declare a queue and its '.retry' queue.

        Rejected messages on the primary queue are dead-lettered to the retry
        exchange; the retry queue keeps them for interval_ms and dead-letters
        them back to the primary exchange with the original routing key.
        Queues declared before a failure are left in place.

        Args:
            queue_name: Name of the primary queue
            queue_type: Value of x-queue-type for both queues (e.g. 'quorum')
            exchange_name: Name of the primary exchange
            routing_key: Routing key of the primary binding, may be empty
            interval_ms: Message TTL of the retry queue in milliseconds
            channel: Optional channel to use, otherwise gets one

        Returns:
            QueueInfo of the primary queue
        """
        if channel is None:
            channel = get_channel()

        arguments = {'x-dead-letter-exchange': retry_name(exchange_name)}
        if routing_key:
            arguments['x-dead-letter-routing-key'] = retry_routing_key(routing_key)
        arguments['x-queue-type'] = queue_type

        queue_info = self.declare_queue(queue_name, durable=True, arguments=arguments, channel=channel)

        retry_arguments = {'x-dead-letter-exchange': exchange_name}
        if routing_key:
            retry_arguments['x-dead-letter-routing-key'] = routing_key
        retry_arguments['x-message-ttl'] = interval_ms
        retry_arguments['x-queue-type'] = queue_type

        self.declare_queue(retry_name(queue_name), durable=True, arguments=retry_arguments, channel=channel)

        logger.info(f"Queue '{queue_name}' declared with retry queue '{retry_name(queue_name)}' "
                    f"(type={queue_type}, exchange='{exchange_name}', routing_key='{routing_key}', "
                    f"interval={interval_ms}ms)")
        return queue_info

    def new_queue(self, exchange_name, queue_name, queue_type, routing_key,
                  interval_ms, channel=None):
        """
        Declare and bind a queue and its retry queue.

        A bind failure leaves the declared queues in place.

        Returns:
            QueueInfo of the primary queue
        """
        from ..bindings.binding_manager import binding_manager

        if channel is None:
            channel = get_channel()

        try:
            queue_info = self.declare_queue_with_retry(
                queue_name, queue_type, exchange_name, routing_key, interval_ms, channel=channel)
        except Exception as e:
            logger.error(f"New queue '{queue_name}' failed at declare: {e}")
            raise

        try:
            binding_manager.bind_queue_with_retry(queue_info, routing_key, exchange_name, channel=channel)
        except Exception as e:
            logger.error(f"New queue '{queue_name}' failed at bind: {e}")
            raise

        logger.info(f"New queue '{queue_name}' ready on exchange '{exchange_name}' "
                    f"(routing_key='{routing_key}', interval={interval_ms}ms)")
        return queue_info

# Singleton instance
queue_manager = QueueManager()
