"""
Binding manager for creating bindings between exchanges and queues.
Binds each primary queue together with its retry queue.
"""
from ..core.channel_manager import get_channel
from ..core.logger import get_logger
from ..core.naming import retry_name, retry_routing_key

# Module logger
logger = get_logger(__name__)

class BindingManager:
    """
    Manages AMQP bindings between exchanges and queues.
    """

    def bind_queue(self, queue_name, exchange_name, routing_key='',
                   arguments=None, channel=None):
        """
        Bind a queue to an exchange.

        Args:
            queue_name: Name of the queue to bind
            exchange_name: Name of the exchange to bind to
            routing_key: Routing key for the binding
            arguments: Additional binding arguments
            channel: Optional channel to use, otherwise gets one

        Returns:
            True if binding created successfully
        """
        try:
            if channel is None:
                channel = get_channel()

            logger.info(f"Binding queue '{queue_name}' to exchange '{exchange_name}' "
                        f"with routing key '{routing_key}'")

            channel.queue_bind(
                queue=queue_name,
                exchange=exchange_name,
                routing_key=routing_key,
                arguments=arguments
            )

            logger.debug(f"Queue '{queue_name}' bound to exchange '{exchange_name}' successfully")
            return True

        except Exception as e:
            logger.error(f"Failed to bind queue '{queue_name}' to exchange '{exchange_name}': {e}")
            raise

    def bind_queue_with_retry(self, queue_info, routing_key, exchange_name, channel=None):
        """
        Bind a queue to its exchange and its retry queue to the retry exchange.

        The retry binding uses routing_key + '.retry', or '' when routing_key
        is empty.

        Args:
            queue_info: QueueInfo of the primary queue
            routing_key: Routing key of the primary binding
            exchange_name: Name of the primary exchange
            channel: Optional channel to use, otherwise gets one

        Returns:
            True if both bindings were created
        """
        if channel is None:
            channel = get_channel()

        self.bind_queue(queue_info.name, exchange_name, routing_key=routing_key, channel=channel)
        self.bind_queue(
            retry_name(queue_info.name),
            retry_name(exchange_name),
            routing_key=retry_routing_key(routing_key),
            channel=channel
        )

        logger.info(f"Queue '{queue_info.name}' and '{retry_name(queue_info.name)}' bound "
                    f"(exchange='{exchange_name}', routing_key='{routing_key}')")
        return True

# Singleton instance
binding_manager = BindingManager()
