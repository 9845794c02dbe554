"""
Exchange manager for declaring AMQP exchanges.
Declares each primary exchange together with its retry exchange.
"""
from ..core.channel_manager import get_channel
from ..core.logger import get_logger
from ..core.naming import retry_name

# Module logger
logger = get_logger(__name__)

class ExchangeManager:
    """
    Manages AMQP exchanges.
    """

    def declare_exchange(self, exchange_name, exchange_type='direct',
                         durable=True, auto_delete=False,
                         internal=False, arguments=None, channel=None):
        """
        Declare an exchange.

        Args:
            exchange_name: Name of the exchange
            exchange_type: Type of exchange ('direct', 'topic', 'fanout', 'headers')
            durable: Whether the exchange survives broker restarts
            auto_delete: Whether to delete the exchange when no queues are bound to it
            internal: Whether the exchange is internal (used for exchange-to-exchange binding)
            arguments: Additional exchange arguments
            channel: Optional channel to use, otherwise gets one

        Returns:
            True if exchange declared successfully
        """
        try:
            if channel is None:
                channel = get_channel()

            logger.info(f"Declaring {exchange_type} exchange '{exchange_name}' (durable={durable})")

            channel.exchange_declare(
                exchange=exchange_name,
                exchange_type=exchange_type,
                durable=durable,
                auto_delete=auto_delete,
                internal=internal,
                arguments=arguments
            )

            logger.debug(f"Exchange '{exchange_name}' declared successfully")
            return True

        except Exception as e:
            logger.error(f"Failed to declare exchange '{exchange_name}' ({exchange_type}): {e}")
            raise

    def declare_exchange_with_retry(self, exchange_name, exchange_type, channel=None):
        """
        Declare an exchange and its '.retry' twin, both durable.

        A failure on the retry exchange leaves the primary one in place.

        Args:
            exchange_name: Name of the primary exchange
            exchange_type: Type shared by both exchanges
            channel: Optional channel to use, otherwise gets one

        Returns:
            True if both exchanges were declared
        """
        if channel is None:
            channel = get_channel()

        self.declare_exchange(exchange_name, exchange_type, channel=channel)
        self.declare_exchange(retry_name(exchange_name), exchange_type, channel=channel)

        logger.info(f"Exchange '{exchange_name}' declared with retry exchange "
                    f"'{retry_name(exchange_name)}' ({exchange_type})")
        return True

# Singleton instance
exchange_manager = ExchangeManager()
