"""
Topology inspector for the broker's management HTTP API.
Verifies that a primary exchange/queue pair and its retry twins form a
closed redelivery cycle.
"""
from urllib.parse import quote
import requests
from ..config.config import config
from ..core.logger import get_logger
from ..core.naming import retry_name, retry_routing_key

# Module logger
logger = get_logger(__name__)

class TopologyInspector:
    """
    Reads exchanges, queues and bindings through the management API.
    """

    def __init__(self, host=None, port=None, username=None, password=None,
                 vhost=None, timeout=5, session=None):
        """
        Initialize the inspector.

        Args:
            host: Broker host (default: from config)
            port: Management API port (default: from config)
            username: Management user (default: from config)
            password: Management password (default: from config)
            vhost: Virtual host (default: from config)
            timeout: HTTP timeout in seconds
            session: Optional requests.Session to reuse
        """
        self.host = host or config.AMQP_HOST
        self.port = port or config.MANAGEMENT_PORT
        self.vhost = vhost or config.AMQP_VHOST
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.auth = (username or config.AMQP_USER, password or config.AMQP_PASSWORD)

    def _url(self, *parts):
        path = '/'.join(quote(part, safe='') for part in parts)
        return f"http://{self.host}:{self.port}/api/{path}"

    def _get(self, *parts):
        url = self._url(*parts)
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.error(f"Management API request to {url} failed: {e}")
            raise

    def get_exchange(self, name):
        return self._get('exchanges', self.vhost, name)

    def get_queue(self, name):
        return self._get('queues', self.vhost, name)

    def get_bindings(self, exchange, queue):
        """Bindings from exchange to queue."""
        return self._get('bindings', self.vhost, 'e', exchange, 'q', queue)

    def verify_retry_topology(self, exchange_name, queue_name, routing_key=''):
        """
        Check the primary/retry topology of a queue.

        Args:
            exchange_name: Name of the primary exchange
            queue_name: Name of the primary queue
            routing_key: Routing key of the primary binding

        Returns:
            A list of problems, empty when the topology is complete
        """
        problems = []
        retry_exchange = retry_name(exchange_name)
        retry_queue = retry_name(queue_name)

        for name in (exchange_name, retry_exchange):
            exchange = self._fetch_or_report(self.get_exchange, name, problems)
            if exchange is not None and not exchange.get('durable'):
                problems.append(f"exchange '{name}' is not durable")

        queue = self._fetch_or_report(self.get_queue, queue_name, problems)
        if queue is not None:
            arguments = queue.get('arguments', {})
            if arguments.get('x-dead-letter-exchange') != retry_exchange:
                problems.append(f"queue '{queue_name}' does not dead-letter to '{retry_exchange}'")
            if routing_key and arguments.get('x-dead-letter-routing-key') != retry_routing_key(routing_key):
                problems.append(f"queue '{queue_name}' does not dead-letter with "
                                f"routing key '{retry_routing_key(routing_key)}'")

        retry = self._fetch_or_report(self.get_queue, retry_queue, problems)
        if retry is not None:
            arguments = retry.get('arguments', {})
            if arguments.get('x-dead-letter-exchange') != exchange_name:
                problems.append(f"queue '{retry_queue}' does not dead-letter to '{exchange_name}'")
            if 'x-message-ttl' not in arguments:
                problems.append(f"queue '{retry_queue}' has no message TTL")

        if queue is not None and retry is not None:
            self._check_binding(exchange_name, queue_name, routing_key, problems)
            self._check_binding(retry_exchange, retry_queue, retry_routing_key(routing_key), problems)

        if problems:
            logger.warning(f"Retry topology of '{queue_name}' is incomplete: {problems}")
        return problems

    def _fetch_or_report(self, fetch, name, problems):
        try:
            return fetch(name)
        except requests.HTTPError as e:
            if e.response is not None and e.response.status_code == 404:
                problems.append(f"'{name}' does not exist")
                return None
            raise

    def _check_binding(self, exchange, queue, routing_key, problems):
        bindings = self.get_bindings(exchange, queue)
        if not any(binding.get('routing_key') == routing_key for binding in bindings):
            problems.append(f"queue '{queue}' is not bound to '{exchange}' with routing key '{routing_key}'")
