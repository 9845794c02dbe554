"""
Naming convention for the retry half of the topology.
"""

RETRY_SUFFIX = '.retry'


def retry_name(name):
    """Name of the retry exchange or retry queue paired with name."""
    return f"{name}{RETRY_SUFFIX}"


def retry_routing_key(routing_key):
    """Routing key used on the retry exchange; an empty key stays empty."""
    if not routing_key:
        return ''
    return f"{routing_key}{RETRY_SUFFIX}"
