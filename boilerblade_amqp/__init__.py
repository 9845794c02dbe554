"""
Self-healing AMQP connections and channels with a delayed-retry queue topology.
"""
