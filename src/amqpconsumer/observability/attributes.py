"""
Standard span attribute names used by amqpconsumer.

Messaging attributes follow the OpenTelemetry semantic conventions; the
remaining ones are namespaced under ``amqpconsumer.``.
"""

# Messaging (OTEL semantic)
ATTR_MESSAGING_SYSTEM = "messaging.system"
"""Messaging system identifier, always "rabbitmq"."""

ATTR_MESSAGING_DESTINATION = "messaging.destination"
"""Queue the delivery was consumed from."""

ATTR_MESSAGING_OPERATION = "messaging.operation"
"""Messaging operation ("process" for single deliveries and batches)."""

ATTR_MESSAGING_MESSAGE_ID = "messaging.message_id"
"""Broker message id, empty when the publisher did not set one."""

ATTR_MESSAGING_CONSUMER_TAG = "messaging.rabbitmq.consumer_tag"
"""Consumer tag of the subscription that received the delivery."""

# Consumer-specific
ATTR_CONNECTION_TYPE = "amqpconsumer.connection_type"
"""Pool key of the connection carrying the delivery."""

ATTR_GROUP_KEY = "amqpconsumer.batch.group_key"
"""Group key of a flushed batch."""

ATTR_BATCH_SIZE = "amqpconsumer.batch.size"
"""Number of deliveries in a flushed batch."""

ATTR_OUTCOME = "amqpconsumer.outcome"
"""Acknowledgment applied: acked, nack-requeued, nack-discarded, retry-scheduled."""

ATTR_RETRYABLE = "amqpconsumer.retryable"
"""Whether the handler failure carried the retryable classification."""

ATTR_ERROR_TYPE = "amqpconsumer.error.type"
"""Exception class name of a handler or decode failure."""

__all__ = [
    "ATTR_BATCH_SIZE",
    "ATTR_CONNECTION_TYPE",
    "ATTR_ERROR_TYPE",
    "ATTR_GROUP_KEY",
    "ATTR_MESSAGING_CONSUMER_TAG",
    "ATTR_MESSAGING_DESTINATION",
    "ATTR_MESSAGING_MESSAGE_ID",
    "ATTR_MESSAGING_OPERATION",
    "ATTR_MESSAGING_SYSTEM",
    "ATTR_OUTCOME",
    "ATTR_RETRYABLE",
]
