"""
Observability utilities for amqpconsumer.

Provides the tracer abstraction injected into consumers and the standard
span attribute names they use.

Example:
    >>> from amqpconsumer.observability import MockTracer
    >>>
    >>> tracer = MockTracer()
    >>> consumer = Consumer(config, pool=pool, tracer=tracer)
    >>> ...
    >>> assert "amqpconsumer.consume" in tracer.span_names
"""

from amqpconsumer.observability.attributes import (
    ATTR_BATCH_SIZE,
    ATTR_CONNECTION_TYPE,
    ATTR_ERROR_TYPE,
    ATTR_GROUP_KEY,
    ATTR_MESSAGING_CONSUMER_TAG,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_MESSAGE_ID,
    ATTR_MESSAGING_OPERATION,
    ATTR_MESSAGING_SYSTEM,
    ATTR_OUTCOME,
    ATTR_RETRYABLE,
)
from amqpconsumer.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracer (composition-based API)
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "SpanKindEnum",
    "create_tracer",
    # Attributes
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
