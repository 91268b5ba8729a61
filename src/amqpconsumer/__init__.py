"""
amqpconsumer - RabbitMQ consumption layer for asyncio applications.

This library provides:
- A connection/channel pool shared by every consumer of a connection type
- A single-message consumer with timer-based retries and an auto-nack guard
- A dead-letter retry consumer scheduling retries through a TTL queue
- A batching consumer grouping deliveries by a header
- A retryable-error marker deciding between redelivery and discard
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("amqp-consumer")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

# Batching primitive
from amqpconsumer.batching import ObjectBatcher

# Configuration
from amqpconsumer.config import (
    BatchConsumerConfig,
    ConnectionConfig,
    ConsumerConfig,
    QueueOptions,
)

# Consumers
from amqpconsumer.consumers import (
    BaseConsumer,
    BatchConsumer,
    Consumer,
    DLXRetryConsumer,
)

# Crypto
from amqpconsumer.crypto import CryptoLib, FernetCrypto
from amqpconsumer.delivery import Delivery, DeliveryOutcome

# Exceptions
from amqpconsumer.exceptions import (
    AMQPConsumerError,
    ChannelClosedError,
    ConfigurationError,
    DecodeError,
    NoConnectionError,
    NoQueueNameError,
    RetryableError,
    UnknownConnectionTypeError,
    decorate,
    is_retryable,
    make_retryable,
)

# Pool
from amqpconsumer.pool import ChannelPool, QueueBinding
from amqpconsumer.stats import ConsumerStats

__all__ = [
    "__version__",
    # Pool
    "ChannelPool",
    "QueueBinding",
    # Configuration
    "BatchConsumerConfig",
    "ConnectionConfig",
    "ConsumerConfig",
    "QueueOptions",
    # Consumers
    "BaseConsumer",
    "BatchConsumer",
    "Consumer",
    "DLXRetryConsumer",
    "ConsumerStats",
    # Deliveries
    "Delivery",
    "DeliveryOutcome",
    # Batching
    "ObjectBatcher",
    # Crypto
    "CryptoLib",
    "FernetCrypto",
    # Exceptions
    "AMQPConsumerError",
    "ChannelClosedError",
    "ConfigurationError",
    "DecodeError",
    "NoConnectionError",
    "NoQueueNameError",
    "RetryableError",
    "UnknownConnectionTypeError",
    "decorate",
    "is_retryable",
    "make_retryable",
]
