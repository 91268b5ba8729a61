"""
Consumers turning broker deliveries into application callbacks.

- Consumer: one delivery per handler call, timer-based retries
- DLXRetryConsumer: one delivery per handler call, retries through a TTL queue
- BatchConsumer: grouped deliveries per handler call
"""

from amqpconsumer.consumers.base import BaseConsumer
from amqpconsumer.consumers.batch import BatchConsumer
from amqpconsumer.consumers.consumer import Consumer
from amqpconsumer.consumers.dlx_retry import DLXRetryConsumer

__all__ = [
    "BaseConsumer",
    "BatchConsumer",
    "Consumer",
    "DLXRetryConsumer",
]
