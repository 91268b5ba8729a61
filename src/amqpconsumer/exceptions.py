"""Library exceptions for the amqpconsumer package.

The hierarchy mirrors how a failure is dispositioned:

- ConfigurationError: programming or setup mistakes, raised synchronously
  and never retried.
- DecodeError: a delivery (or one member of a batch) could not be turned
  into a JSON value. Always terminal for that delivery.
- ChannelClosedError: the broker channel went away. Fatal to the process.
- RetryableError: the only marker consulted when deciding whether a handler
  failure deserves a delayed redelivery.

Example:
    >>> from amqpconsumer.exceptions import RetryableError, decorate, is_retryable
    >>>
    >>> async def on_message(content, delivery):
    ...     try:
    ...         await call_downstream(content)
    ...     except TimeoutError as e:
    ...         raise decorate(e) from e
"""

from __future__ import annotations

from typing import Any


class AMQPConsumerError(Exception):
    """Base exception for amqpconsumer library."""

    pass


class ConfigurationError(AMQPConsumerError):
    """Raised when a consumer or the pool is configured inconsistently."""

    pass


class NoConnectionError(ConfigurationError):
    """Raised when a channel is requested before a connection exists."""

    def __init__(self, connection_type: str) -> None:
        self.connection_type = connection_type
        super().__init__(f"No RabbitMQ connection for connection type '{connection_type}'")


class NoQueueNameError(ConfigurationError):
    """Raised when a queue binding is requested without a queue name."""

    def __init__(self) -> None:
        super().__init__("No RabbitMQ queue")


class UnknownConnectionTypeError(ConfigurationError):
    """Raised when no ConnectionConfig is registered for a connection type."""

    def __init__(self, connection_type: str) -> None:
        self.connection_type = connection_type
        super().__init__(f"No connection configured for connection type '{connection_type}'")


class DecodeError(AMQPConsumerError):
    """Raised when a payload cannot be decoded, decrypted or parsed as JSON."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.cause = cause
        super().__init__(message)


class ChannelClosedError(AMQPConsumerError):
    """Raised (or logged) when the broker closes a consumer's channel."""

    def __init__(self, queue_name: str, reason: BaseException | None = None) -> None:
        self.queue_name = queue_name
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"[AMQP] Channel closed for queue '{queue_name}'{detail}")


class RetryableError(AMQPConsumerError):
    """A handler failure classified as transient.

    Consumers redeliver a delivery whose handler raised a RetryableError
    after the configured retry delay. Every other exception is treated as
    terminal.

    Attributes:
        code: Optional application-defined error code.
        retryable: Classification flag read by is_retryable().
        data: Optional structured context included in failure logs.
    """

    def __init__(
        self,
        message: str,
        code: Any = None,
        *,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data
        self.retryable = True

    @classmethod
    def decorate(cls, error: BaseException) -> RetryableError:
        """Classify an existing error as retryable. See decorate()."""
        return decorate(error)

    @staticmethod
    def is_retryable(error: BaseException) -> bool:
        """Read the classification. See is_retryable()."""
        return is_retryable(error)


def make_retryable(message: str, code: Any = None) -> RetryableError:
    """Create a new error pre-classified as retryable."""
    return RetryableError(message, code)


def decorate(error: BaseException) -> RetryableError:
    """Return a retryable variant of ``error``.

    The original error is kept as ``__cause__``; its message, ``code`` and
    ``data`` attributes carry over. An error that is already retryable is
    returned as-is.

    Args:
        error: Any exception instance.

    Returns:
        A RetryableError wrapping the given error.
    """
    if isinstance(error, RetryableError):
        return error
    wrapped = RetryableError(
        str(error),
        getattr(error, "code", None),
        data=getattr(error, "data", None),
    )
    wrapped.__cause__ = error
    return wrapped


def is_retryable(error: BaseException) -> bool:
    """Return True only for errors carrying the retryable classification."""
    return isinstance(error, RetryableError) and error.retryable is True


__all__ = [
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
