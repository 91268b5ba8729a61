"""Single-message consumer.

Every delivery runs through:

    received -> decoding -> handling -> {acked | nack-requeue-scheduled | nack-discarded}

- Decode failures are terminal: the delivery is nacked without requeue and
  the handler is never called.
- Handler success acks.
- A retryable handler failure nacks with requeue after ``retry_delay``
  seconds. The in-flight permit is held for the whole delay.
- Any other handler failure nacks without requeue immediately.
- An error raised outside the handler discards the delivery, so nothing
  is left unsettled.

With ``auto_nack_timeout`` set, a guard task races the handler and nacks
(requeue) the delivery if the handler has not settled in time. Whichever
path reaches the Delivery first wins; the other becomes a no-op.

Example:
    >>> from amqpconsumer import ChannelPool, Consumer, ConsumerConfig, make_retryable
    >>>
    >>> async def on_message(content, delivery):
    ...     if not await inventory.reserve(content["sku"]):
    ...         raise make_retryable("inventory busy")
    >>>
    >>> consumer = Consumer(ConsumerConfig(queue_name="orders", on_message=on_message), pool)
    >>> await consumer.process()
"""

from __future__ import annotations

import asyncio
from typing import Any

from aio_pika.abc import AbstractIncomingMessage

from amqpconsumer.config import ConsumerConfig
from amqpconsumer.consumers.base import BaseConsumer
from amqpconsumer.delivery import Delivery
from amqpconsumer.exceptions import DecodeError, is_retryable
from amqpconsumer.log import redact_content
from amqpconsumer.observability import (
    ATTR_CONNECTION_TYPE,
    ATTR_ERROR_TYPE,
    ATTR_MESSAGING_CONSUMER_TAG,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_MESSAGE_ID,
    ATTR_MESSAGING_OPERATION,
    ATTR_MESSAGING_SYSTEM,
    ATTR_OUTCOME,
    ATTR_RETRYABLE,
    SpanKindEnum,
    Tracer,
)
from amqpconsumer.pool import ChannelPool
from amqpconsumer.serialization import decode_payload


class Consumer(BaseConsumer):
    """Consumes one queue, dispatching each delivery to ``on_message``."""

    _config: ConsumerConfig

    def __init__(
        self,
        config: ConsumerConfig,
        pool: ChannelPool,
        *,
        tracer: Tracer | None = None,
    ) -> None:
        super().__init__(config, pool, tracer=tracer)

    @property
    def config(self) -> ConsumerConfig:
        return self._config

    async def _on_message(self, message: AbstractIncomingMessage) -> None:
        delivery = Delivery(message)
        self._track()
        guard = self._arm_auto_nack(delivery)
        try:
            with self._tracer.span_with_kind(
                "amqpconsumer.consume",
                SpanKindEnum.CONSUMER,
                {
                    ATTR_MESSAGING_SYSTEM: "rabbitmq",
                    ATTR_MESSAGING_DESTINATION: self.queue_name,
                    ATTR_MESSAGING_OPERATION: "process",
                    ATTR_MESSAGING_MESSAGE_ID: delivery.message_id or "",
                    ATTR_MESSAGING_CONSUMER_TAG: self._consumer_tag or "",
                    ATTR_CONNECTION_TYPE: self._config.connection_type,
                },
            ) as span:
                try:
                    await self._process_delivery(delivery, guard)
                except Exception as e:
                    if guard is not None:
                        guard.cancel()
                    await self._on_unexpected_error(delivery, e)
                if span is not None:
                    self._annotate_span(span, delivery)
        finally:
            if guard is not None:
                guard.cancel()

    @staticmethod
    def _annotate_span(span: Any, delivery: Delivery) -> None:
        if delivery.outcome is not None:
            span.set_attribute(ATTR_OUTCOME, delivery.outcome.value)
        if delivery.error is not None:
            span.set_attribute(ATTR_ERROR_TYPE, type(delivery.error).__name__)
            span.set_attribute(ATTR_RETRYABLE, is_retryable(delivery.error))

    async def _process_delivery(
        self,
        delivery: Delivery,
        guard: asyncio.Task[None] | None,
    ) -> None:
        delivery.status = "decoding"
        try:
            content = await decode_payload(delivery.body, self._config.crypto)
        except DecodeError as e:
            delivery.error = e
            if guard is not None:
                guard.cancel()
            await self._on_decode_error(delivery, e)
            return

        delivery.status = "handling"
        assert self._config.on_message is not None
        try:
            await self._config.on_message(content, delivery)
        except Exception as e:
            if guard is not None:
                guard.cancel()
            delivery.status = "failed"
            delivery.error = e
            await self._on_handler_error(delivery, content, e)
            return

        if guard is not None:
            guard.cancel()
        delivery.status = "handled"
        await self._ack(delivery)

    # =========================================================================
    # Dispositions
    # =========================================================================

    async def _discard(self, delivery: Delivery) -> bool:
        """Remove a delivery that must never be redelivered."""
        return await self._nack(delivery, requeue=False)

    async def _on_decode_error(self, delivery: Delivery, error: DecodeError) -> None:
        self._stats.decode_failures += 1
        self._record_error()
        await self._discard(delivery)
        self._logger.error(
            "Consumer error finish",
            extra={
                "queue": self.queue_name,
                "error": str(error),
                "error_type": type(error).__name__,
                "delivery_tag": delivery.delivery_tag,
            },
        )

    async def _on_handler_error(self, delivery: Delivery, content: Any, error: Exception) -> None:
        self._record_error()
        if delivery.settled:
            # Auto-nack already returned the delivery to the broker.
            self._logger.debug(
                "Handler failed after delivery was settled",
                extra={"queue": self.queue_name, "error": str(error)},
            )
            return
        if is_retryable(error):
            await self._on_retryable_error(delivery, content, error)
        else:
            await self._on_fatal_error(delivery, content, error)

    async def _on_retryable_error(self, delivery: Delivery, content: Any, error: Exception) -> None:
        self._stats.retries_scheduled += 1
        self._log_retry(delivery, content, error)
        self._spawn(self._delayed_nack(delivery), name=f"retry-{delivery.delivery_tag}")

    async def _delayed_nack(self, delivery: Delivery) -> None:
        await asyncio.sleep(self._config.retry_delay)
        await self._nack(delivery, requeue=True)

    async def _on_fatal_error(self, delivery: Delivery, content: Any, error: Exception) -> None:
        await self._discard(delivery)
        self._logger.error(
            "Consumer error finish",
            extra={
                "queue": self.queue_name,
                "error": str(error),
                "error_type": type(error).__name__,
                "error_data": getattr(error, "data", None),
                "content": redact_content(content, str(error), self._config.logger_rules),
            },
        )

    async def _on_unexpected_error(self, delivery: Delivery, error: Exception) -> None:
        """Settle a delivery whose processing failed outside the handler."""
        self._record_error()
        if delivery.error is None:
            delivery.error = error
        delivery.status = "failed"
        self._logger.error(
            f"Unexpected error processing delivery: {error}",
            exc_info=True,
            extra={
                "queue": self.queue_name,
                "error_type": type(error).__name__,
                "delivery_tag": delivery.delivery_tag,
            },
        )
        if not delivery.settled:
            await self._discard(delivery)

    def _log_retry(self, delivery: Delivery, content: Any, error: Exception) -> None:
        extra: dict[str, Any] = {
            "queue": self.queue_name,
            "error": str(error),
            "error_type": type(error).__name__,
            "code": getattr(error, "code", None),
            "retry_delay": self._config.retry_delay,
            "retryable": True,
        }
        if self._config.log_retry_content:
            extra["content"] = redact_content(content, str(error), self._config.logger_rules)
        self._logger.warning("Consumer error retry", extra=extra)

    # =========================================================================
    # Auto-nack guard
    # =========================================================================

    def _arm_auto_nack(self, delivery: Delivery) -> asyncio.Task[None] | None:
        timeout = self._config.auto_nack_timeout
        if timeout is None:
            return None
        return self._spawn(
            self._auto_nack(delivery, timeout),
            name=f"auto-nack-{delivery.delivery_tag}",
        )

    async def _auto_nack(self, delivery: Delivery, timeout: float) -> None:
        await asyncio.sleep(timeout)
        if delivery.settled:
            return
        self._logger.warning(
            "Consumer auto nack",
            extra={
                "queue": self.queue_name,
                "status": delivery.status,
                "delivery_tag": delivery.delivery_tag,
                "auto_nack_timeout": timeout,
            },
        )
        if await self._nack(delivery, requeue=True):
            self._stats.auto_nacked += 1


__all__ = ["Consumer"]
