"""Batching consumer.

Deliveries are grouped by the ``group_key_header`` header and handed to
``on_messages(group_key, contents)`` as a unit once a group holds
``batch_size`` deliveries or its oldest delivery waited ``batch_timeout``
seconds. The group is dispositioned atomically:

- any member fails to decode: every member is nacked without requeue and
  the handler is not called
- handler success: every member is acked
- retryable handler failure: every member is nacked with requeue after
  ``retry_delay``; the group stays in flight until then
- other handler failure: every member is nacked without requeue at once

The in-flight counter covers every delivery received and not yet
acknowledged. After stop_consumption(), callers poll is_finished() or await
wait_until_finished() to detect quiescence.
"""

from __future__ import annotations

import asyncio
from collections.abc import Hashable
from typing import Any

from aio_pika.abc import AbstractIncomingMessage

from amqpconsumer.batching import ObjectBatcher
from amqpconsumer.config import BatchConsumerConfig
from amqpconsumer.consumers.base import BaseConsumer
from amqpconsumer.delivery import Delivery
from amqpconsumer.exceptions import DecodeError, is_retryable
from amqpconsumer.observability import (
    ATTR_BATCH_SIZE,
    ATTR_CONNECTION_TYPE,
    ATTR_GROUP_KEY,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_OPERATION,
    ATTR_MESSAGING_SYSTEM,
    SpanKindEnum,
    Tracer,
)
from amqpconsumer.pool import ChannelPool
from amqpconsumer.serialization import decode_payload


class BatchConsumer(BaseConsumer):
    """Consumes one queue, dispatching grouped deliveries to ``on_messages``.

    Example:
        >>> async def on_messages(group_key, contents):
        ...     await warehouse.bulk_insert(group_key, contents)
        >>>
        >>> config = BatchConsumerConfig(
        ...     queue_name="events",
        ...     on_messages=on_messages,
        ...     batch_size=100,
        ...     prefetch_count=500,
        ... )
        >>> consumer = BatchConsumer(config, pool)
        >>> await consumer.process()
        >>> ...
        >>> await consumer.stop_consumption()
        >>> await consumer.wait_until_finished(timeout=30)
    """

    _config: BatchConsumerConfig

    def __init__(
        self,
        config: BatchConsumerConfig,
        pool: ChannelPool,
        *,
        tracer: Tracer | None = None,
    ) -> None:
        super().__init__(config, pool, tracer=tracer)
        self._batcher: ObjectBatcher[Delivery] = ObjectBatcher(
            self._handle_collected_messages,
            batch_size=config.batch_size,
            batch_timeout=config.batch_timeout,
        )

    @property
    def config(self) -> BatchConsumerConfig:
        return self._config

    @property
    def pending_count(self) -> int:
        """Deliveries accumulated and not yet handed to the handler."""
        return self._batcher.pending_count

    async def _on_message(self, message: AbstractIncomingMessage) -> None:
        delivery = Delivery(message)
        self._track()
        delivery.status = "batching"
        self._batcher.add(delivery.group_key(self._config.group_key_header), delivery)

    async def _before_drain(self) -> None:
        self._batcher.flush_all()
        await self._batcher.wait_flushed()

    # =========================================================================
    # Flush handling
    # =========================================================================

    async def _handle_collected_messages(
        self,
        group_key: Hashable,
        deliveries: list[Delivery],
    ) -> None:
        self._stats.batches_flushed += 1
        with self._tracer.span_with_kind(
            "amqpconsumer.batch.flush",
            SpanKindEnum.CONSUMER,
            {
                ATTR_MESSAGING_SYSTEM: "rabbitmq",
                ATTR_MESSAGING_DESTINATION: self.queue_name,
                ATTR_MESSAGING_OPERATION: "process",
                ATTR_CONNECTION_TYPE: self._config.connection_type,
                ATTR_GROUP_KEY: "" if group_key is None else str(group_key),
                ATTR_BATCH_SIZE: len(deliveries),
            },
        ):
            try:
                await self._process_group(group_key, deliveries)
            except Exception as e:
                await self._on_unexpected_error(group_key, deliveries, e)

    async def _process_group(self, group_key: Any, deliveries: list[Delivery]) -> None:
        count = len(deliveries)
        contents: list[Any] = []
        for delivery in deliveries:
            delivery.status = "decoding"
            try:
                contents.append(await decode_payload(delivery.body, self._config.crypto))
            except DecodeError as e:
                self._stats.decode_failures += 1
                self._record_error()
                await self._discard_all(deliveries)
                self._logger.error(
                    "BatchConsumer error finish",
                    extra={
                        "queue": self.queue_name,
                        "group_by": group_key,
                        "count": count,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                return

        for delivery in deliveries:
            delivery.status = "handling"
        assert self._config.on_messages is not None
        try:
            await self._config.on_messages(group_key, contents)
        except Exception as e:
            self._record_error()
            if is_retryable(e):
                self._stats.retries_scheduled += 1
                self._logger.warning(
                    "BatchConsumer error retry",
                    extra={
                        "queue": self.queue_name,
                        "group_by": group_key,
                        "count": count,
                        "error": str(e),
                        "code": getattr(e, "code", None),
                        "retry_delay": self._config.retry_delay,
                    },
                )
                self._spawn(self._delayed_nack_all(deliveries), name=f"batch-retry-{group_key}")
            else:
                await self._discard_all(deliveries)
                self._logger.error(
                    "BatchConsumer error finish",
                    extra={
                        "queue": self.queue_name,
                        "group_by": group_key,
                        "count": count,
                        "error": str(e),
                        "error_type": type(e).__name__,
                        "error_data": getattr(e, "data", None),
                    },
                )
            return

        for delivery in deliveries:
            await self._ack(delivery)
        self._logger.info(
            "BatchConsumer-success",
            extra={"queue": self.queue_name, "group_by": group_key, "count": count},
        )

    async def _on_unexpected_error(
        self,
        group_key: Any,
        deliveries: list[Delivery],
        error: Exception,
    ) -> None:
        self._record_error()
        self._logger.error(
            f"Unexpected error processing batch: {error}",
            exc_info=True,
            extra={
                "queue": self.queue_name,
                "group_by": group_key,
                "count": len(deliveries),
                "error_type": type(error).__name__,
            },
        )
        for delivery in deliveries:
            if delivery.settled:
                continue
            try:
                await self._nack(delivery, requeue=False)
            except Exception as e:
                self._logger.error(
                    f"Failed to discard delivery: {e}",
                    extra={"queue": self.queue_name, "delivery_tag": delivery.delivery_tag},
                )

    async def _discard_all(self, deliveries: list[Delivery]) -> None:
        for delivery in deliveries:
            await self._nack(delivery, requeue=False)

    async def _delayed_nack_all(self, deliveries: list[Delivery]) -> None:
        await asyncio.sleep(self._config.retry_delay)
        for delivery in deliveries:
            await self._nack(delivery, requeue=True)


__all__ = ["BatchConsumer"]
