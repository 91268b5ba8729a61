"""
Integration tests for the consumers against a real RabbitMQ broker.

These tests verify:
- Acknowledgment of handled deliveries
- Discarding of malformed and terminally failing deliveries
- Dead-letter retry round trip through the TTL queue
- Batch grouping and graceful shutdown
- Channel pooling across consumers

Requirements:
- Docker must be running
- testcontainers package must be installed

Tests are automatically skipped if these requirements are not met.
"""

from __future__ import annotations

import asyncio
import subprocess
from collections.abc import AsyncGenerator, Generator
from typing import Any
from uuid import uuid4

import aio_pika
import pytest
import pytest_asyncio

from amqpconsumer import (
    BatchConsumer,
    BatchConsumerConfig,
    ChannelPool,
    ConnectionConfig,
    Consumer,
    ConsumerConfig,
    DLXRetryConsumer,
    make_retryable,
)
from amqpconsumer.serialization import json_dumps

# ============================================================================
# Skip Conditions
# ============================================================================

TESTCONTAINERS_AVAILABLE = False
try:
    from testcontainers.core.container import DockerContainer
    from testcontainers.core.waiting_utils import wait_for_logs

    TESTCONTAINERS_AVAILABLE = True
except ImportError:
    DockerContainer = None  # type: ignore[assignment, misc]
    wait_for_logs = None  # type: ignore[assignment]


def is_docker_available() -> bool:
    """Check if Docker is available for running containers."""
    try:
        result = subprocess.run(["docker", "info"], capture_output=True, timeout=5)
        return result.returncode == 0
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError):
        return False


DOCKER_AVAILABLE = is_docker_available()

pytestmark = [
    pytest.mark.integration,
    pytest.mark.rabbitmq,
    pytest.mark.skipif(
        not (TESTCONTAINERS_AVAILABLE and DOCKER_AVAILABLE),
        reason="RabbitMQ test infrastructure not available (requires testcontainers and docker)",
    ),
]


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(scope="module")
def rabbitmq_container() -> Generator[Any, None, None]:
    """Start one RabbitMQ container for the module."""
    container = DockerContainer("rabbitmq:3-management")
    container.with_exposed_ports(5672)
    container.with_env("RABBITMQ_DEFAULT_USER", "guest")
    container.with_env("RABBITMQ_DEFAULT_PASS", "guest")
    container.start()
    wait_for_logs(container, "started TCP listener on", timeout=60)

    yield container

    container.stop()


@pytest.fixture(scope="module")
def rabbitmq_url(rabbitmq_container: Any) -> str:
    host = rabbitmq_container.get_container_host_ip()
    port = rabbitmq_container.get_exposed_port(5672)
    return f"amqp://guest:guest@{host}:{port}/"


@pytest_asyncio.fixture
async def live_pool(rabbitmq_url: str) -> AsyncGenerator[ChannelPool, None]:
    pool = ChannelPool({"default": ConnectionConfig(url=rabbitmq_url)})
    yield pool
    await pool.destroy()


@pytest_asyncio.fixture
async def publisher(rabbitmq_url: str) -> AsyncGenerator[Any, None]:
    """Publish JSON bodies to a queue through the default exchange."""
    connection = await aio_pika.connect(rabbitmq_url)
    channel = await connection.channel()

    async def publish(
        queue_name: str,
        data: Any = None,
        *,
        body: bytes | None = None,
        **headers: Any,
    ) -> None:
        payload = body if body is not None else json_dumps(data).encode("utf-8")
        await channel.default_exchange.publish(
            aio_pika.Message(body=payload, headers=headers or None),
            routing_key=queue_name,
        )

    yield publish

    await connection.close()


@pytest.fixture
def queue_name() -> str:
    return f"test-{uuid4().hex[:8]}"


def consumer_config(queue_name: str, on_message: Any, **kwargs: Any) -> ConsumerConfig:
    kwargs.setdefault("enable_tracing", False)
    kwargs.setdefault("exit_on_channel_close", False)
    return ConsumerConfig(queue_name=queue_name, on_message=on_message, **kwargs)


async def wait_for(predicate: Any, timeout: float = 10.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise TimeoutError("condition not met in time")
        await asyncio.sleep(0.05)


# ============================================================================
# Consumer
# ============================================================================


class TestConsumer:
    async def test_handled_delivery_is_acked(self, live_pool, publisher, queue_name) -> None:
        received: list[Any] = []

        async def on_message(content: Any, delivery: Any) -> None:
            received.append(content)

        consumer = Consumer(
            consumer_config(queue_name, on_message),
            live_pool,
        )
        await consumer.process()
        await publisher(queue_name, {"order_id": 1})

        await wait_for(lambda: consumer.stats.acked == 1)

        assert received == [{"order_id": 1}]
        await consumer.shutdown(timeout=5)

    async def test_malformed_delivery_is_discarded(self, live_pool, publisher, queue_name) -> None:
        received: list[Any] = []

        async def on_message(content: Any, delivery: Any) -> None:
            received.append(content)

        consumer = Consumer(
            consumer_config(queue_name, on_message),
            live_pool,
        )
        await consumer.process()
        await publisher(queue_name, body=b"not json")

        await wait_for(lambda: consumer.stats.discarded == 1)

        assert received == []
        await consumer.shutdown(timeout=5)

    async def test_retryable_failure_is_redelivered(self, live_pool, publisher, queue_name) -> None:
        attempts: list[bool] = []

        async def on_message(content: Any, delivery: Any) -> None:
            attempts.append(delivery.message.redelivered)
            if len(attempts) == 1:
                raise make_retryable("try again")

        consumer = Consumer(
            ConsumerConfig(
                queue_name=queue_name,
                on_message=on_message,
                retry_delay=0.2,
                enable_tracing=False,
                exit_on_channel_close=False,
            ),
            live_pool,
        )
        await consumer.process()
        await publisher(queue_name, {})

        await wait_for(lambda: consumer.stats.acked == 1)

        assert attempts == [False, True]
        await consumer.shutdown(timeout=5)

    async def test_consumers_share_channel(self, live_pool, queue_name) -> None:
        async def on_message(content: Any, delivery: Any) -> None:
            return None

        first = Consumer(
            consumer_config(f"{queue_name}-a", on_message),
            live_pool,
        )
        second = Consumer(
            consumer_config(f"{queue_name}-b", on_message),
            live_pool,
        )

        await asyncio.gather(first.process(), second.process())

        assert first._binding is not None and second._binding is not None
        assert first._binding.channel is second._binding.channel
        await first.shutdown(timeout=5)
        await second.shutdown(timeout=5)


# ============================================================================
# DLXRetryConsumer
# ============================================================================


class TestDLXRetryConsumer:
    async def test_retry_through_ttl_queue(self, live_pool, publisher, queue_name) -> None:
        attempts = 0

        async def on_message(content: Any, delivery: Any) -> None:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise make_retryable("try again")

        consumer = DLXRetryConsumer(
            ConsumerConfig(
                queue_name=queue_name,
                on_message=on_message,
                retry_delay=0.5,
                enable_tracing=False,
                exit_on_channel_close=False,
            ),
            live_pool,
            handle_sigterm=False,
        )
        await consumer.process()
        await publisher(queue_name, {"id": 1})

        await wait_for(lambda: consumer.stats.acked == 1)

        assert attempts == 2
        assert consumer.stats.dead_lettered == 1
        await consumer.shutdown(timeout=5)


# ============================================================================
# BatchConsumer
# ============================================================================


class TestBatchConsumer:
    async def test_group_is_handled_together(self, live_pool, publisher, queue_name) -> None:
        batches: list[tuple[Any, list[Any]]] = []

        async def on_messages(group_key: Any, contents: list[Any]) -> None:
            batches.append((group_key, contents))

        consumer = BatchConsumer(
            BatchConsumerConfig(
                queue_name=queue_name,
                on_messages=on_messages,
                batch_size=10,
                prefetch_count=10,
                batch_timeout=1.0,
                enable_tracing=False,
                exit_on_channel_close=False,
            ),
            live_pool,
        )
        await consumer.process()
        await publisher(queue_name, {"foo": "bar"}, groupBy="group")
        await publisher(queue_name, {"abc": "123"}, groupBy="group")

        await wait_for(lambda: consumer.stats.acked == 2)

        assert batches == [("group", [{"foo": "bar"}, {"abc": "123"}])]
        assert consumer.is_finished()
        await consumer.shutdown(timeout=5)

    async def test_restart_after_stop(self, live_pool, publisher, queue_name) -> None:
        batches: list[tuple[Any, list[Any]]] = []

        async def on_messages(group_key: Any, contents: list[Any]) -> None:
            batches.append((group_key, contents))

        consumer = BatchConsumer(
            BatchConsumerConfig(
                queue_name=queue_name,
                on_messages=on_messages,
                batch_size=1,
                prefetch_count=1,
                enable_tracing=False,
                exit_on_channel_close=False,
            ),
            live_pool,
        )
        first = await consumer.process()
        assert await consumer.stop_consumption() is True
        await consumer.wait_until_finished(timeout=5)

        second = await consumer.process()
        await publisher(queue_name, {"n": 1}, groupBy="g")
        await wait_for(lambda: consumer.stats.acked == 1)

        assert first != second
        assert batches == [("g", [{"n": 1}])]
        await consumer.shutdown(timeout=5)
