from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from redis.asyncio import Redis


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackplaneMessage:
    # room=None means every connection on every process.
    origin: str
    event: str
    data: Any
    room: str | None = None
    exclude: str | None = None

    def to_json(self) -> str:
        return json.dumps(
            {
                "origin": self.origin,
                "event": self.event,
                "data": self.data,
                "room": self.room,
                "exclude": self.exclude,
            }
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "BackplaneMessage":
        payload = json.loads(raw)
        if not isinstance(payload, dict) or not payload.get("origin") or not payload.get("event"):
            raise ValueError("malformed backplane message")
        return cls(
            origin=str(payload["origin"]),
            event=str(payload["event"]),
            data=payload.get("data"),
            room=payload.get("room"),
            exclude=payload.get("exclude"),
        )


Handler = Callable[[BackplaneMessage], Awaitable[None]]


class Backplane(Protocol):
    async def start(self, handler: Handler) -> None: ...

    async def publish(self, message: BackplaneMessage) -> None: ...

    async def aclose(self) -> None: ...


class LocalBackplane:
    # Single-process deployments: nothing to relay.

    async def start(self, handler: Handler) -> None:
        return None

    async def publish(self, message: BackplaneMessage) -> None:
        return None

    async def aclose(self) -> None:
        return None


class InMemoryBus:
    """Shared in-process bus standing in for pub/sub when several hubs run in
    one interpreter (tests, local multi-node experiments)."""

    def __init__(self) -> None:
        self._handlers: list[Handler] = []

    def backplane(self) -> "InMemoryBackplane":
        return InMemoryBackplane(self)

    def subscribe(self, handler: Handler) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: Handler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def publish(self, raw: str) -> None:
        # Serialize to mirror the wire path; a failing subscriber does not stop the others.
        for handler in list(self._handlers):
            try:
                await handler(BackplaneMessage.from_json(raw))
            except Exception:  # noqa: BLE001 - best-effort delivery
                logger.exception("backplane_handler_failed")


class InMemoryBackplane:
    def __init__(self, bus: InMemoryBus) -> None:
        self._bus = bus
        self._handler: Handler | None = None

    async def start(self, handler: Handler) -> None:
        self._handler = handler
        self._bus.subscribe(handler)

    async def publish(self, message: BackplaneMessage) -> None:
        await self._bus.publish(message.to_json())

    async def aclose(self) -> None:
        if self._handler is not None:
            self._bus.unsubscribe(self._handler)
            self._handler = None


class RedisBackplane:
    """Redis pub/sub relay between chat processes.

    At-most-once: publish failures and malformed messages are logged and
    dropped. Messages are never replayed.
    """

    def __init__(self, redis: Redis, *, channel: str, poll_timeout_s: float = 1.0) -> None:
        self._redis = redis
        self._channel = channel
        self._poll_timeout_s = poll_timeout_s
        self._pubsub = None
        self._task: asyncio.Task | None = None

    @classmethod
    def from_url(cls, url: str, *, channel: str) -> "RedisBackplane":
        return cls(Redis.from_url(url, encoding="utf-8", decode_responses=True), channel=channel)

    async def start(self, handler: Handler) -> None:
        self._pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
        await self._pubsub.subscribe(self._channel)
        self._task = asyncio.create_task(self._reader(handler))
        logger.info("backplane_subscribed channel=%s", self._channel)

    async def _reader(self, handler: Handler) -> None:
        while True:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=self._poll_timeout_s,
                )
            except Exception as exc:  # noqa: BLE001 - keep the reader alive across Redis hiccups
                logger.warning("backplane_read_failed error=%s", type(exc).__name__)
                await asyncio.sleep(self._poll_timeout_s)
                continue
            if message is None or message.get("type") != "message":
                continue
            try:
                parsed = BackplaneMessage.from_json(message["data"])
            except ValueError:
                logger.warning("backplane_message_malformed channel=%s", self._channel)
                continue
            try:
                await handler(parsed)
            except Exception:  # noqa: BLE001
                logger.exception("backplane_handler_failed event=%s", parsed.event)

    async def publish(self, message: BackplaneMessage) -> None:
        try:
            await self._redis.publish(self._channel, message.to_json())
        except Exception as exc:  # noqa: BLE001 - backplane loss only degrades realtime delivery
            logger.warning("backplane_publish_failed event=%s error=%s", message.event, type(exc).__name__)

    async def aclose(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()
            self._pubsub = None
        await self._redis.aclose()
