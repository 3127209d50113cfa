"""
Redis pub/sub relay for the notification hub

With several API instances behind a load balancer, an admin's stream lives
on one instance while the order may be created on another. Broadcasts are
published on NOTIFICATION_CHANNEL and every instance's listener hands them
to its local hub.

A dropped subscription is retried with backoff and re-subscribed. While the
listener is down, `listening` is False and the hub also delivers locally.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional, Sequence

from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

RECONNECT_DELAYS = (1, 2, 5, 10, 30)


class RedisNotificationRelay:
    def __init__(
        self,
        redis_client,
        hub,
        channel: str,
        reconnect_delays: Sequence[float] = RECONNECT_DELAYS,
    ):
        self.redis = redis_client
        self.hub = hub
        self.channel = channel
        self.reconnect_delays = reconnect_delays
        self.listening = False
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None

    async def publish(self, payload: Dict[str, Any]) -> None:
        await self.redis.publish(self.channel, json.dumps(payload, default=str))

    async def _subscribe(self) -> None:
        self._pubsub = self.redis.pubsub()
        await self._pubsub.subscribe(self.channel)
        self.listening = True
        logger.info(f"Notification relay subscribed to {self.channel}")

    async def _close_pubsub(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            await pubsub.aclose()
        except RedisError as e:
            logger.debug(f"Ignoring error while closing dropped subscription: {e}")

    async def start(self) -> None:
        await self._subscribe()
        self._task = asyncio.create_task(self._listen())

    def handle_message(self, message: Dict[str, Any]) -> None:
        if message.get("type") != "message":
            return
        try:
            payload = json.loads(message["data"])
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed notification on {self.channel}: {e}")
            return
        self.hub.broadcast(payload)

    async def _listen(self) -> None:
        failures = 0
        while True:
            try:
                if self._pubsub is None:
                    await self._subscribe()
                async for message in self._pubsub.listen():
                    failures = 0
                    self.handle_message(message)
                reason = "subscription ended"
            except RedisError as e:
                reason = str(e)

            self.listening = False
            await self._close_pubsub()
            delay = self.reconnect_delays[min(failures, len(self.reconnect_delays) - 1)]
            failures += 1
            logger.error(
                f"Notification relay listener lost ({reason}), "
                f"retry {failures} in {delay}s"
            )
            await asyncio.sleep(delay)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.listening = False
        if self._pubsub is not None:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
            self._pubsub = None
        logger.info("Notification relay stopped")
