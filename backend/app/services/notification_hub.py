"""
Notification hub - fan-out of admin events over server-sent event streams

The hub is constructed in the application lifespan and kept on app.state;
routes reach it through request.app.state.notification_hub.

Delivery is best effort and at most once per connection: there is no
buffering for disconnected users and no replay on reconnect. Each stream
owns a bounded queue; a stream that is closed or saturated raises
StreamClosedError on send, is removed from the registry and is never
written to again.
"""
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from redis.exceptions import RedisError

from app.core.exceptions import StreamClosedError
from app.core.utils import utcnow

logger = logging.getLogger(__name__)

PING_FRAME = ": ping\n\n"
_CLOSE = object()


def format_event(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


class ClientStream:
    """One open SSE connection."""

    def __init__(self, user_id: str, role: Optional[str] = None, queue_size: int = 100):
        self.id = uuid4().hex
        self.user_id = user_id
        self.role = role
        self.connected_at = utcnow()
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

    def send(self, payload: Dict[str, Any]) -> None:
        if self.closed:
            raise StreamClosedError("Stream is closed", details={"stream_id": self.id})
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            self.close()
            raise StreamClosedError(
                "Stream queue is full, client is not reading",
                details={"stream_id": self.id, "user_id": self.user_id},
            )

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSE)

    async def events(self, ping_interval: float):
        """Yield SSE frames until the stream is closed; ping when idle."""
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=ping_interval)
            except asyncio.TimeoutError:
                if self.closed:
                    return
                yield PING_FRAME
                continue
            if item is _CLOSE:
                return
            yield format_event(item)


class NotificationHub:
    """
    Registry of open streams keyed by user id.

    A user may hold several streams (tabs, devices) up to max_per_user;
    registering beyond the cap closes the oldest first.
    """

    def __init__(self, max_per_user: int = 2, queue_size: int = 100, relay=None):
        self.max_per_user = max_per_user
        self.queue_size = queue_size
        self.relay = relay
        self._clients: Dict[str, List[ClientStream]] = {}

    def register(self, user_id, role: Optional[str] = None) -> ClientStream:
        key = str(user_id)
        stream = ClientStream(key, role, self.queue_size)
        streams = self._clients.setdefault(key, [])
        streams.append(stream)

        while len(streams) > self.max_per_user:
            oldest = streams.pop(0)
            oldest.close()
            logger.info(f"SSE user {key}: closed oldest stream {oldest.id} (limit {self.max_per_user})")

        logger.info(f"SSE client connected: user {key} ({role}), {len(streams)} stream(s)")
        self._deliver(stream, {
            "type": "connected",
            "user_id": key,
            "user_role": role,
            "timestamp": utcnow().isoformat(),
        })
        return stream

    def remove(self, user_id, stream: ClientStream) -> None:
        key = str(user_id)
        stream.close()
        streams = self._clients.get(key)
        if not streams:
            return
        if stream in streams:
            streams.remove(stream)
            logger.info(f"SSE client disconnected: user {key}, stream {stream.id}")
        if not streams:
            del self._clients[key]

    def _deliver(self, stream: ClientStream, payload: Dict[str, Any]) -> bool:
        try:
            stream.send(payload)
            return True
        except StreamClosedError as e:
            logger.info(f"Dropping SSE stream {stream.id} for user {stream.user_id}: {e.message}")
            self.remove(stream.user_id, stream)
            return False

    def unicast(self, user_id, payload: Dict[str, Any]) -> bool:
        """Send to every stream of one user. True if at least one accepted it."""
        streams = list(self._clients.get(str(user_id), []))
        delivered = False
        for stream in streams:
            if self._deliver(stream, payload):
                delivered = True
        return delivered

    def broadcast(self, payload: Dict[str, Any]) -> int:
        """Send to every connected user. Returns how many users were reached."""
        reached = 0
        for user_id in list(self._clients):
            if self.unicast(user_id, payload):
                reached += 1
        logger.debug(f"Broadcast {payload.get('type')} to {reached} user(s)")
        return reached

    async def publish(self, payload: Dict[str, Any]) -> None:
        """
        Broadcast across instances when a relay is attached.

        The relay's listener delivers the message back to this hub, so there
        is no local broadcast on the success path. While the listener is
        reconnecting the message is still published for the other instances
        and delivered here directly.
        """
        if self.relay is not None:
            try:
                await self.relay.publish(payload)
                if self.relay.listening:
                    return
                logger.warning("Notification relay listener is down, delivering locally")
            except RedisError as e:
                logger.warning(f"Notification relay publish failed, delivering locally: {e}")
        self.broadcast(payload)

    def total_clients(self) -> int:
        return sum(len(streams) for streams in self._clients.values())

    def user_client_count(self, user_id) -> int:
        return len(self._clients.get(str(user_id), []))

    def connected_user_ids(self) -> List[str]:
        return list(self._clients)

    def close_all(self) -> None:
        for user_id, streams in list(self._clients.items()):
            for stream in list(streams):
                self.remove(user_id, stream)


def new_order_event(order) -> Dict[str, Any]:
    return {
        "type": "new_order",
        "order_id": order.id,
        "order_number": order.order_number,
        "customer_name": order.customer_name,
        "total": float(order.total),
        "timestamp": utcnow().isoformat(),
    }
