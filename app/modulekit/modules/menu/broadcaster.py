from __future__ import annotations

import json
import logging
import queue
import threading
import time
from collections.abc import Iterator
from datetime import datetime, timezone

from app.modulekit.sse import HEARTBEAT, format_sse

logger = logging.getLogger(__name__)

HEARTBEAT_SECONDS = 15.0
RECONNECT_SECONDS = 5.0


class Broadcaster:
    """
    In-process fan-out. Each subscriber gets its own bounded queue; a subscriber
    that stops draining is dropped instead of blocking publishers.
    """

    def __init__(self, max_queue: int = 100) -> None:
        self._subscribers: set[queue.Queue] = set()
        self._lock = threading.Lock()
        self._max_queue = max_queue

    def subscribe(self) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=self._max_queue)
        with self._lock:
            self._subscribers.add(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            self._subscribers.discard(q)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @staticmethod
    def _message(change: str, data: dict) -> dict:
        return {"type": change, "data": data, "timestamp": datetime.now(timezone.utc).isoformat()}

    def publish(self, change: str, data: dict) -> int:
        return self.deliver(self._message(change, data))

    def deliver(self, message: dict) -> int:
        """Hand `message` to every local subscriber; returns how many took it."""
        with self._lock:
            targets = list(self._subscribers)
        delivered = 0
        for q in targets:
            try:
                q.put_nowait(message)
                delivered += 1
            except queue.Full:
                logger.warning("Dropping slow menu subscriber")
                self.unsubscribe(q)
        return delivered


class RedisBroadcaster(Broadcaster):
    """
    Fan-out across worker processes. Publishers push to a Redis channel; each
    process runs one listener thread that relays the channel to its local
    subscribers.
    """

    def __init__(self, client, channel: str = "menu:updates", max_queue: int = 100) -> None:
        super().__init__(max_queue=max_queue)
        self._client = client
        self.channel = channel
        self._listener: threading.Thread | None = None
        self._start_lock = threading.Lock()

    @classmethod
    def from_url(cls, url: str, channel: str = "menu:updates") -> "RedisBroadcaster":
        import redis

        return cls(redis.Redis.from_url(url, socket_connect_timeout=2), channel)

    def subscribe(self) -> queue.Queue:
        self._ensure_listener()
        return super().subscribe()

    def publish(self, change: str, data: dict) -> int:
        """Returns the number of listening processes, not subscribers."""
        import redis

        message = self._message(change, data)
        try:
            return int(self._client.publish(self.channel, json.dumps(message)))
        except redis.exceptions.RedisError as e:
            logger.warning("Menu broadcast via redis failed (%s); delivering locally", e)
            return self.deliver(message)

    def relay(self, raw) -> int:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed menu broadcast payload")
            return 0
        if not isinstance(message, dict):
            return 0
        return self.deliver(message)

    def _ensure_listener(self) -> None:
        with self._start_lock:
            if self._listener is not None and self._listener.is_alive():
                return
            self._listener = threading.Thread(target=self._listen, name="menu-broadcast", daemon=True)
            self._listener.start()

    def _listen(self) -> None:
        import redis

        while True:
            try:
                pubsub = self._client.pubsub(ignore_subscribe_messages=True)
                pubsub.subscribe(self.channel)
                while True:
                    item = pubsub.get_message(timeout=1.0)
                    if item is not None:
                        self.relay(item["data"])
            except redis.exceptions.RedisError as e:
                logger.warning("Menu broadcast listener lost redis (%s); reconnecting", e)
                time.sleep(RECONNECT_SECONDS)


def broadcaster_from_config(config: dict) -> Broadcaster:
    """Redis pub/sub when REDIS_URL is reachable, otherwise in-process only."""
    url = (config.get("REDIS_URL") or "").strip()
    if url and config.get("MENU_BROADCAST_BACKEND", "redis") == "redis":
        import redis

        try:
            b = RedisBroadcaster.from_url(url)
            b._client.ping()
            return b
        except redis.exceptions.RedisError as e:
            logger.warning("Menu broadcaster limited to this process (redis unavailable: %s)", e)
    return Broadcaster()


def event_stream(
    broadcaster: Broadcaster,
    *,
    event: str = "menu-updated",
    heartbeat: float = HEARTBEAT_SECONDS,
    max_events: int | None = None,
) -> Iterator[str]:
    q = broadcaster.subscribe()
    sent = 0
    try:
        yield format_sse({"type": "connected"}, event="connected")
        while max_events is None or sent < max_events:
            try:
                message = q.get(timeout=heartbeat)
            except queue.Empty:
                yield HEARTBEAT
                continue
            yield format_sse(message, event=event)
            sent += 1
    finally:
        broadcaster.unsubscribe(q)
