import json
import logging
from typing import Any, Dict

from redis import Redis
from redis.exceptions import RedisError

log = logging.getLogger(__name__)


class NullNotifier:
    def publish(self, event: Dict[str, Any]) -> None:
        pass


class RedisNotifier:
    """Publishes command lifecycle events for dashboards. Best effort."""

    def __init__(self, url: str, channel: str = "commands", timeout: float = 1.0):
        # publish runs on the request path after the claim has committed
        self.redis = Redis.from_url(url, decode_responses=True,
                                    socket_connect_timeout=timeout, socket_timeout=timeout)
        self.channel = channel

    def publish(self, event: Dict[str, Any]) -> None:
        try:
            self.redis.publish(self.channel, json.dumps(event))
        except RedisError as e:
            log.warning("command event not published (%s): %s", event.get("event"), e)


def build_notifier(redis_url: str | None, channel: str):
    if not redis_url:
        return NullNotifier()
    return RedisNotifier(redis_url, channel)
