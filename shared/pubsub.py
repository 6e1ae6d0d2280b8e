import logging
from typing import List

import redis

from .events import Event

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "global:announcements"


def tournament_channel(tournament_id: str) -> str:
    return f"tournament:{tournament_id}:events"


class EventPublisher:
    """
    Fans events out over Redis pub/sub and keeps a short per-tournament log.
    Without a Redis client every call is a no-op, so callers never branch.
    """

    LOG_SIZE = 1000

    def __init__(self, redis_client: redis.Redis = None):
        self.redis = redis_client

    def publish(self, event: Event):
        if not self.redis:
            return

        payload = event.to_json()
        channel = tournament_channel(event.tournament_id) if event.tournament_id else GLOBAL_CHANNEL
        try:
            self.redis.publish(channel, payload)
            if event.tournament_id:
                key = f"tournament:{event.tournament_id}:event_log"
                self.redis.lpush(key, payload)
                self.redis.ltrim(key, 0, self.LOG_SIZE - 1)
        except redis.RedisError as e:
            # Events are advisory; the database write already succeeded.
            logger.error(f"Failed to publish {event.to_dict()['type']} on {channel}: {e}")

    def get_recent_events(self, tournament_id: str, count: int = 50) -> List[Event]:
        if not self.redis:
            return []
        key = f"tournament:{tournament_id}:event_log"
        return [Event.from_json(e) for e in self.redis.lrange(key, 0, count - 1)]
