import logging
from dataclasses import dataclass
from typing import Optional

import redis

from .errors import RateLimitError
from .rbac import Role, get_user_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimit:
    max_attempts: int
    window_seconds: int
    block_seconds: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: Optional[int] = None


RATE_LIMITS = {
    'ADMIN_ACTIONS': RateLimit(max_attempts=30, window_seconds=5 * 60, block_seconds=10 * 60),
    'USER_REGISTRATION': RateLimit(max_attempts=3, window_seconds=60 * 60, block_seconds=2 * 60 * 60),
}


class RateLimiter:
    """
    Fixed-window rate limiter stored in Redis.

    Each identifier gets a counter key that expires with the window. Reaching
    the limit sets a separate block key so the caller stays blocked for the
    block duration even after the window rolls over.
    """

    def __init__(self, redis_client: redis.Redis = None, enabled: bool = True, prefix: str = 'ratelimit'):
        self.redis = redis_client
        self.enabled = enabled
        self.prefix = prefix

    @property
    def active(self) -> bool:
        return self.enabled and self.redis is not None

    def check(self, identifier: str, limit: RateLimit) -> RateLimitResult:
        if not self.active:
            return RateLimitResult(allowed=True, remaining=limit.max_attempts)

        block_key = f"{self.prefix}:block:{identifier}"
        count_key = f"{self.prefix}:count:{identifier}"

        blocked_for = self.redis.ttl(block_key)
        if blocked_for and blocked_for > 0:
            return RateLimitResult(allowed=False, remaining=0, retry_after=int(blocked_for))

        pipe = self.redis.pipeline()
        pipe.incr(count_key)
        pipe.expire(count_key, limit.window_seconds, nx=True)
        count, _ = pipe.execute()

        if count > limit.max_attempts:
            self.redis.set(block_key, 1, ex=limit.block_seconds)
            self.redis.delete(count_key)
            logger.warning(f"Rate limit exceeded for {identifier}")
            return RateLimitResult(allowed=False, remaining=0, retry_after=limit.block_seconds)

        return RateLimitResult(allowed=True, remaining=limit.max_attempts - count)

    def check_role_based(self, action: str, user=None, client_ip: str = None) -> RateLimitResult:
        """Apply the admin or public limit for an action, raising when blocked."""
        role = get_user_role(user)
        if user is not None and getattr(user, 'is_authenticated', False):
            key = f"{action}:user:{user.id}"
        else:
            key = f"{action}:ip:{client_ip or 'unknown'}"

        if role in (Role.ADMIN, Role.MANAGER):
            limit = RATE_LIMITS['ADMIN_ACTIONS']
        else:
            limit = RATE_LIMITS['USER_REGISTRATION']

        result = self.check(key, limit)
        if not result.allowed:
            raise RateLimitError(retry_after=result.retry_after)
        return result
