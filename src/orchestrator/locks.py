"""Redis-based lock primitives for per-job and per-task isolation.

Locks are leases: they expire after ``ttl_seconds`` unless the holder
renews them. Long-running holders (a generation run polling a provider)
call ``LockHandle.extend`` from their heartbeat; a handle whose key has
expired or been taken over reports ``lost``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import uuid

from redis import Redis

from src.core.logger import get_logger


LOCK_KEY_TEMPLATE = "viral:{namespace}:{resource_id}:lock"
RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  return redis.call("del", KEYS[1])
end
return 0
"""
EXTEND_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  return redis.call("expire", KEYS[1], ARGV[2])
end
return 0
"""

JOB_LOCK_NAMESPACE = "job"
CRON_LOCK_NAMESPACE = "cron"

logger = get_logger("viral.orchestrator.locks")


def resource_lock_key(namespace: str, resource_id: str) -> str:
    return LOCK_KEY_TEMPLATE.format(namespace=namespace, resource_id=resource_id)


@dataclass
class LockHandle:
    manager: "RedisLockManager"
    resource_id: str
    token: str
    key: str
    lost: bool = field(default=False)

    def extend(self) -> bool:
        """Push the expiry out by one TTL; False once another holder owns the key."""

        if self.lost:
            return False
        if self.manager.extend(self.resource_id, self.token):
            return True
        self.lost = True
        logger.warning("resource_lock_lost", key=self.key)
        return False

    def release(self) -> bool:
        return self.manager.release(self.resource_id, self.token)


class RedisLockManager:
    """Acquire, renew and release one lock per resource using Redis SET NX EX."""

    def __init__(self, redis_client: Redis, *, namespace: str = JOB_LOCK_NAMESPACE, ttl_seconds: int = 300) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if not namespace.strip():
            raise ValueError("namespace must not be empty")
        self._redis = redis_client
        self._namespace = namespace.strip()
        self._ttl_seconds = ttl_seconds

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def lock_key(self, resource_id: str) -> str:
        return resource_lock_key(self._namespace, resource_id)

    def acquire(self, resource_id: str) -> LockHandle | None:
        key = self.lock_key(resource_id)
        token = str(uuid.uuid4())
        acquired = self._redis.set(key, token, nx=True, ex=self._ttl_seconds)
        if not acquired:
            return None
        return LockHandle(manager=self, resource_id=resource_id, token=token, key=key)

    def extend(self, resource_id: str, token: str) -> bool:
        key = self.lock_key(resource_id)
        extended = self._redis.eval(EXTEND_LOCK_SCRIPT, 1, key, token, self._ttl_seconds)
        return int(extended) == 1

    def release(self, resource_id: str, token: str) -> bool:
        key = self.lock_key(resource_id)
        released = self._redis.eval(RELEASE_LOCK_SCRIPT, 1, key, token)
        return int(released) == 1
