import time
import uuid
import redis
from django.conf import settings


def get_redis():
    return redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)


class LockLost(RuntimeError):
    pass


class RedisLock:
    """
    Single-holder lock for background jobs:
    - acquire: SET NX PX
    - renew:   SET XX PX, only while we hold the token
    - release: compare-and-delete under WATCH
    """

    def __init__(self, key: str, ttl_seconds: int, client=None):
        self.key = key
        self.ttl_ms = int(ttl_seconds * 1000)
        self.token = uuid.uuid4().hex
        self.r = client or get_redis()

    def acquire(self) -> bool:
        return bool(self.r.set(self.key, self.token, nx=True, px=self.ttl_ms))

    def renew(self) -> bool:
        if self.r.get(self.key) != self.token:
            return False
        return bool(self.r.set(self.key, self.token, xx=True, px=self.ttl_ms))

    def release(self) -> bool:
        pipe = self.r.pipeline()
        try:
            pipe.watch(self.key)
            if pipe.get(self.key) == self.token:
                pipe.multi()
                pipe.delete(self.key)
                pipe.execute()
                return True
            pipe.unwatch()
        except redis.WatchError:
            pass
        finally:
            pipe.reset()
        return False


class LockHeartbeat:
    def __init__(self, lock: RedisLock, every_seconds: float = 5.0):
        self.lock = lock
        self.every = every_seconds
        self._next = time.monotonic() + self.every

    def tick(self):
        now = time.monotonic()
        if now >= self._next:
            if not self.lock.renew():
                raise LockLost(f"Lost lock {self.lock.key}")
            self._next = now + self.every
