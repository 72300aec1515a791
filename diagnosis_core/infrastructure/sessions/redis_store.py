import logging
from typing import Optional

import redis

from diagnosis_core.application.ports import SessionStorePort
from diagnosis_core.domain.errors import ExternalUnavailable


logger = logging.getLogger(__name__)


class RedisSessionStore(SessionStorePort):
    def __init__(self, client: "redis.Redis", prefix: str = "diagnosis-core:"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "diagnosis-core:") -> "RedisSessionStore":
        return cls(redis.Redis.from_url(url, decode_responses=True), prefix=prefix)

    def get(self, key: str) -> Optional[str]:
        try:
            value = self.client.get(self.prefix + key)
        except redis.RedisError as e:
            logger.exception("Redis GET failed for %s", key)
            raise ExternalUnavailable("Session store", str(e)) from e
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self.client.set(self.prefix + key, value, ex=max(1, int(ttl_seconds)))
        except redis.RedisError as e:
            logger.exception("Redis SET failed for %s", key)
            raise ExternalUnavailable("Session store", str(e)) from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete(self.prefix + key)
        except redis.RedisError as e:
            logger.exception("Redis DEL failed for %s", key)
            raise ExternalUnavailable("Session store", str(e)) from e
