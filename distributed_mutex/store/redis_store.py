# distributed_mutex/store/redis_store.py

from __future__ import annotations

import math
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional

import redis
from loguru import logger
from redis.commands.core import Script

from distributed_mutex.errors import StoreReadOnly, StoreUnavailable
from distributed_mutex.ports.lease_store import LeaseRecord

# KEYS[1] = lock key, ARGV[1] = owner token, ARGV[2] = ttl in ms.
# The expiry is taken from the server clock so every client agrees on it.
# SET NX comes first so a read-only replica rejects every call, held key or not.
_CREATE_LUA = """
if redis.replicate_commands then
  redis.replicate_commands()
end
local now = redis.call('TIME')
local now_s = tonumber(now[1]) + tonumber(now[2]) / 1000000
local ttl_ms = tonumber(ARGV[2])
local value = string.format('%.6f', now_s + ttl_ms / 1000) .. ':' .. ARGV[1]
if redis.call('SET', KEYS[1], value, 'PX', ttl_ms, 'NX') then
  return 1
end
local current = redis.call('GET', KEYS[1])
if current then
  local sep = string.find(current, ':', 1, true)
  local expiry
  if sep then
    expiry = tonumber(string.sub(current, 1, sep - 1))
  else
    expiry = tonumber(current)
  end
  if expiry and expiry > now_s then
    return 0
  end
end
redis.call('SET', KEYS[1], value, 'PX', ttl_ms)
return 1
"""

# KEYS[1] = lock key, ARGV[1] = owner token.
_DELETE_OWNED_LUA = """
local current = redis.call('GET', KEYS[1])
if not current then
  return 0
end
local sep = string.find(current, ':', 1, true)
if sep and string.sub(current, sep + 1) == ARGV[1] then
  return redis.call('DEL', KEYS[1])
end
return 0
"""


@contextmanager
def _translate_errors(op: str, key: Optional[str]) -> Iterator[None]:
    """
    Map redis-py failures onto the store error taxonomy.

    Nothing is retried here: the first failed round trip surfaces.
    """
    try:
        yield
    except redis.exceptions.ReadOnlyError as e:
        raise StoreReadOnly(f"Redis rejected {op}: {e}", key=key) from e
    except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as e:
        raise StoreUnavailable(f"Redis unreachable during {op}: {e}", key=key) from e
    except redis.exceptions.ResponseError as e:
        # Errors raised inside a script can arrive wrapped in a generic ERR reply.
        if "READONLY" in str(e):
            raise StoreReadOnly(f"Redis rejected {op}: {e}", key=key) from e
        raise


@dataclass
class RedisLeaseStore:
    """
    Lease store backed by a single authoritative Redis endpoint.

    Notes:
    - create and compare-and-delete are each one Lua round trip (EVALSHA)
    - every key also gets a native Redis TTL equal to the lease validity, so a
      crashed holder's record disappears even when nobody contends for it
    - `key_prefix` namespaces all keys; callers never see it
    """

    client: redis.Redis
    key_prefix: str = ""
    _create: Script = field(init=False, repr=False)
    _delete_owned: Script = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._create = self.client.register_script(_CREATE_LUA)
        self._delete_owned = self.client.register_script(_DELETE_OWNED_LUA)

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        key_prefix: str = "",
        socket_timeout: Optional[float] = 5.0,
    ) -> "RedisLeaseStore":
        """
        Build a store from a redis:// URL.
        """
        client = redis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client=client, key_prefix=key_prefix)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def try_create(self, key: str, owner_token: str, ttl: float) -> bool:
        # PX needs a positive integer
        ttl_ms = max(1, int(math.ceil(ttl * 1000)))
        with _translate_errors("create", key):
            created = self._create(keys=[self._key(key)], args=[owner_token, ttl_ms])
        return bool(created)

    def read(self, key: str) -> Optional[LeaseRecord]:
        with _translate_errors("read", key):
            raw = self.client.get(self._key(key))
        if raw is None:
            return None
        return LeaseRecord.from_value(raw)

    def try_delete_owned(self, key: str, owner_token: str) -> bool:
        with _translate_errors("delete", key):
            deleted = self._delete_owned(keys=[self._key(key)], args=[owner_token])
        if not deleted:
            logger.debug(f"Lease not deleted, owner changed or key gone: {key}")
        return bool(deleted)

    def now(self) -> float:
        with _translate_errors("time", None):
            seconds, micros = self.client.time()
        return seconds + micros / 1_000_000
