"""Redis cache backend.

Entries are stored as JSON under ``{prefix}{item_id}`` with a PX expiry,
so TTL is delegated to Redis and no local LRU is kept. The version
guard runs as a Lua script to make compare-and-set atomic on the server.
"""

import json

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from catalog_service.catalog.cache import CacheEntry
from catalog_service.domain.exceptions import CacheUnavailableError

logger = structlog.get_logger()

# KEYS[1] = entry key; ARGV[1] = payload, ARGV[2] = version, ARGV[3] = ttl ms
PUT_IF_NEWER_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if current then
    local ok, decoded = pcall(cjson.decode, current)
    if ok and decoded['version'] and tonumber(decoded['version']) >= tonumber(ARGV[2]) then
        return 0
    end
end
redis.call('SET', KEYS[1], ARGV[1], 'PX', ARGV[3])
return 1
"""


class RedisCacheBackend:
    """Cache backend on a Redis server.

    Example usage:
        backend = RedisCacheBackend("redis://localhost:6379/0", ttl_seconds=300)
        cache = CatalogCache(backend)
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        ttl_seconds: int = 300,
        key_prefix: str = "catalog:item:",
        socket_timeout: float | None = 1.0,
        socket_connect_timeout: float | None = 1.0,
        client: aioredis.Redis | None = None,
    ) -> None:
        """Initialize backend.

        Args:
            url: Redis connection URL.
            ttl_seconds: Entry lifetime enforced by Redis.
            key_prefix: Namespace for entry keys.
            socket_timeout: Seconds to wait on a socket read or write.
            socket_connect_timeout: Seconds to wait for a connection.
            client: Pre-built client, mainly for tests.
        """
        self._url = url
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout
        self.ttl_seconds = ttl_seconds
        self._key_prefix = key_prefix
        self._redis = client
        self._put_script = None

    def _client(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._url,
                decode_responses=True,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_connect_timeout,
            )
        return self._redis

    def _key(self, item_id: str) -> str:
        return f"{self._key_prefix}{item_id}"

    async def get(self, item_id: str) -> CacheEntry | None:
        """Fetch and decode an entry."""
        try:
            raw = await self._client().get(self._key(item_id))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(str(e)) from e

        if raw is None:
            return None
        try:
            return CacheEntry.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding undecodable cache entry", item_id=item_id, error=str(e))
            return None

    async def put_if_newer(self, entry: CacheEntry) -> bool:
        """Run the version-guarded set on the server."""
        client = self._client()
        if self._put_script is None:
            self._put_script = client.register_script(PUT_IF_NEWER_SCRIPT)
        payload = json.dumps(entry.to_dict())
        try:
            stored = await self._put_script(
                keys=[self._key(entry.item_id)],
                args=[payload, entry.version, int(self.ttl_seconds * 1000)],
            )
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(str(e)) from e
        return bool(stored)

    async def delete(self, item_id: str) -> None:
        """Delete an entry."""
        try:
            await self._client().delete(self._key(item_id))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(str(e)) from e

    async def ping(self) -> bool:
        """Check server connectivity."""
        try:
            return bool(await self._client().ping())
        except (RedisError, OSError):
            return False

    async def close(self) -> None:
        """Close the connection pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self._put_script = None
