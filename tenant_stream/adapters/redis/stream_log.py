from typing import Dict, List, Optional

import redis
import redis.asyncio as aioredis

from tenant_stream.domain.models.events import StreamEntry

STREAM_KEY_PREFIX = "stream:events"

# lowest possible entry id; XREAD after it returns everything in the stream
STREAM_START = "0-0"


def stream_key(tenant_id: str) -> str:
    return f"{STREAM_KEY_PREFIX}:{tenant_id}"


class RedisStreamLog:
    """Writer side of the per-tenant append log, used by the relay threads."""

    def __init__(self, url: str, maxlen: Optional[int] = None):
        self._client = redis.Redis.from_url(url, decode_responses=True)
        self.maxlen = maxlen

    stream_key = staticmethod(stream_key)

    def append(self, key: str, fields: Dict[str, str]) -> str:
        if self.maxlen:
            return self._client.xadd(key, fields, id="*", maxlen=self.maxlen, approximate=True)
        return self._client.xadd(key, fields, id="*")

    def close(self) -> None:
        self._client.close()


class AsyncRedisStreamLog:
    """Reader side of the append log for subscribers.

    Every subscriber parks in XREAD BLOCK on the event loop instead of a
    worker thread, so idle streams cost a socket, not a thread.
    """

    def __init__(self, url: str):
        self._client = aioredis.Redis.from_url(url, decode_responses=True)

    stream_key = staticmethod(stream_key)

    async def range(self, key: str, start: str = "-", end: str = "+", count: int = 100) -> List[StreamEntry]:
        raw = await self._client.xrange(key, min=start, max=end, count=count)
        return [StreamEntry(log_entry_id=entry_id, fields=dict(values)) for entry_id, values in raw]

    async def blocking_read(self, key: str, after_id: str, timeout_ms: int = 15000) -> List[StreamEntry]:
        response = await self._client.xread({key: after_id}, block=timeout_ms)
        if not response:
            return []
        _, entries = response[0]
        return [StreamEntry(log_entry_id=entry_id, fields=dict(values)) for entry_id, values in entries]

    async def close(self) -> None:
        await self._client.aclose()
