import json
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Iterable, List, Optional

import anyio

from tenant_stream.adapters.redis.stream_log import STREAM_START, AsyncRedisStreamLog
from tenant_stream.domain.cursor import AggregateCursor
from tenant_stream.domain.errors import MissingTenantError
from tenant_stream.domain.models.events import DeliveredEvent, StreamEntry
from tenant_stream.services.events import EventService
from tenant_stream.utils.logging import configure_logging


@dataclass
class SseFrame:
    """One ``text/event-stream`` frame: a data frame or a bare comment."""

    id: Optional[str] = None
    event: Optional[str] = None
    data: Optional[str] = None
    comment: Optional[str] = None

    @classmethod
    def for_event(cls, delivered: DeliveredEvent) -> "SseFrame":
        body = json.dumps(delivered.as_dict(), ensure_ascii=False)
        return cls(id=delivered.event_id, event=delivered.event_type, data=body)

    @property
    def is_comment(self) -> bool:
        return self.data is None

    def encode(self) -> str:
        if self.is_comment:
            return f": {self.comment or ''}\n\n"
        lines = []
        if self.id is not None:
            lines.append(f"id: {self.id}")
        if self.event:
            lines.append(f"event: {self.event}")
        lines.extend(f"data: {line}" for line in self.data.splitlines() or [""])
        return "\n".join(lines) + "\n\n"


def _never_closed() -> bool:
    return False


class SubscriptionHandler:
    """Replays a tenant's backlog and then tails its stream for one subscriber.

    The resume token, when given, is resolved to an aggregate id and every
    entry at or below it is skipped. The same filter runs on the live tail so
    entries the relay appended twice are only delivered once.

    Reads run on the event loop. ``closed`` is checked between blocking
    reads; closing the generator (``aclose``) ends it at once.
    """

    def __init__(
        self,
        service: EventService,
        log: AsyncRedisStreamLog,
        backlog_count: int = 200,
        block_ms: int = 15000,
    ):
        self.service = service
        self.stream_log = log
        self.backlog_count = backlog_count
        self.block_ms = block_ms
        self.log = configure_logging("subscription_handler")

    async def subscribe(
        self,
        tenant_id: str,
        after: Optional[str] = None,
        last_event_id: Optional[str] = None,
        closed: Optional[Callable[[], bool]] = None,
    ) -> AsyncIterator[SseFrame]:
        if not tenant_id:
            raise MissingTenantError()
        closed = closed or _never_closed
        key = self.stream_log.stream_key(tenant_id)

        resume_token = after or last_event_id
        position = await anyio.to_thread.run_sync(self.service.resolve_cursor, tenant_id, resume_token)
        cursor = AggregateCursor(position)
        self.log.info(
            "Subscriber connected",
            extra={"tenant_id": tenant_id, "resume_token": resume_token, "cursor": cursor.position},
        )

        # XRANGE over the whole key returns the oldest entries up to the count
        backlog = await self.stream_log.range(key, "-", "+", self.backlog_count)
        # an empty backlog tails from the stream start so entries appended after XRANGE are not missed
        tail = backlog[-1].log_entry_id if backlog else STREAM_START
        try:
            for frame in self._deliver(backlog, cursor):
                yield frame
            yield SseFrame(comment="connected")

            while not closed():
                entries = await self.stream_log.blocking_read(key, tail, self.block_ms)
                if not entries:
                    yield SseFrame(comment="ping")
                    continue
                tail = entries[-1].log_entry_id
                for frame in self._deliver(entries, cursor):
                    yield frame
        finally:
            self.log.info("Subscriber disconnected", extra={"tenant_id": tenant_id, "cursor": cursor.position})

    def _deliver(self, entries: Iterable[StreamEntry], cursor: AggregateCursor) -> List[SseFrame]:
        frames = []
        for entry in entries:
            if not cursor.admit(entry.aggregate_id):
                continue
            frames.append(SseFrame.for_event(DeliveredEvent.from_entry(entry)))
        return frames
