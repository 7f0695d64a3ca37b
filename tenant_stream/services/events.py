from typing import Any, Dict, Optional

from ulid import ULID

from tenant_stream.adapters.postgres.db import TenantStore
from tenant_stream.adapters.queue import outbox
from tenant_stream.domain.errors import InvalidLimitError, InvalidPayloadError, MissingTenantError
from tenant_stream.utils.logging import configure_logging

DEFAULT_EVENT_TYPE = "EventCreated"
MAX_LIST_LIMIT = 200


class EventService:
    """Ingestion and read paths over the events/outbox tables."""

    def __init__(self, store: TenantStore):
        self.store = store
        self.log = configure_logging("event_service")

    def create_event(
        self, tenant_id: str, payload: Dict[str, Any], event_type: Optional[str] = None
    ) -> Dict[str, Any]:
        """Record an event and its outbox row in a single transaction."""
        if not tenant_id:
            raise MissingTenantError()
        if not isinstance(payload, dict):
            raise InvalidPayloadError("payload must be a JSON object")
        event_type = event_type or DEFAULT_EVENT_TYPE

        def unit_of_work(conn):
            event = outbox.insert_event(conn, tenant_id, payload)
            event_id = str(ULID())
            outbox.insert_outbox(conn, tenant_id, event_id, event_type, event.id, payload)
            return {"aggregate_id": int(event.id), "event_id": event_id}

        created = self.store.execute(tenant_id, unit_of_work)
        self.log.info("Queued event", extra={"tenant_id": tenant_id, **created})
        return created

    def list_latest(self, tenant_id: str, limit: int = 50) -> Dict[str, Any]:
        if not tenant_id:
            raise MissingTenantError()
        if not 1 <= int(limit) <= MAX_LIST_LIMIT:
            raise InvalidLimitError(f"limit must be between 1 and {MAX_LIST_LIMIT}")

        rows = self.store.execute(tenant_id, lambda conn: outbox.fetch_latest(conn, int(limit)))
        items = [
            {
                "id": int(row["aggregate_id"]),
                "event_id": row["event_id"],
                "event_type": row["event_type"],
                "aggregate_id": int(row["aggregate_id"]),
                "payload": row["payload"],
                "created_at": row["created_at"].isoformat() if row.get("created_at") else None,
            }
            for row in rows
        ]
        # rows are newest first
        cursor = items[0]["event_id"] if items else None
        return {"items": items, "cursor": cursor}

    def resolve_cursor(self, tenant_id: str, resume_token: Optional[str]) -> Optional[int]:
        """Map a resume token (an outbox event_id) to its aggregate id.

        Unknown tokens resolve to None, which replays the full backlog.
        """
        if not resume_token:
            return None
        aggregate_id = self.store.execute(tenant_id, lambda conn: outbox.find_aggregate_id(conn, resume_token))
        if aggregate_id is None:
            self.log.warning(
                "Resume token not found; replaying backlog",
                extra={"tenant_id": tenant_id, "resume_token": resume_token},
            )
        return aggregate_id
