import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class Event:
    id: int
    tenant_id: str
    payload: Any
    created_at: datetime


@dataclass
class OutboxMessage:
    id: int
    event_id: str
    event_type: str
    aggregate_id: int
    payload: Optional[Any]
    tenant_id: Optional[str] = None
    published_at: Optional[datetime] = None

    def stream_fields(self) -> Dict[str, str]:
        """Flatten the row into the string fields stored in the append log."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "aggregate_id": str(self.aggregate_id),
            "payload": json.dumps(self.payload, ensure_ascii=False),
        }


@dataclass
class StreamEntry:
    log_entry_id: str
    fields: Dict[str, str]

    @property
    def aggregate_id(self) -> int:
        try:
            return int(self.fields.get("aggregate_id") or 0)
        except ValueError:
            return 0


@dataclass
class DeliveredEvent:
    event_id: str
    event_type: str
    aggregate_id: int
    payload: Any

    @classmethod
    def from_entry(cls, entry: StreamEntry) -> "DeliveredEvent":
        fields = entry.fields
        raw = fields.get("payload", "{}")
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            # malformed payloads are passed through as opaque strings
            payload = raw
        return cls(
            event_id=fields.get("event_id") or fields.get("redis_id") or "",
            event_type=fields.get("event_type") or "message",
            aggregate_id=entry.aggregate_id,
            payload=payload,
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "aggregate_id": self.aggregate_id,
            "payload": self.payload,
        }
