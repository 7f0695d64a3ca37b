from typing import Any, Dict, List, Optional

from psycopg2.extras import Json, RealDictCursor

from tenant_stream.domain.models.events import Event, OutboxMessage


def fetch_unpublished(conn, batch_size: int) -> List[OutboxMessage]:
    """Lock a batch of unpublished rows, skipping rows another relay holds."""
    sql = """
    SELECT id, event_id, event_type, aggregate_id, payload
    FROM outbox
    WHERE published_at IS NULL
    ORDER BY id ASC
    FOR UPDATE SKIP LOCKED
    LIMIT %s;
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, (batch_size,))
        rows = cur.fetchall()
    return [OutboxMessage(**row) for row in rows]


def mark_published(conn, outbox_id: int) -> bool:
    sql = "UPDATE outbox SET published_at = NOW() WHERE id = %s AND published_at IS NULL;"
    with conn.cursor() as cur:
        cur.execute(sql, (outbox_id,))
        return cur.rowcount == 1


def insert_event(conn, tenant_id: str, payload: Dict[str, Any]) -> Event:
    sql = """
    INSERT INTO events (tenant_id, payload)
    VALUES (%s, %s)
    RETURNING id, tenant_id, payload, created_at;
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, (tenant_id, Json(payload)))
        return Event(**cur.fetchone())


def insert_outbox(
    conn,
    tenant_id: str,
    event_id: str,
    event_type: str,
    aggregate_id: int,
    payload: Dict[str, Any],
) -> int:
    sql = """
    INSERT INTO outbox (tenant_id, event_id, event_type, aggregate_id, payload)
    VALUES (%s, %s, %s, %s, %s)
    RETURNING id;
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, (tenant_id, event_id, event_type, aggregate_id, Json(payload)))
        return cur.fetchone()["id"]


def find_aggregate_id(conn, event_id: str) -> Optional[int]:
    sql = "SELECT aggregate_id FROM outbox WHERE event_id = %s LIMIT 1;"
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, (event_id,))
        row = cur.fetchone()
    return int(row["aggregate_id"]) if row else None


def fetch_latest(conn, limit: int) -> List[Dict[str, Any]]:
    sql = """
    SELECT o.event_id, o.event_type, o.aggregate_id, o.payload, e.created_at
    FROM outbox o
    LEFT JOIN events e ON e.id = o.aggregate_id
    ORDER BY o.aggregate_id DESC
    LIMIT %s;
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, (limit,))
        return cur.fetchall()
