import signal
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from tenant_stream.adapters.postgres.db import PostgresPool, TenantStore
from tenant_stream.adapters.queue.outbox import fetch_unpublished, mark_published
from tenant_stream.adapters.redis.stream_log import RedisStreamLog
from tenant_stream.config.settings import Settings
from tenant_stream.domain.errors import ConfigurationError
from tenant_stream.utils.logging import configure_logging
from tenant_stream.utils.timing import log_if_slow


class OutboxRelay:
    """Moves unpublished outbox rows into each tenant's append-log stream.

    Ticks never overlap inside one process: a tick that finds the previous one
    still running is skipped, not queued. Separate processes are kept apart by
    ``FOR UPDATE SKIP LOCKED`` in the row selection, so no leader election is
    needed. Tenants within a tick are flushed in parallel and a failure in
    one is logged without affecting the others.

    Append and mark-published run in different transactions; a crash between
    them re-appends the row on a later tick. Subscribers drop the duplicate by
    aggregate id.
    """

    def __init__(self, settings: Settings, store: TenantStore, log: RedisStreamLog):
        self.settings = settings
        self.store = store
        self.stream_log = log
        # fail at startup, not on the first tick
        settings.require_tenants()
        self.log = configure_logging("outbox_relay", settings.log_level)
        self._busy = threading.Lock()

    def resolve_tenants(self) -> List[str]:
        return self.settings.require_tenants()

    def tick(self) -> bool:
        if not self._busy.acquire(blocking=False):
            self.log.warning("Skipping outbox tick because the previous run is still in progress")
            return False
        try:
            tenants = self.resolve_tenants()
            # no more flush threads than pooled connections
            workers = max(1, min(len(tenants), self.settings.db_max_conn))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="relay") as pool:
                futures = {tenant: pool.submit(self.flush_tenant, tenant) for tenant in tenants}
            for tenant, future in futures.items():
                exc = future.exception()
                if exc is not None:
                    self.log.error(
                        "Failed flushing tenant outbox",
                        exc_info=(type(exc), exc, exc.__traceback__),
                        extra={"tenant_id": tenant},
                    )
            return True
        finally:
            self._busy.release()

    def flush_tenant(self, tenant_id: str) -> int:
        if not tenant_id:
            return 0
        threshold = self.settings.slow_operation_ms

        with log_if_slow(self.log, "flush tenant", threshold, tenant_id=tenant_id):
            with log_if_slow(self.log, "select outbox rows", threshold, tenant_id=tenant_id):
                rows = self.store.execute(
                    tenant_id, lambda conn: fetch_unpublished(conn, self.settings.outbox_batch_size)
                )
            if not rows:
                return 0

            key = self.stream_log.stream_key(tenant_id)
            # one row at a time keeps tenant order and limits the duplicate window to a single row
            for row in rows:
                with log_if_slow(self.log, "stream append", threshold, tenant_id=tenant_id):
                    entry_id = self.stream_log.append(key, row.stream_fields())
                with log_if_slow(self.log, "outbox update", threshold, tenant_id=tenant_id):
                    marked = self.store.execute(tenant_id, lambda conn, row_id=row.id: mark_published(conn, row_id))
                if not marked:
                    self.log.warning(
                        "Outbox row was already published",
                        extra={"tenant_id": tenant_id, "outbox_id": row.id, "event_id": row.event_id},
                    )
                self.log.debug(
                    "Relayed outbox row",
                    extra={"tenant_id": tenant_id, "outbox_id": row.id, "entry_id": entry_id},
                )

        self.log.info("Relayed outbox batch", extra={"tenant_id": tenant_id, "rows": len(rows)})
        return len(rows)

    def run_forever(self, stop_event: Optional[threading.Event] = None) -> None:
        stop_event = stop_event or threading.Event()
        interval = self.settings.outbox_interval_ms / 1000.0
        while not stop_event.is_set():
            started = time.monotonic()
            try:
                self.tick()
            except ConfigurationError:
                raise
            except Exception:  # noqa: BLE001
                self.log.exception("Outbox tick failed")
            stop_event.wait(max(0.0, interval - (time.monotonic() - started)))


def main():
    settings = Settings()
    log = configure_logging("outbox_relay_worker", settings.log_level)
    log.info(
        "Starting outbox relay",
        extra={
            "pipeline": settings.pipeline_name,
            "tenants": len(settings.tenant_ids),
            "interval_ms": settings.outbox_interval_ms,
            "batch_size": settings.outbox_batch_size,
        },
    )

    pg_pool = PostgresPool(settings.database_url, settings.db_min_conn, settings.db_max_conn)
    stream_log = RedisStreamLog(settings.redis_url, maxlen=settings.stream_maxlen)
    stop_event = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop_event.set())

    try:
        relay = OutboxRelay(settings, TenantStore(pg_pool), stream_log)
        relay.run_forever(stop_event)
    except KeyboardInterrupt:
        log.info("Outbox relay interrupted")
    finally:
        stream_log.close()
        pg_pool.close()


if __name__ == "__main__":
    main()
