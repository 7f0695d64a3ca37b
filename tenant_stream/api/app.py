from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from tenant_stream.adapters.postgres.db import PostgresPool, TenantStore
from tenant_stream.adapters.redis.stream_log import AsyncRedisStreamLog
from tenant_stream.config.settings import Settings
from tenant_stream.domain.errors import InvalidLimitError, InvalidPayloadError, MissingTenantError
from tenant_stream.pipelines.subscription import SubscriptionHandler
from tenant_stream.services.events import DEFAULT_EVENT_TYPE, MAX_LIST_LIMIT, EventService
from tenant_stream.utils.logging import configure_logging

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class CreateEventRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payload: Dict[str, Any]
    event_type: Optional[str] = Field(DEFAULT_EVENT_TYPE, alias="eventType")


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[EventService] = None,
    handler: Optional[SubscriptionHandler] = None,
) -> FastAPI:
    """Build the HTTP surface; real adapters are created only when not injected."""
    pg_pool = stream_log = None
    if service is None or handler is None:
        settings = settings or Settings()
        pg_pool = PostgresPool(settings.database_url, settings.db_min_conn, settings.db_max_conn)
        stream_log = AsyncRedisStreamLog(settings.redis_url)
        service = service or EventService(TenantStore(pg_pool))
        handler = handler or SubscriptionHandler(
            service, stream_log, settings.sse_backlog_count, settings.sse_block_ms
        )
    log = configure_logging("tenant_stream_api", settings.log_level if settings else "INFO")

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        if stream_log is not None:
            await stream_log.close()
        if pg_pool is not None:
            pg_pool.close()

    app = FastAPI(title="tenant-stream", lifespan=lifespan)

    @app.exception_handler(MissingTenantError)
    @app.exception_handler(InvalidPayloadError)
    @app.exception_handler(InvalidLimitError)
    async def client_error(_: Request, exc: Exception):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/events")
    def create_event(body: CreateEventRequest, x_tenant_id: Optional[str] = Header(None)):
        if not x_tenant_id:
            raise MissingTenantError("x-tenant-id header is required")
        created = service.create_event(x_tenant_id, body.payload, body.event_type)
        return {"status": "queued", "eventId": created["event_id"], "aggregateId": created["aggregate_id"]}

    @app.get("/events")
    def list_events(
        limit: int = Query(50, ge=1, le=MAX_LIST_LIMIT),
        x_tenant_id: Optional[str] = Header(None),
    ):
        if not x_tenant_id:
            raise MissingTenantError("x-tenant-id header is required")
        return service.list_latest(x_tenant_id, limit)

    @app.get("/sse")
    async def stream(
        request: Request,
        x_tenant_id: Optional[str] = Header(None),
        last_event_id: Optional[str] = Header(None),
        tenant_id: Optional[str] = Query(None, alias="tenantId"),
        after: Optional[str] = Query(None),
    ):
        # EventSource cannot set headers, so the tenant may also come in the query string
        tenant = x_tenant_id or tenant_id
        if not tenant:
            raise MissingTenantError("tenant context is required (x-tenant-id header or tenantId query)")

        frames = handler.subscribe(tenant, after=after, last_event_id=last_event_id)

        async def body():
            try:
                async for frame in frames:
                    yield frame.encode()
                    if await request.is_disconnected():
                        break
            except Exception:  # noqa: BLE001
                log.exception("Subscription stream failed", extra={"tenant_id": tenant})
            finally:
                await frames.aclose()

        return StreamingResponse(body(), media_type="text/event-stream", headers=SSE_HEADERS)

    return app


def main():
    settings = Settings()
    uvicorn.run(create_app(settings), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
