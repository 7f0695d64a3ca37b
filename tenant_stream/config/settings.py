from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from tenant_stream.domain.errors import ConfigurationError


class Settings(BaseSettings):
    """Runtime configuration for the relay worker and the streaming API."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    database_url: str = Field(..., validation_alias="DATABASE_URL")
    redis_url: str = Field("redis://localhost:6379/0", validation_alias="REDIS_URL")
    pipeline_name: str = Field("tenant-stream", validation_alias="PIPELINE_NAME")

    tenant_ids: Annotated[List[str], NoDecode] = Field(default_factory=list, validation_alias="TENANT_IDS")
    outbox_interval_ms: int = Field(500, validation_alias="OUTBOX_INTERVAL_MS")
    outbox_batch_size: int = Field(500, validation_alias="OUTBOX_BATCH_SIZE")
    slow_operation_ms: int = Field(500, validation_alias="SLOW_OPERATION_MS")

    sse_backlog_count: int = Field(200, validation_alias="SSE_BACKLOG_COUNT")
    sse_block_ms: int = Field(15000, validation_alias="SSE_BLOCK_MS")
    stream_maxlen: Optional[int] = Field(None, validation_alias="STREAM_MAXLEN")

    db_min_conn: int = Field(1, validation_alias="DB_MIN_CONN")
    db_max_conn: int = Field(10, validation_alias="DB_MAX_CONN")
    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")

    api_host: str = Field("0.0.0.0", validation_alias="API_HOST")
    api_port: int = Field(3001, validation_alias="API_PORT")

    @field_validator("tenant_ids", mode="before")
    @classmethod
    def split_tenant_ids(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return [str(part).strip() for part in value if str(part).strip()]

    def require_tenants(self) -> List[str]:
        if not self.tenant_ids:
            raise ConfigurationError("TENANT_IDS must list at least one tenant id")
        return list(self.tenant_ids)
