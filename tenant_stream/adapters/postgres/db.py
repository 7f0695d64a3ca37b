import threading
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from tenant_stream.domain.errors import MissingTenantError

T = TypeVar("T")

# transaction-local, read by the row-level security policies in db/schema.sql
TENANT_SETTING = "app.tenant_id"


class PostgresPool:
    """Thread-safe connection pool shared by relay threads and API requests.

    ``ThreadedConnectionPool.getconn`` raises once ``maxconn`` connections are
    out; callers here wait for a free slot instead.
    """

    def __init__(self, dsn: str, minconn: int = 1, maxconn: int = 10):
        self._pool = ThreadedConnectionPool(minconn, maxconn, dsn=dsn, cursor_factory=RealDictCursor)
        self._slots = threading.BoundedSemaphore(maxconn)

    @contextmanager
    def connection(self) -> Iterator[psycopg2.extensions.connection]:
        with self._slots:
            conn = self._pool.getconn()
            try:
                yield conn
            finally:
                self._pool.putconn(conn)

    def close(self) -> None:
        self._pool.closeall()


class TenantStore:
    """Runs units of work in a transaction restricted to a single tenant.

    Every call opens its own transaction; row-level security keyed on
    ``app.tenant_id`` keeps statements inside it from reaching other tenants'
    rows. An exception from the unit of work rolls the transaction back.
    """

    def __init__(self, pool: PostgresPool):
        self.pool = pool

    def execute(self, tenant_id: str, unit_of_work: Callable[[psycopg2.extensions.connection], T]) -> T:
        if not tenant_id:
            raise MissingTenantError()
        with self.pool.connection() as conn:
            conn.autocommit = False
            try:
                with conn.cursor() as cur:
                    cur.execute("SELECT set_config(%s, %s, true);", (TENANT_SETTING, tenant_id))
                result = unit_of_work(conn)
                conn.commit()
                return result
            except BaseException:
                conn.rollback()
                raise
