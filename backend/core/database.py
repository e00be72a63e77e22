from typing import Optional, Dict, Any, List
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
import logging

from .config import settings

logger = logging.getLogger(__name__)

ASYNC_DRIVER = "postgresql+asyncpg"


def to_async_url(connection_url: str, database: Optional[str] = None) -> str:
    """Rewrite a postgres:// or postgresql:// DSN for the asyncpg driver"""
    url = make_url(connection_url)
    if url.drivername in ("postgres", "postgresql", "postgresql+psycopg2", "postgresql+psycopg"):
        url = url.set(drivername=ASYNC_DRIVER)
    if database:
        url = url.set(database=database)
    return url.render_as_string(hide_password=False)


def redact_url(connection_url: str) -> str:
    """Connection URL without its password, for logs and labels"""
    try:
        return make_url(connection_url).render_as_string(hide_password=True)
    except Exception:
        return connection_url.split("@")[-1]


class DatabaseConnection:
    """Async database connection used to read one catalog"""

    def __init__(self, connection_url: str, database: Optional[str] = None):
        self.connection_url = connection_url
        self.database = database
        self._engine: Optional[AsyncEngine] = None

    async def get_engine(self) -> AsyncEngine:
        """Get or create async engine with connection pooling"""
        if self._engine is None:
            url = to_async_url(self.connection_url, self.database)
            self._engine = create_async_engine(
                url,
                pool_size=settings.DATABASE_POOL_SIZE,
                max_overflow=settings.DATABASE_MAX_OVERFLOW,
                pool_timeout=settings.DATABASE_POOL_TIMEOUT,
                pool_recycle=settings.DATABASE_POOL_RECYCLE,
                pool_pre_ping=True,
                connect_args={"timeout": settings.DATABASE_CONNECT_TIMEOUT},
                echo=False
            )

        return self._engine

    async def execute_query(self, query: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Execute a query and return rows as dicts"""
        engine = await self.get_engine()
        async with engine.connect() as conn:
            result = await conn.execute(text(query), params or {})
            return [dict(row) for row in result.mappings().all()]

    async def test_connection(self) -> Dict[str, Any]:
        rows = await self.execute_query("SELECT version() AS version, current_database() AS database")
        return rows[0] if rows else {}

    async def close(self):
        """Close database connection"""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
