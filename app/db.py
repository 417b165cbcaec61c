"""Async engine, session dependency and the three document tables."""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import settings

SCHEMA = (
    "CREATE TABLE IF NOT EXISTS week_documents ("
    " user_id TEXT NOT NULL,"
    " week_id TEXT NOT NULL,"
    " goals JSONB NOT NULL DEFAULT '[]'::jsonb,"
    " stats JSONB NOT NULL DEFAULT '{}'::jsonb,"
    " updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),"
    " PRIMARY KEY (user_id, week_id))",
    "CREATE TABLE IF NOT EXISTS dream_documents ("
    " user_id TEXT PRIMARY KEY,"
    " dream_book JSONB NOT NULL DEFAULT '[]'::jsonb,"
    " weekly_goal_templates JSONB NOT NULL DEFAULT '[]'::jsonb,"
    " updated_at TIMESTAMPTZ NOT NULL DEFAULT now())",
    "CREATE TABLE IF NOT EXISTS past_weeks ("
    " user_id TEXT NOT NULL,"
    " week_id TEXT NOT NULL,"
    " summary JSONB NOT NULL,"
    " archived_at TIMESTAMPTZ NOT NULL DEFAULT now(),"
    " PRIMARY KEY (user_id, week_id))",
)


def async_url(url: str) -> str:
    """Point plain Postgres URLs at the asyncpg driver."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


engine = create_async_engine(async_url(settings.database_url), pool_pre_ping=True)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncSession:  # type: ignore[misc]
    async with async_session() as session:
        yield session


async def create_schema() -> None:
    async with engine.begin() as conn:
        for statement in SCHEMA:
            await conn.execute(text(statement))
