"""
Async Postgres helpers for the PeekAI stores.

Profiles and query history live in one Postgres database. When no URL is
configured the stores fall back to in-process memory (see
src/profiles/store.py and src/history/store.py).
"""

from __future__ import annotations

import logging
from typing import Optional

import asyncpg

from src.config import DatabaseSettings, get_settings

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL,
    tier TEXT NOT NULL DEFAULT 'free',
    daily_usage INTEGER NOT NULL DEFAULT 0,
    monthly_usage INTEGER NOT NULL DEFAULT 0,
    last_reset_date DATE NOT NULL DEFAULT (now() AT TIME ZONE 'utc')::date,
    stripe_customer_id TEXT UNIQUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS query_history (
    id BIGSERIAL PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    question TEXT NOT NULL,
    answer TEXT NOT NULL,
    page_title TEXT,
    page_url TEXT,
    page_domain TEXT,
    selected_text TEXT,
    context_text TEXT,
    model_used TEXT NOT NULL,
    response_time_ms INTEGER NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_query_history_user_created
    ON query_history (user_id, created_at DESC);
"""


def get_database_url(settings: Optional[DatabaseSettings] = None) -> Optional[str]:
    """
    Prefer a direct (non-pooler) URL for long-lived backends if provided.

    Read from DatabaseSettings so a URL set only in .env is honoured.
    """
    settings = settings or get_settings().database
    url = settings.database_url_direct or settings.database_url
    return url.get_secret_value() if url else None


def is_database_configured() -> bool:
    return bool(get_database_url())


async def get_pool() -> Optional[asyncpg.Pool]:
    global _pool
    if _pool is not None:
        return _pool

    dsn = get_database_url()
    if not dsn:
        return None

    settings = get_settings().database
    min_size = settings.database_pool_min_size
    max_size = settings.database_pool_max_size

    # PgBouncer poolers break prepared statements; keep the cache off for both URL kinds.
    _pool = await asyncpg.create_pool(
        dsn=dsn,
        min_size=min_size,
        max_size=max_size,
        statement_cache_size=0,
    )

    logger.info("Postgres pool initialized (min=%s max=%s)", min_size, max_size)
    return _pool


async def fetchrow(query: str, *args):
    pool = await get_pool()
    if not pool:
        return None
    async with pool.acquire() as conn:
        return await conn.fetchrow(query, *args)


async def fetch(query: str, *args):
    pool = await get_pool()
    if not pool:
        return []
    async with pool.acquire() as conn:
        return await conn.fetch(query, *args)


async def fetchval(query: str, *args):
    pool = await get_pool()
    if not pool:
        return None
    async with pool.acquire() as conn:
        return await conn.fetchval(query, *args)


async def execute(query: str, *args):
    pool = await get_pool()
    if not pool:
        return None
    async with pool.acquire() as conn:
        return await conn.execute(query, *args)


async def ensure_schema() -> bool:
    """Create the profiles and query_history tables if they are missing."""
    pool = await get_pool()
    if not pool:
        return False
    async with pool.acquire() as conn:
        await conn.execute(SCHEMA_SQL)
    logger.info("Postgres schema ensured")
    return True


async def close_pool() -> None:
    """Close the global asyncpg pool (used during graceful shutdown)."""
    global _pool
    if _pool is None:
        return
    try:
        await _pool.close()
    finally:
        _pool = None
