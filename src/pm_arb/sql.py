from __future__ import annotations

from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


async def execute(session: AsyncSession, sql: str, params: dict[str, Any] | None = None) -> int:
    """Run a statement and return the affected row count (-1 when the driver does not report it)."""
    res = await session.execute(text(sql), params or {})
    return res.rowcount if res.rowcount is not None else -1


async def fetch_all(session: AsyncSession, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
    res = await session.execute(text(sql), params or {})
    return [dict(r._mapping) for r in res.fetchall()]


async def fetch_one(session: AsyncSession, sql: str, params: dict[str, Any] | None = None) -> dict[str, Any] | None:
    res = await session.execute(text(sql), params or {})
    row = res.fetchone()
    return dict(row._mapping) if row else None


async def fetch_value(session: AsyncSession, sql: str, params: dict[str, Any] | None = None) -> Any:
    row = await fetch_one(session, sql, params)
    if not row:
        return None
    return next(iter(row.values()))
