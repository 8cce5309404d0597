from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from vidvault.core.settings import get_settings


async def _can_connect(database_url: str) -> bool:
    engine = create_async_engine(database_url, pool_pre_ping=True)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
    finally:
        await engine.dispose()


async def _index_names(database_url: str) -> set[str]:
    engine = create_async_engine(database_url, pool_pre_ping=True)
    try:
        async with engine.connect() as conn:
            res = await conn.execute(text("SELECT indexname FROM pg_indexes WHERE tablename = 'videos'"))
            return {row[0] for row in res}
    finally:
        await engine.dispose()


def test_alembic_upgrade_creates_videos_table_and_provenance_index() -> None:
    settings = get_settings()

    if not asyncio.run(_can_connect(settings.database_url)):
        pytest.skip("Database not reachable. Start Postgres and ensure DATABASE_URL is correct.")

    backend_root = Path(__file__).resolve().parents[1]
    cfg = Config(str(backend_root / "alembic.ini"))
    cfg.set_main_option("script_location", str(backend_root / "alembic"))

    command.upgrade(cfg, "head")

    indexes = asyncio.run(_index_names(settings.database_url))
    assert "uq_videos_metadata_vimeo_id" in indexes
    assert "ix_videos_share_token" in indexes
