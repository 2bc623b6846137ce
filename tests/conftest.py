"""Pytest configuration and fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from portal.config import DatabaseSettings, Settings, StoreSettings, UploadSettings
from portal.models import Base


@pytest.fixture()
def app_settings(tmp_path: Path) -> Settings:
    """Settings pointing every location and the database into ``tmp_path``."""
    return Settings(
        db=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'portal.db'}"),
        uploads=UploadSettings(
            upload_dir=tmp_path / "incoming",
            scratch_dir=tmp_path / "scratch",
            media_dir=tmp_path / "media",
        ),
        store=StoreSettings(retry_attempts=1, retry_wait_seconds=0),
    )


@pytest_asyncio.fixture()
async def session_factory(app_settings: Settings):
    """Session factory over a fresh SQLite schema."""
    engine = create_async_engine(app_settings.db.url, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)

    await engine.dispose()


@pytest_asyncio.fixture()
async def session(session_factory):
    async with session_factory() as s:
        yield s
