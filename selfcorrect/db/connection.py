"""
Database Connection Manager
===========================

Handles the async connection to the learning SQLite database.
"""

from pathlib import Path

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from selfcorrect.db.models import Base


async def init_db(db_path: Path) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Open the database at db_path and create tables if they don't exist.

    Returns the engine (dispose it on shutdown) and a session maker.
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return engine, async_sessionmaker(engine, expire_on_commit=False)
