from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from app.settings import settings

DATABASE_URL = settings.database_url


class Base(DeclarativeBase):
    pass


def make_engine(url: str) -> AsyncEngine:
    # aiosqlite connections are bound to the loop that opened them
    if url.startswith("sqlite"):
        return create_async_engine(url, future=True, poolclass=NullPool)
    return create_async_engine(url, future=True)


data_engine = make_engine(DATABASE_URL)
AsyncSessionMaker = async_sessionmaker(data_engine, expire_on_commit=False)


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    # table classes register themselves on Base.metadata
    import app.models  # noqa: F401

    async with (engine or data_engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
