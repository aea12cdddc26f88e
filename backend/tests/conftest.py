import os
import tempfile

import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker

# must run before app.settings is imported anywhere
_DB_DIR = tempfile.mkdtemp(prefix="party-lobby-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/app.db"
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-enough-length-for-hs256-signing")
os.environ.setdefault("ORIGIN", "http://localhost:5173")


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    from app.database import init_db, make_engine

    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    await init_db(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()
