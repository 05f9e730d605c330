import pytest
from sqlalchemy import text

from shared.database import get_async_session_factory, get_session
from shared.database.postgres import get_async_engine


def test_server_engine_gets_pool_options() -> None:
    engine = get_async_engine("postgresql+asyncpg://u:p@localhost:5432/db", pool_size=2)
    assert engine.pool.size() == 2
    assert engine.pool._pre_ping is True


@pytest.mark.asyncio
async def test_get_session_commits_and_rolls_back(tmp_path) -> None:
    factory = get_async_session_factory(f"sqlite+aiosqlite:///{tmp_path / 'db.sqlite'}")
    async with factory() as session:
        await session.execute(text("CREATE TABLE notes (body TEXT)"))
        await session.commit()

    sessions = get_session(factory)
    session = await anext(sessions)
    await session.execute(text("INSERT INTO notes VALUES ('kept')"))
    with pytest.raises(StopAsyncIteration):
        await anext(sessions)

    sessions = get_session(factory)
    session = await anext(sessions)
    await session.execute(text("INSERT INTO notes VALUES ('dropped')"))
    with pytest.raises(RuntimeError):
        await sessions.athrow(RuntimeError("boom"))

    async with factory() as session:
        rows = (await session.execute(text("SELECT body FROM notes"))).scalars().all()
    assert rows == ["kept"]
    await factory.kw["bind"].dispose()
