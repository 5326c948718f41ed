import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import settings
from database import Base
from main import app
from models.scenario import Scenario
from routers import rate_limit


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest.fixture(autouse=True)
def moderation_defaults(monkeypatch):
    """Pin moderation knobs so tests don't depend on a local .env."""
    monkeypatch.setattr(settings, "REPORT_THRESHOLD_FOR_HIDE", 5)
    monkeypatch.setattr(settings, "AUTO_MODERATE_REPORTS", False)
    monkeypatch.setattr(settings, "URL_SHORTENER_DOMAIN", "")
    monkeypatch.setattr(settings, "PASSWORD_HASH_ITERATIONS", 1000)
    monkeypatch.setattr(settings, "FRONTEND_URL", "http://localhost:3005")


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "sharing.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", connect_args={"timeout": 30})
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with maker() as session:
        session.add_all(
            [
                Scenario(
                    id="scenario-1",
                    user_id="owner-1",
                    topic="the moon was made of cheese",
                    content="Dairy farmers would rule the space race. " * 10,
                    prompt_type="default",
                    tags=["space", "food"],
                ),
                Scenario(
                    id="scenario-2",
                    user_id="owner-2",
                    topic="cats could talk",
                    content="Every morning starts with a complaint about breakfast.",
                    tags=[],
                ),
            ]
        )
        await session.commit()

    yield maker

    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session

