from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.config import settings

# Override settings for tests
settings.app_env = "test"
settings.database_url = "sqlite+aiosqlite://"
settings.portkey_api_key = ""
settings.sentry_dsn = ""

from app.core.dependencies import get_llm_client, get_session_factory, get_tool_executors  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.postgres import get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.prompt_engine.executors import LocalToolExecutor  # noqa: E402
from app.prompt_engine.types import CatalogNamespace  # noqa: E402
from tests.fakes import ScriptedLlm  # noqa: E402

import app.models as _models  # noqa: E402,F401  (register tables)

# In-memory SQLite shared by every session of a test
test_engine = create_async_engine(
    "sqlite+aiosqlite://",
    echo=False,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)
test_session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test and drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with test_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db
app.dependency_overrides[get_session_factory] = lambda: test_session_factory


@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with test_session_factory() as session:
        yield session


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    return test_session_factory


@pytest.fixture
def llm() -> ScriptedLlm:
    return ScriptedLlm()


@pytest.fixture
def local_tools() -> LocalToolExecutor:
    return LocalToolExecutor(CatalogNamespace.TOOL)


@pytest.fixture
async def client(llm: ScriptedLlm, local_tools: LocalToolExecutor) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_llm_client] = lambda: llm
    app.dependency_overrides[get_tool_executors] = lambda: {CatalogNamespace.TOOL: local_tools}
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.pop(get_llm_client, None)
    app.dependency_overrides.pop(get_tool_executors, None)
