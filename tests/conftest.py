import os
import tempfile
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.config import settings

# Override settings for tests
settings.fernet_key = "KxJCocbnA3KD20pkgSN3uUZybasKP1X9lAJDX4oLxoQ="  # test-only Fernet key
settings.app_env = "development"
settings.openai_api_key = ""
settings.perplexity_api_key = ""
settings.gemini_api_key = ""

from app.core.encryption import encrypt_value  # noqa: E402
from app.core.rate_limit import limiter  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.postgres import get_db, get_session_factory  # noqa: E402
from app.main import app  # noqa: E402  (registers every model on Base.metadata)
from app.models.prompt import Prompt  # noqa: E402
from app.models.provider import Provider  # noqa: E402
from app.models.tenant import Tenant  # noqa: E402

# SQLite file database by default (the fan-out opens several sessions at once,
# which an in-memory database would not share). TEST_DATABASE_URL points the
# suite at PostgreSQL instead. NullPool avoids cross-test connection reuse.
_DB_FILE = os.path.join(tempfile.gettempdir(), f"llm_visibility_test_{os.getpid()}.db")
TEST_DB_URL = os.environ.get("TEST_DATABASE_URL", f"sqlite+aiosqlite:///{_DB_FILE}")

test_engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=NullPool)
test_session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

# Limits would otherwise leak between API tests sharing the client address
limiter.enabled = False


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
def session_factory() -> async_sessionmaker[AsyncSession]:
    return test_session_factory


@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with test_session_factory() as session:
        yield session


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def providers(db: AsyncSession) -> dict[str, Provider]:
    """The three supported providers, enabled, default tier policy."""
    rows = {
        name: Provider(name=name, model=model, is_enabled=True, allowed_tiers=[])
        for name, model in (("openai", "gpt-4o-mini"), ("perplexity", "sonar"), ("gemini", "gemini-2.0-flash"))
    }
    db.add_all(rows.values())
    await db.commit()
    return rows


@pytest.fixture
async def tenant(db: AsyncSession) -> Tenant:
    """A growth-tier tenant with its own keys for every provider."""
    t = Tenant(
        name="Acme",
        domain="acme.com",
        plan="growth",
        brand_variants=["Acme Corp"],
        competitors=["Globex"],
        timezone="America/New_York",
        openai_api_key=encrypt_value("sk-openai-test"),
        perplexity_api_key=encrypt_value("pplx-test"),
        gemini_api_key=encrypt_value("gemini-test"),
    )
    db.add(t)
    await db.commit()
    return t


@pytest.fixture
async def prompts(db: AsyncSession, tenant: Tenant) -> list[Prompt]:
    rows = [
        Prompt(tenant_id=tenant.id, text="What is the best CRM for small teams?"),
        Prompt(tenant_id=tenant.id, text="Which marketing automation tools are worth it?"),
    ]
    db.add_all(rows)
    await db.commit()
    return rows


@pytest.fixture
def fake_executor():
    """Factory for a provider executor stand-in.

    ``behaviour`` maps provider name to response text, or to a ProviderError
    (returned as a failed outcome) or any other exception (raised).
    """
    from app.collectors.errors import ProviderError
    from app.collectors.llm_base import LlmResponse
    from app.collectors.retry import ProviderOutcome

    def _make(behaviour: dict | None = None, default: str = "Acme is a solid pick. See https://acme.com"):
        behaviour = behaviour or {}
        calls: list[tuple[str, str]] = []

        async def executor(provider, prompt_text, api_key, *, model=None, timeout=None, policy=None):
            calls.append((provider, prompt_text))
            result = behaviour.get(provider, default)
            if isinstance(result, ProviderError):
                return ProviderOutcome(provider=provider, error=result, attempts=1)
            if isinstance(result, Exception):
                raise result
            return ProviderOutcome(
                provider=provider,
                response=LlmResponse(text=result, model=model or "test-model", token_in=10, token_out=20),
                attempts=1,
            )

        executor.calls = calls
        return executor

    return _make


@pytest.fixture
def make_controller(session_factory):
    """BatchJobController whose fan-out uses the given executor and no RPM limits."""
    from app.services.batch_jobs import BatchJobController
    from app.services.fanout import ExecutionFanOut

    def _make(executor, **kwargs):
        fanout = ExecutionFanOut(session_factory, concurrency=4, rpm_limits={}, executor=executor)
        return BatchJobController(session_factory, fanout=fanout, **kwargs)

    return _make
