"""Global test fixtures for VoiceOps."""

import asyncio
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from voiceops.db.base import Base
from voiceops.db.models import CampaignDB, CampaignLeadDB, ClientCreditDB, VoiceAgentDB
from voiceops.db.session import get_session
from voiceops.main import app
from voiceops.models.campaign import CampaignStatus
from voiceops.models.user import UserRole
from voiceops.services.auth_service import create_access_token, create_user
from voiceops.services.dependencies import get_voice_provider
from voiceops.services.voice_mock import MockVoiceProvider
from voiceops.websocket.connection_manager import manager

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    class_=AsyncSession,
)

voice_provider = MockVoiceProvider()


@dataclass(frozen=True)
class Seed:
    """Ids of the rows every test database starts with."""

    admin_id: str = "user-admin"
    engineer_id: str = "user-engineer"
    client_a_id: str = "client-a"
    client_b_id: str = "client-b"
    telecaller_id: str = "user-telecaller"
    monitoring_id: str = "user-monitoring"
    lead_manager_id: str = "user-lead-manager"
    agent_a_id: str = "agent-a"
    agent_b_id: str = "agent-b"


SEED = Seed()

# id, username, password, role, parent client, full name, email, phone
SEED_USERS = (
    (SEED.admin_id, "admin", "admin123", UserRole.ADMIN, None, "Site Admin", "admin@voiceops.test", None),
    (SEED.engineer_id, "engineer", "engineer123", UserRole.ENGINEER, None, "Ravi Kumar", "ravi@voiceops.test", "+919800000001"),
    (SEED.client_a_id, "client_a", "client123", UserRole.CLIENT, None, "Asha Rao", "asha@acme.test", "+919811112222"),
    (SEED.client_b_id, "client_b", "client123", UserRole.CLIENT, None, "Bala Iyer", "bala@globex.test", "+919833334444"),
    (SEED.telecaller_id, "telecaller", "telecaller123", UserRole.TELECALLER, SEED.client_a_id, "Tara Singh", "tara@acme.test", None),
    (SEED.monitoring_id, "monitor", "monitor123", UserRole.MONITORING, SEED.client_a_id, "Mohan Das", "mohan@acme.test", None),
    (SEED.lead_manager_id, "leadmgr", "leadmgr123", UserRole.LEAD_MANAGER, SEED.client_a_id, "Lata Menon", "lata@acme.test", None),
)


async def _init_test_db() -> None:
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        for user_id, username, password, role, client_id, full_name, email, phone in SEED_USERS:
            await create_user(
                session,
                username=username,
                password=password,
                role=role,
                email=email,
                full_name=full_name,
                phone=phone,
                client_id=client_id,
                user_id=user_id,
            )
        session.add_all(
            [
                VoiceAgentDB(
                    id=SEED.agent_a_id,
                    external_agent_id="ext-agent-a-0001",
                    agent_name="Acme Sales Agent",
                    client_id=SEED.client_a_id,
                    engineer_id=SEED.engineer_id,
                ),
                VoiceAgentDB(
                    id=SEED.agent_b_id,
                    external_agent_id="ext-agent-b-0001",
                    agent_name="Globex Support Agent",
                    client_id=SEED.client_b_id,
                ),
                ClientCreditDB(client_id=SEED.client_a_id, balance=500.0),
                ClientCreditDB(client_id=SEED.client_b_id, balance=0.0),
            ]
        )
        await session.commit()


async def _drop_test_db() -> None:
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)


@pytest.fixture
def anyio_backend() -> str:
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture(scope="session", autouse=True)
def setup_test_database() -> None:
    """Initialize and tear down the test database."""

    async def override_get_session() -> AsyncIterator[AsyncSession]:
        async with TestSessionLocal() as session:
            yield session

    asyncio.run(_init_test_db())
    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_voice_provider] = lambda: voice_provider

    yield

    app.dependency_overrides.clear()
    asyncio.run(_drop_test_db())
    asyncio.run(engine.dispose())


@pytest.fixture(autouse=True)
def reset_in_process_state() -> None:
    """Fresh mock provider and WebSocket topics for every test."""
    voice_provider.reset()
    manager.reset()


@pytest.fixture
def seed() -> Seed:
    return SEED


@pytest.fixture
def mock_voice() -> MockVoiceProvider:
    """The mock provider wired into the app."""
    return voice_provider


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    """Create async HTTP client for testing."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
async def db_session() -> AsyncIterator[AsyncSession]:
    """Session on the test database for setup and assertions."""
    async with TestSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory() -> async_sessionmaker[AsyncSession]:
    """Factory for tests that need more than one session at a time."""
    return TestSessionLocal


@pytest.fixture
def headers_for()-> Callable[[str], dict[str, str]]:
    """Bearer headers for a seeded username."""

    def _headers(username: str) -> dict[str, str]:
        token = create_access_token(data={"sub": username})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@dataclass
class CampaignFixture:
    id: str
    lead_ids: list[str]
    client_id: str


@pytest.fixture
def make_campaign() -> Callable[..., Awaitable[CampaignFixture]]:
    """Create a campaign with leads straight in the database."""

    async def _make(
        leads: int = 3,
        client_id: str = SEED.client_a_id,
        agent_id: str | None = SEED.agent_a_id,
        status: CampaignStatus = CampaignStatus.RUNNING,
        concurrency_level: int = 10,
        max_attempts: int = 5,
        retry_delay_minutes: int = 3,
        caller_id: str | None = "+15550000001",
    ) -> CampaignFixture:
        campaign_id = str(uuid.uuid4())
        lead_ids = [str(uuid.uuid4()) for _ in range(leads)]
        async with TestSessionLocal() as session:
            session.add(
                CampaignDB(
                    id=campaign_id,
                    client_id=client_id,
                    agent_id=agent_id,
                    name=f"Campaign {campaign_id[:8]}",
                    status=status,
                    concurrency_level=concurrency_level,
                    max_attempts=max_attempts,
                    retry_delay_minutes=retry_delay_minutes,
                    caller_id=caller_id,
                )
            )
            await session.flush()
            session.add_all(
                [
                    CampaignLeadDB(
                        id=lead_id,
                        campaign_id=campaign_id,
                        client_id=client_id,
                        phone_number=f"+1555{index:07d}",
                        name=f"Lead {index}",
                        email=f"lead{index}@example.test",
                    )
                    for index, lead_id in enumerate(lead_ids)
                ]
            )
            await session.commit()
        return CampaignFixture(id=campaign_id, lead_ids=lead_ids, client_id=client_id)

    return _make


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply test markers based on directory."""
    for item in items:
        path = Path(str(item.fspath))
        parts = path.parts
        if "tests" in parts:
            if "unit" in parts:
                item.add_marker(pytest.mark.unit)
            elif "e2e" in parts:
                item.add_marker(pytest.mark.e2e)
            elif "integration" in parts:
                item.add_marker(pytest.mark.integration)
