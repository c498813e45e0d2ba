import pytest
import pytest_asyncio
import os
from typing import AsyncGenerator
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only-min-32-chars")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ENVIRONMENT", "testing")

import sys
from pathlib import Path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from app.main import app
from app.database import enable_sqlite_foreign_keys, get_db
from app.models.base import Base
from app.services.conversation_service import ConversationService
from app.services.message_service import MessageService
from app.services.negotiation_service import NegotiationService
from app.services.offer_service import OfferService
from app.services.realtime_service import realtime_hub
from app.services.saved_offer_service import SavedOfferService
from .test_utils import POSTER_ID, TAKER_ID, offer_payload

TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

@pytest_asyncio.fixture
async def async_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False}
    )
    enable_sqlite_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()

        db_file = "./test.db"
        if os.path.exists(db_file):
            os.remove(db_file)

    except Exception as e:
        print(f"Test cleanup warning: {e}")

@pytest_asyncio.fixture
async def async_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    async_session_maker = async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()

@pytest_asyncio.fixture
async def async_client(async_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        yield async_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        timeout=30.0
    ) as ac:
        yield ac

    app.dependency_overrides.clear()

@pytest.fixture(autouse=True)
def clean_realtime_hub():
    yield realtime_hub
    realtime_hub.user_connections.clear()
    realtime_hub.conversation_connections.clear()
    realtime_hub.connection_metadata.clear()

@pytest_asyncio.fixture
async def offer_service(async_session: AsyncSession) -> OfferService:
    return OfferService(async_session)

@pytest_asyncio.fixture
async def conversation_service(async_session: AsyncSession) -> ConversationService:
    return ConversationService(async_session)

@pytest_asyncio.fixture
async def message_service(async_session: AsyncSession) -> MessageService:
    return MessageService(async_session)

@pytest_asyncio.fixture
async def negotiation_service(async_session: AsyncSession) -> NegotiationService:
    return NegotiationService(async_session)

@pytest_asyncio.fixture
async def saved_offer_service(async_session: AsyncSession) -> SavedOfferService:
    return SavedOfferService(async_session)

@pytest_asyncio.fixture
async def open_offer(offer_service: OfferService):
    return await offer_service.create_offer(POSTER_ID, offer_payload())

@pytest_asyncio.fixture
async def conversation(conversation_service: ConversationService, open_offer):
    return await conversation_service.create_conversation(open_offer.id, TAKER_ID)

@pytest_asyncio.fixture
async def accepted_offer(negotiation_service: NegotiationService, conversation):
    result = await negotiation_service.respond_to_offer(
        conversation.id, POSTER_ID, accept=True
    )
    return result.offer

@pytest_asyncio.fixture
async def pending_cancellation(negotiation_service: NegotiationService, conversation, accepted_offer):
    result = await negotiation_service.request_cancellation(
        conversation.id, TAKER_ID, "schedule conflict"
    )
    return result.offer

@pytest_asyncio.fixture
async def second_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    async_session_maker = async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()
