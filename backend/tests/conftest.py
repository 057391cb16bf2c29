"""
Pytest configuration and fixtures for comicstrip backend tests.

Provides:
- Test database setup/teardown
- FastAPI test clients (anonymous and signed in)
- Fake generation endpoints
- Helpers to seed today's generation records
"""

import pytest
import os
from typing import Generator, List
from datetime import date, timedelta
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

# Set test environment before importing app
os.environ["DATABASE_URL"] = "sqlite:///./test_comicstrip.db"
os.environ["PROMPT_GENERATOR_URL"] = "http://prompt-generator.test/api/prompt-generator"
os.environ["IMAGE_GENERATOR_URL"] = "http://image-generator.test/api/image-generator"

from app.main import app
from app.database import Base, get_db
from app.dependencies.auth import get_current_user_id, get_current_user_id_optional
from app.models.models import ComicRecord, generate_uuid
from app.services.comic_generator import sessions
from app.services.generation_clients import get_prompt_generator, get_image_generator
from app.services.quota_ledger import today_utc
from tests.mocks import FakePromptClient, FakeImageClient


TEST_DATABASE_URL = "sqlite:///./test_comicstrip.db"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

TEST_USER_ID = "user_2test123"
OTHER_USER_ID = "user_2other456"


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create test database tables once per test session"""
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()
    if os.path.exists("./test_comicstrip.db"):
        os.remove("./test_comicstrip.db")


@pytest.fixture(autouse=True)
def reset_sessions():
    """Generation sessions live in process memory; start every test clean"""
    sessions.clear()
    yield
    sessions.clear()


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Provide a database session for each test, with rollback after"""
    connection = test_engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def prompt_client() -> FakePromptClient:
    return FakePromptClient()


@pytest.fixture
def image_client() -> FakeImageClient:
    return FakeImageClient()


@pytest.fixture(scope="function")
def client(db: Session, prompt_client: FakePromptClient, image_client: FakeImageClient) -> Generator[TestClient, None, None]:
    """Anonymous FastAPI test client with database and generation endpoints overridden"""
    def override_get_db():
        try:
            yield db
        finally:
            pass  # Don't close - let the fixture handle it

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_prompt_generator] = lambda: prompt_client
    app.dependency_overrides[get_image_generator] = lambda: image_client
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def auth_client(client: TestClient) -> TestClient:
    """Test client signed in as TEST_USER_ID"""
    app.dependency_overrides[get_current_user_id] = lambda: TEST_USER_ID
    app.dependency_overrides[get_current_user_id_optional] = lambda: TEST_USER_ID
    return client


# =========================================================================
# Record Helpers
# =========================================================================

def seed_records(db: Session, user_id: str, count: int, day: date = None) -> List[ComicRecord]:
    """Insert ``count`` generation records for ``user_id`` on ``day`` (today by default)"""
    day = day or today_utc()
    records = []
    for i in range(count):
        record = ComicRecord(
            id=generate_uuid(),
            user_id=user_id,
            created_at=day,
            prompt=f"seeded prompt {i}"
        )
        records.append(record)
        db.add(record)
    db.commit()
    return records


def yesterday() -> date:
    return today_utc() - timedelta(days=1)
