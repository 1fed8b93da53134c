import asyncio
import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

# Import app first; it pulls in the models so their tables are registered
from main import app
import auth
import models
from database import Base, build_engine
from notifications import Notifier
from settings import Settings
from state import AppState
from store import HaulStore

TEST_DATABASE_URL = "sqlite:///./haulhelper-test.db"

test_engine = build_engine(TEST_DATABASE_URL)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create the test database from models, removing any leftover file first."""
    db_path = TEST_DATABASE_URL.split("///")[-1]
    if os.path.exists(db_path):
        os.unlink(db_path)

    Base.metadata.create_all(bind=test_engine)

    yield  # Tests run here

    test_engine.dispose()
    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(db_path + suffix):
            os.unlink(db_path + suffix)


@pytest.fixture(scope="function")
def test_settings() -> Settings:
    """No simulated latency, no notification delays, no AI key, no push backend."""
    return Settings(
        gemini_api_key=None,
        store_latency_seconds=0,
        auth_latency_seconds=0,
        notification_delay_scale=0,
        push_base_url=None,
    )


@pytest.fixture(scope="function")
def session_factory(setup_test_database):
    """Session factory over an emptied storage table."""
    with TestSessionLocal() as db:
        db.query(models.StorageEntry).delete()
        db.commit()
    return TestSessionLocal


@pytest.fixture(scope="function")
def store(session_factory, test_settings) -> HaulStore:
    return HaulStore(session_factory, test_settings)


@pytest.fixture(scope="function")
def state(store, test_settings) -> AppState:
    return AppState(
        store=store,
        notifier=Notifier(test_settings),
        auth=auth.DemoAuthProvider(store, test_settings),
    )


@pytest.fixture(scope="function")
def test_client(state):
    """Test client wired to the test state instead of the lifespan-built one."""
    asyncio.run(state.load())
    original = getattr(app.state, "haul", None)
    app.state.haul = state

    yield TestClient(app)

    app.state.haul = original
