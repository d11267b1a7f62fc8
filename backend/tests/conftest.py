import os

# Keep app startup (init_db) away from the on-disk default database
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import fakeredis  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from stage_engine.database import get_session  # noqa: E402
from stage_engine.main import app  # noqa: E402
from stage_engine.services import leaderboard_cache, stage_events  # noqa: E402

TEST_DATABASE_URL = "sqlite:///:memory:"

# ============================================================================
# Test Database Setup with StaticPool
# ============================================================================
# 1. Use sqlite:///:memory: with StaticPool so ALL sessions share same DB
# 2. check_same_thread=False required for TestClient/threaded access
# 3. All models MUST be imported before create_all() (see tests/__init__.py)
# 4. App dependency overridden to use test_engine (see client_fixture)
# 5. Tables dropped and recreated per test (team names are unique)
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def override_get_session():
    """Override session to use test engine"""
    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="redis_client")
def redis_client_fixture():
    """In-memory Redis shared by the leaderboard cache and the event publisher"""
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture(autouse=True)
def reset_collaborators(redis_client):
    """Fresh leaderboard cache and event publisher singletons per test"""
    leaderboard_cache._leaderboard_cache = leaderboard_cache.LeaderboardCache(client=redis_client, enabled=True)
    stage_events._stage_event_publisher = stage_events.StageEventPublisher(client=redis_client)
    yield
    leaderboard_cache._leaderboard_cache = None
    stage_events._stage_event_publisher = None


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Provide a test database session on a freshly created schema"""
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)

    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="client")
def client_fixture(session: Session):
    """Provide a test client with overridden database session

    Override MUST be set BEFORE TestClient() and stay in place
    for the entire duration, so the app never uses its own engine.
    """
    app.dependency_overrides[get_session] = override_get_session

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def events():
    """Collect stage events published to any stage id passed to .watch()"""

    class Recorder:
        def __init__(self):
            self._subscriptions = []
            self._received = []

        def watch(self, stage_id: int):
            self._subscriptions.append(stage_events.get_stage_event_publisher().subscribe(stage_id))

        @property
        def received(self):
            for pubsub in self._subscriptions:
                self._received.extend(stage_events.read_stage_events(pubsub))
            return self._received

        def types(self):
            return [event["type"] for event in self.received]

        def close(self):
            for pubsub in self._subscriptions:
                pubsub.close()

    recorder = Recorder()
    yield recorder
    recorder.close()
