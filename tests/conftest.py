import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from api_router import ApiRouter  # noqa: E402
from config import Settings  # noqa: E402
from db_service import StudentDataService  # noqa: E402
from documents import MemoryDocumentStore  # noqa: E402
from gemini import GenerationError, TextService  # noqa: E402
from identity import DemoIdentityProvider  # noqa: E402
from stats import StatsAggregator  # noqa: E402


class FakeClock:
    """Deterministic clock; `advance()` moves it forward."""

    def __init__(self, start=datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeTextService(TextService):
    """Returns queued responses instead of calling a model."""

    def __init__(self):
        self.responses = []
        self.chunks = ["Of course. ", "Here is a lesson."]
        self.prompts = []
        self.fail = False

    def generate(self, prompt):
        self.prompts.append(prompt)
        if self.fail:
            raise GenerationError("model unavailable")
        return self.responses.pop(0)

    def generate_stream(self, prompt, image=None):
        self.prompts.append(prompt)
        for chunk in self.chunks:
            yield chunk
        if self.fail:
            raise GenerationError("stream dropped")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def documents(clock):
    return MemoryDocumentStore(clock=clock)


@pytest.fixture
def service(documents, clock):
    return StudentDataService(documents, StatsAggregator(documents, clock=clock))


@pytest.fixture
def router(service):
    return ApiRouter(service)


@pytest.fixture
def text_service():
    return FakeTextService()


@pytest.fixture
def app(documents, text_service):
    from app import create_app

    settings = Settings(secret_key="test-secret", demo_mode=True, log_level="WARNING")
    flask_app = create_app(
        settings=settings,
        documents=documents,
        text_service=text_service,
        identity_factory=DemoIdentityProvider,
    )
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def signed_in(client):
    resp = client.post("/api/firebase-login", json={"idToken": "demo"})
    assert resp.status_code == 200
    return client
