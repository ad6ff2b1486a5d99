import uuid
from types import SimpleNamespace

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from omnigate.config import settings
from omnigate.database import Base
from omnigate.dependencies import Container
from omnigate.models import Bot, Channel
from omnigate.services.cache_service import CacheService
from omnigate.services.channels import build_registry
from omnigate.services.dispatch_service import OutboundDispatcher
from omnigate.services.forward_service import AutomationForwarder
from omnigate.services.media_service import MediaPipeline
from omnigate.services.notification_service import Notifier
from omnigate.services.storage_service import ObjectNotFoundError, StoredObject

AUTOMATION_URL = "http://automation.test"
INTERNAL_KEY = "test-internal-key"


class RecordingNotifier(Notifier):
    def __init__(self):
        super().__init__(None)
        self.events = []

    async def publish(self, event, payload, *, workspace_id=None, conversation_id=None):
        self.events.append((event, payload))

    def names(self):
        return [name for name, _ in self.events]


class FakeStorage:
    def __init__(self):
        self.objects = {}

    def put(self, storage_key, data, content_type=None):
        self.objects[storage_key] = (data, content_type)
        return f"media/{storage_key}"

    def get(self, storage_key):
        if storage_key not in self.objects:
            raise ObjectNotFoundError(storage_key)
        data, content_type = self.objects[storage_key]
        return StoredObject(body=data, content_type=content_type, content_length=len(data))


class FakeCache(CacheService):
    def __init__(self, allowed=True, healthy=True):
        super().__init__(None)
        self.allowed = allowed
        self.healthy = healthy

    async def ping(self):
        return self.healthy

    async def check_rate_limit(self, key, limit, window_seconds=60):
        return self.allowed


class ProviderStub:
    """httpx.MockTransport handler routing on URL fragments."""

    def __init__(self):
        self.requests = []
        self.routes = []
        self.add("/sendMessage", 200, {"ok": True, "result": {"message_id": 101}})
        self.add("/chat-message", 200, {"ok": True})
        self.add("/messages", 200, {"messages": [{"id": "wamid.outbound"}]})

    def add(self, fragment, status=200, json=None, content=None, handler=None):
        # newest route wins
        self.routes.insert(0, (fragment, status, json, content, handler))

    def calls(self, fragment):
        return [r for r in self.requests if fragment in str(r.url)]

    def __call__(self, request):
        self.requests.append(request)
        for fragment, status, json, content, handler in self.routes:
            if fragment in str(request.url):
                if handler:
                    return handler(request)
                if content is not None:
                    return httpx.Response(status, content=content)
                return httpx.Response(status, json=json if json is not None else {})
        return httpx.Response(404, json={"error": {"message": "not stubbed"}})


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def workspace(db):
    bot = Bot(
        id=uuid.uuid4(),
        workspace_id=uuid.uuid4(),
        name="Support bot",
        automation_config={"webhook_base_url": AUTOMATION_URL},
    )
    telegram = Channel(
        id=uuid.uuid4(),
        bot_id=bot.id,
        channel_type="telegram",
        public_id="tg-public",
        secret="tg-secret",
        config={"bot_token": "TEST_TOKEN"},
    )
    whatsapp = Channel(
        id=uuid.uuid4(),
        bot_id=bot.id,
        channel_type="whatsapp",
        public_id="wa-public",
        secret="unused",
        config={
            "phone_number_id": "PNID",
            "access_token": "WA_TOKEN",
            "app_secret": "app-secret",
            "verify_token": "verify-me",
        },
    )
    db.add_all([bot, telegram, whatsapp])
    db.commit()
    return SimpleNamespace(bot=bot, telegram=telegram, whatsapp=whatsapp, workspace_id=bot.workspace_id)


@pytest.fixture
def provider():
    return ProviderStub()


@pytest.fixture
def http_client(provider):
    return httpx.AsyncClient(transport=httpx.MockTransport(provider))


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def container(session_factory, http_client, storage, notifier):
    registry = build_registry(http_client)
    return Container(
        settings=settings,
        http_client=http_client,
        registry=registry,
        storage=storage,
        cache=FakeCache(),
        notifier=notifier,
        media=MediaPipeline(
            storage,
            http_client,
            max_bytes=20 * 1024 * 1024,
            download_timeout=5,
            max_image_width=1280,
            image_quality=80,
            concurrency=2,
        ),
        dispatcher=OutboundDispatcher(registry, timeout_seconds=5, max_attempts=3, retry_delay_seconds=0),
        forwarder=AutomationForwarder(http_client, default_base_url=None, max_attempts=3, retry_backoff_seconds=0),
        session_factory=session_factory,
    )


@pytest.fixture
def internal_key(monkeypatch):
    monkeypatch.setattr(settings, "internal_api_key", INTERNAL_KEY)
    return {"X-Internal-Key": INTERNAL_KEY}


@pytest.fixture
def client(session_factory, container):
    from fastapi.testclient import TestClient

    from omnigate.database import get_db
    from omnigate.dependencies import get_container
    from omnigate.main import app

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_container] = lambda: container
    yield TestClient(app)
    app.dependency_overrides.clear()
