"""
Pytest configuration and shared fixtures.

Test environment variables are set here, before any app import, so the
cached settings pick them up. LINE and object storage are replaced with
in-memory fakes through FastAPI dependency overrides.
"""

import base64
import hashlib
import hmac
import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_oa_console.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("CHANNEL_SECRET", "test-channel-secret")
os.environ.setdefault("CHANNEL_ACCESS_TOKEN", "test-access-token")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

# Clear settings cache before any app imports to ensure test env vars are used
from oa_console.config import get_settings  # noqa: E402
get_settings.cache_clear()

from oa_console.errors import LineApiError, ObjectStorageError  # noqa: E402
from oa_console.line_api import ContentDownload, get_line_client  # noqa: E402
from oa_console import models  # noqa: E402,F401
from oa_console.main import app  # noqa: E402
from oa_console.object_storage import get_object_storage  # noqa: E402
from oa_console.storage import Base, SessionLocal, engine  # noqa: E402


TEST_CHANNEL_SECRET = os.environ["CHANNEL_SECRET"]


def compute_signature(body: str, secret: str = TEST_CHANNEL_SECRET) -> str:
    """Compute the x-line-signature for a request body."""
    digest = hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def text_event(message_id: str, user_id: str = "U1", text: str = "Hello", timestamp: int = 1700000000000) -> dict:
    return {
        "type": "message",
        "mode": "active",
        "timestamp": timestamp,
        "webhookEventId": f"evt-{message_id}",
        "source": {"type": "user", "userId": user_id},
        "replyToken": "reply-token",
        "message": {"id": message_id, "type": "text", "text": text},
    }


def image_event(message_id: str, user_id: str = "U1", timestamp: int = 1700000000000) -> dict:
    return {
        "type": "message",
        "mode": "active",
        "timestamp": timestamp,
        "webhookEventId": f"evt-{message_id}",
        "source": {"type": "user", "userId": user_id},
        "replyToken": "reply-token",
        "message": {"id": message_id, "type": "image", "contentProvider": {"type": "line"}},
    }


def post_events(client, events: list, secret: str = TEST_CHANNEL_SECRET):
    body = json.dumps({"destination": "Ubot", "events": events})
    return client.post(
        "/webhook",
        content=body,
        headers={"Content-Type": "application/json", "x-line-signature": compute_signature(body, secret)},
    )


class FakeLineClient:
    """In-memory stand-in for LineMessagingClient."""

    def __init__(self):
        self.pushed = []
        self.push_error = None
        self.contents = {}
        self.content_types = {}
        self.failing_content = set()
        self.profiles = {}

    async def push_message(self, to, messages):
        if self.push_error is not None:
            raise self.push_error
        self.pushed.append({"to": to, "messages": messages})
        return {}

    async def push_text(self, to, text):
        return await self.push_message(to, [{"type": "text", "text": text}])

    async def push_image(self, to, image_url):
        return await self.push_message(to, [{
            "type": "image",
            "originalContentUrl": image_url,
            "previewImageUrl": image_url,
        }])

    async def get_message_content(self, message_id):
        if message_id in self.failing_content:
            raise LineApiError("content download returned 404", status_code=404)
        return ContentDownload(
            self.contents.get(message_id, b"\xff\xd8\xff\xe0fake-jpeg"),
            self.content_types.get(message_id),
        )

    async def get_profile(self, user_id):
        if user_id not in self.profiles:
            raise LineApiError("LINE API returned 404", status_code=404)
        return self.profiles[user_id]

    async def get_bot_info(self):
        return {"userId": "Ubot", "basicId": "@123abcde", "displayName": "Test OA", "chatMode": "chat"}


class FakeObjectStorage:
    """
    In-memory stand-in for ObjectStorage.

    Read URLs embed `clock`, the time they were signed at; advance it to
    simulate signatures expiring.
    """

    bucket = "chat-images"
    base = "https://storage.test"

    def __init__(self):
        self.objects = {}
        self.fail_uploads = False
        self.clock = 0

    def put_bytes(self, object_name, data, content_type="application/octet-stream"):
        if self.fail_uploads:
            raise ObjectStorageError(f"upload of {object_name} failed")
        self.objects[object_name] = (data, content_type)

    def durable_url(self, object_name):
        return f"{self.base}/{self.bucket}/{object_name}?X-Amz-Date={self.clock}&X-Amz-Signature=abc"

    def upload_url(self, object_name, expires=3600):
        return f"{self.base}/{self.bucket}/{object_name}?X-Amz-Signature=put"

    def object_name_for_url(self, url):
        prefix = f"{self.base}/{self.bucket}/"
        if not url.startswith(prefix):
            return None
        return url[len(prefix):].split("?", 1)[0]


@pytest.fixture
def fake_line():
    return FakeLineClient()


@pytest.fixture
def fake_storage():
    return FakeObjectStorage()


@pytest.fixture(scope="function")
def client(fake_line, fake_storage):
    """Create test client with fresh database and fake collaborators for each test."""
    Base.metadata.create_all(bind=engine)
    app.dependency_overrides[get_line_client] = lambda: fake_line
    app.dependency_overrides[get_object_storage] = lambda: fake_storage

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    """A database session on a fresh schema, for storage-level tests."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def count_rows() -> int:
    with SessionLocal() as session:
        return session.query(models.Message).count()
