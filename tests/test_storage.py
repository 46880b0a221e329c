"""
Tests for the message store functions.
"""

from types import SimpleNamespace

import pytest
from minio import Minio
from sqlalchemy.exc import OperationalError

from oa_console import storage
from oa_console.errors import StorageError
from oa_console.object_storage import ObjectStorage
from oa_console.schemas import ImageContent, Message, MessageDirection, TextContent


def make_message(message_id: str, timestamp: int, odna: str = "U1", text: str = "hello") -> Message:
    return Message(
        id=message_id,
        counterpart_id=odna,
        direction=MessageDirection.INCOMING,
        content=TextContent(text=text),
        timestamp=timestamp,
    )


class TestInsertIfAbsent:
    def test_first_insert_creates(self, db):
        message = make_message("m1", 10)

        stored, created = storage.insert_if_absent(db, message)

        assert created is True
        assert stored == message
        assert storage.get_message(db, "m1") == message

    def test_repeated_insert_is_noop(self, db):
        for _ in range(5):
            storage.insert_if_absent(db, make_message("m1", 10))

        page = storage.query_page(db, limit=50)
        assert [m.id for m in page.messages] == ["m1"]

    def test_existing_content_returned_not_overwritten(self, db):
        storage.insert_if_absent(db, make_message("m1", 10, text="first"))

        stored, created = storage.insert_if_absent(db, make_message("m1", 99, text="second"))

        assert created is False
        assert stored.text == "first"
        assert stored.timestamp == 10
        assert storage.get_message(db, "m1").text == "first"

    def test_image_round_trips(self, db):
        message = Message(
            id="img1",
            counterpart_id="U1",
            direction=MessageDirection.INCOMING,
            content=ImageContent(url="https://storage.test/img1.jpg"),
            timestamp=10,
            webhook_event_id="evt-1",
        )
        storage.insert_if_absent(db, message)

        loaded = storage.get_message(db, "img1")
        assert loaded.content == ImageContent(url="https://storage.test/img1.jpg", caption="Sent an image")
        assert loaded.image_url == "https://storage.test/img1.jpg"
        assert loaded.webhook_event_id == "evt-1"


class TestQueryPage:
    def test_pages_reconstruct_thread(self, db):
        for ts in [10, 20, 30, 40, 50, 60, 70]:
            storage.insert_if_absent(db, make_message(f"m{ts}", ts))
        storage.insert_if_absent(db, make_message("other", 35, odna="U2"))

        collected = []
        before = None
        pages = 0
        while True:
            page = storage.query_page(db, odna="U1", limit=3, before=before)
            collected = page.messages + collected
            pages += 1
            if not page.has_more:
                break
            before = page.messages[0].timestamp

        assert pages == 3
        assert [m.timestamp for m in collected] == [10, 20, 30, 40, 50, 60, 70]
        assert len({m.id for m in collected}) == len(collected)

    def test_ties_ordered_by_id(self, db):
        for message_id in ["b", "c", "a"]:
            storage.insert_if_absent(db, make_message(message_id, 100))

        page = storage.query_page(db, odna="U1", limit=10)

        assert [m.id for m in page.messages] == ["a", "b", "c"]

    def test_database_error_degrades_to_empty(self):
        class BrokenSession:
            def query(self, *args, **kwargs):
                raise OperationalError("SELECT", {}, Exception("database is down"))

        page = storage.query_page(BrokenSession(), odna="U1", limit=10)

        assert page.messages == []
        assert page.has_more is False


class TestDialects:
    def test_current_database_supported(self, db):
        assert storage.ensure_supported_dialect(db.get_bind()) == "sqlite"

    def test_unsupported_dialect_refused(self):
        oracle = SimpleNamespace(dialect=SimpleNamespace(name="oracle"))

        with pytest.raises(StorageError, match="oracle"):
            storage.ensure_supported_dialect(oracle)

    def test_insert_on_unsupported_dialect_raises(self):
        class OracleSession:
            def get_bind(self):
                return SimpleNamespace(dialect=SimpleNamespace(name="oracle"))

        with pytest.raises(StorageError):
            storage.insert_if_absent(OracleSession(), make_message("m1", 10))


class TestObjectStorage:
    def make_storage(self, **kwargs) -> ObjectStorage:
        client = Minio("localhost:9000", access_key="key", secret_key="secret", secure=False, region="us-east-1")
        return ObjectStorage(client, bucket="chat-images", endpoint_url="http://localhost:9000", **kwargs)

    def test_presigned_url_clamped_to_seven_days(self):
        url = self.make_storage(url_expires_in=31536000).durable_url("m1.jpg")

        assert url.startswith("http://localhost:9000/chat-images/m1.jpg?")
        assert "X-Amz-Expires=604800" in url

    def test_shorter_expiry_kept(self):
        url = self.make_storage(url_expires_in=3600).durable_url("m1.jpg")

        assert "X-Amz-Expires=3600" in url

    def test_public_base_url(self):
        objects = self.make_storage(public_base_url="https://cdn.example.test/")

        assert objects.durable_url("m1.jpg") == "https://cdn.example.test/chat-images/m1.jpg"

    def test_object_name_for_own_urls(self):
        objects = self.make_storage(public_base_url="https://cdn.example.test")

        assert objects.object_name_for_url(self.make_storage().durable_url("1-my photo.jpg")) == "1-my photo.jpg"
        assert objects.object_name_for_url("https://cdn.example.test/chat-images/m1.jpg") == "m1.jpg"
        assert objects.object_name_for_url("https://elsewhere.test/chat-images/m1.jpg") is None
        assert objects.object_name_for_url("http://localhost:9000/other-bucket/m1.jpg") is None
