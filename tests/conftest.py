import queue
import threading

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from database import DocumentStore
from main import build_context, create_app
from repositories import LogRepository, SchemaRepository
from schemas import Identity


APP_ID = "test-app"


def _resolve(event, path):
    value = event
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


class FakeChangeStream:
    """Queue-backed stand-in for a pymongo ChangeStream."""

    def __init__(self, feed, collection, match):
        self.feed = feed
        self.collection = collection
        self.match = match
        self.events = queue.Queue()
        self.closed = False
        self.error = None

    def matches(self, event):
        return all(_resolve(event, k) == v for k, v in self.match.items())

    def try_next(self):
        if self.error is not None:
            raise self.error
        try:
            return self.events.get(timeout=0.02)
        except queue.Empty:
            return None

    def close(self):
        self.closed = True
        self.feed.detach(self)


class FeedStore(DocumentStore):
    """
    DocumentStore over mongomock. mongomock has no change streams, so every
    write made through this store is echoed to the matching fake streams.
    """

    def __init__(self, db, app_id=APP_ID):
        super().__init__(db, app_id, max_await_ms=20)
        self.streams = []
        self.lock = threading.RLock()

    def watch(self, collection, match):
        stream = FakeChangeStream(self, collection, match)
        with self.lock:
            self.streams.append(stream)
        return stream

    def detach(self, stream):
        with self.lock:
            if stream in self.streams:
                self.streams.remove(stream)

    def publish(self, collection, doc_id, operation):
        with self.lock:
            doc = self.db[collection].find_one({"_id": doc_id})
            event = {"operationType": operation, "documentKey": {"_id": doc_id}, "fullDocument": doc}
            for stream in list(self.streams):
                if stream.collection == collection and stream.matches(event):
                    stream.events.put(event)

    def find_document(self, collection, doc_id):
        with self.lock:
            return super().find_document(collection, doc_id)

    def get_documents(self, collection, filter_dict=None, limit=None):
        with self.lock:
            return super().get_documents(collection, filter_dict, limit)

    def replace_document(self, collection, doc_id, document):
        with self.lock:
            super().replace_document(collection, doc_id, document)
            self.publish(collection, doc_id, "replace")

    def insert_if_absent(self, collection, doc_id, document):
        with self.lock:
            super().insert_if_absent(collection, doc_id, document)
            self.publish(collection, doc_id, "insert")

    def create_document(self, collection, document, timestamp_field=None):
        with self.lock:
            doc_id = super().create_document(collection, document, timestamp_field)
            self.publish(collection, ObjectId(doc_id), "insert")
            return doc_id


@pytest.fixture
def store():
    return FeedStore(mongomock.MongoClient()["spire_test"])


@pytest.fixture
def identity():
    return Identity(uid="user-1")


@pytest.fixture
def schemas(store):
    return SchemaRepository(store)


@pytest.fixture
def logs(store):
    return LogRepository(store)


@pytest.fixture
def env(tmp_path):
    return {
        "DATABASE_URL": "mongodb://localhost:27017",
        "DATABASE_NAME": "spire_test",
        "APP_ID": APP_ID,
        "SPIRE_SESSION_FILE": str(tmp_path / "session"),
    }


@pytest.fixture
def client(store, env):
    app = create_app(lambda: build_context(environ=env, store=store, sync_timeout=2))
    with TestClient(app) as c:
        yield c
