"""
Shared fixtures.

Every test gets a fresh in-memory MongoDB (mongomock) and its own upload
directory. UPLOAD_DIR is pointed at a temp dir before main.py is imported so
the module-level app never writes into the working tree.
"""

import io
import os
import tempfile

os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="catalog-uploads-"))

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import ensure_indexes
from schemas import ENTITY_KINDS


class FakeUpload:
    """Minimal stand-in for an UploadFile."""

    def __init__(self, filename: str, content: bytes):
        self.filename = filename
        self.file = io.BytesIO(content)


class RecordingBroadcaster:
    """Collects published events instead of delivering them."""

    def __init__(self):
        self.events = []

    def publish(self, event, payload):
        self.events.append((event, payload))
        return 1

    def names(self):
        return [name for name, _ in self.events]


@pytest.fixture
def database():
    """Fresh in-memory database with unique indexes in place."""
    database = mongomock.MongoClient().catalog_test
    ensure_indexes(database, ENTITY_KINDS)
    return database


@pytest.fixture
def upload_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def settings(upload_dir):
    return Settings(upload_dir=upload_dir)


@pytest.fixture
def client(database, settings):
    """TestClient running the app (and its lifespan) against mongomock."""
    from main import create_app

    with TestClient(create_app(database=database, settings=settings)) as client:
        yield client
