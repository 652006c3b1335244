"""
Pytest configuration and fixtures for the import service tests.

Tests run against an in-memory SQLite database and a fake S3 client, so no
Postgres or object storage is needed. Environment overrides must be set
before any ``app`` module reads the settings.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SKIP_DB_INIT", "1")

import pytest

from app.db.session import Base, get_engine
from app.domain.uploads import uploaded_files
from app.domain.uploads.history import invalidate_upload_history
from app.integrations import storage
from tests.utils.fake_s3 import FakeS3Client


@pytest.fixture(autouse=True)
def clean_database():
    """
    Give every test empty org_uploads and staging_records tables and a cold
    history cache.
    """
    engine = get_engine()
    Base.metadata.drop_all(engine)
    uploaded_files._reset_table_flag()
    uploaded_files.create_upload_tables()
    invalidate_upload_history()
    yield
    invalidate_upload_history()


@pytest.fixture
def fake_s3(monkeypatch):
    """Replace the boto3 client with an in-memory bucket."""
    client = FakeS3Client()
    monkeypatch.setattr(storage, "get_storage_client", lambda: client)
    return client
