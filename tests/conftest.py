import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings, get_settings
from database import get_db
from main import app
from storage import StorageError, get_storage


class FakeStorage:
    def __init__(self):
        self.uploads = []
        self.fail = False

    def upload(self, content, file_name, folder, tags=None, use_unique_file_name=True):
        if self.fail:
            raise StorageError("storage unavailable")
        self.uploads.append(
            {"content": content, "file_name": file_name, "folder": folder, "tags": list(tags or [])}
        )
        return f"https://cdn.example.test{folder}/{file_name}"


@pytest.fixture
def db():
    return mongomock.MongoClient()["classroom_test"]


@pytest.fixture
def settings():
    return Settings(jwt_secret="test-secret", database_name="classroom_test", environment="test")


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def client(db, settings, storage):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_work(client):
    def _make(subject="Math", work="HW1", deadline="2024-01-01", **extra):
        resp = client.post("/api/work/add", json={"subject": subject, "work": work, "deadline": deadline, **extra})
        assert resp.status_code == 200, resp.text
        return resp.json()["newWork"]

    return _make
