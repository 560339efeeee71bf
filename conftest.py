import importlib
import sys

import pytest

from config import settings
from lending import LendingService


@pytest.fixture
def db_file(tmp_path):
    # tmp_path is already unique per test
    return str(tmp_path / "lending.db")


@pytest.fixture
def service(db_file):
    service = LendingService(db_file=db_file)
    yield service
    service.close()


@pytest.fixture
def client(db_file, monkeypatch):
    from fastapi.testclient import TestClient

    monkeypatch.setattr(settings, "database_file", db_file)
    if "api" in sys.modules:
        # Rebuild the module-level service so it points at this test's database
        api_module = importlib.reload(sys.modules["api"])
    else:
        api_module = importlib.import_module("api")

    test_client = TestClient(api_module.app)
    try:
        yield test_client
    finally:
        api_module.lending.close()


@pytest.fixture
def member_id(service):
    return service.create_member("alice", "wonderland", "Alice Liddell")


@pytest.fixture
def book_id(service):
    return service.add_book("Dune", "Frank Herbert", "https://covers.example/dune.jpg").book_id
