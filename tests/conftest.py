import json
import uuid

import pytest
from fastapi.testclient import TestClient

from app.config.settings import Settings
from app.main import create_app


@pytest.fixture
def settings():
    return Settings(ingest_transport="none")


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def hub(app):
    return app.state.hub


@pytest.fixture
def engine(app):
    return app.state.query_engine


@pytest.fixture
def payload():
    """Build a raw JSON payload the way a device would publish it."""

    def _payload(**fields) -> bytes:
        return json.dumps(fields).encode()

    return _payload


@pytest.fixture
def unique_id():
    return uuid.uuid4().hex[:8]
