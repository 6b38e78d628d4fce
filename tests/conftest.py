"""Shared fixtures for the ID scanner tests."""

from __future__ import annotations

import base64
import json
from io import BytesIO
from types import SimpleNamespace
from typing import Any, Mapping, Optional
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from id_scanner.config import Settings
from id_scanner.extraction import ExtractionClient
from id_scanner.main import create_app
from id_scanner.store import InMemoryRecordStore, SqlRecordStore

JANE_DOE = {
    "fullName": "Jane Doe",
    "idNumber": "ID12345678",
    "dateOfBirth": "1990-04-12",
    "expiryDate": "2031-04-11",
    "address": "456 Oak Ave, Chicago, IL 60601",
}


def completion(content: Optional[str]) -> SimpleNamespace:
    """Build an object shaped like an OpenAI chat completion response."""

    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def openai_returning(payload: Any) -> MagicMock:
    """Return a mock OpenAI client whose completion carries ``payload``."""

    content = payload if isinstance(payload, str) or payload is None else json.dumps(payload)
    client = MagicMock()
    client.chat.completions.create.return_value = completion(content)
    return client


@pytest.fixture()
def png_bytes() -> bytes:
    """Return an in-memory PNG image."""

    image = Image.new("RGB", (64, 40), color=(240, 240, 240))
    with BytesIO() as buffer:
        image.save(buffer, format="PNG")
        return buffer.getvalue()


@pytest.fixture()
def png_base64(png_bytes: bytes) -> str:
    return base64.b64encode(png_bytes).decode("ascii")


@pytest.fixture()
def sql_store():
    store = SqlRecordStore("sqlite://")
    store.open()
    yield store
    store.close()


@pytest.fixture()
def memory_store():
    return InMemoryRecordStore()


@pytest.fixture(params=["sql", "memory"])
def store(request):
    """Run a test against both record store backends."""

    if request.param == "memory":
        yield InMemoryRecordStore()
        return
    sql = SqlRecordStore("sqlite://")
    sql.open()
    yield sql
    sql.close()


def make_client(
    payload: Mapping[str, Any] = JANE_DOE,
    *,
    store=None,
    openai_client=None,
) -> TestClient:
    settings = Settings(record_store="sql", database_url="sqlite://")
    extractor = ExtractionClient(openai_client or openai_returning(dict(payload)))
    app = create_app(settings, store=store or SqlRecordStore("sqlite://"), extractor=extractor)
    return TestClient(app)


@pytest.fixture()
def api_client():
    """Test client whose extraction API always reads Jane Doe's ID card."""

    with make_client() as client:
        yield client
