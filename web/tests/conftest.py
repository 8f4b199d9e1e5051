"""Shared test fixtures and utilities for the web test suite."""

import base64
import os
from io import BytesIO
from unittest.mock import MagicMock

import pytest
from PIL import Image

# Keep module-level app creation from writing JSONL logs during tests
os.environ.setdefault("LOG_TO_FILE", "False")

from pawsitive import db  # noqa: E402
from pawsitive.guidance import GuidanceWriter  # noqa: E402
from web.app import create_app  # noqa: E402


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "web.db")
    db.init_db(path)
    return path


@pytest.fixture
def mock_searcher():
    """Product search collaborator that finds nothing by default."""
    searcher = MagicMock()
    searcher.search.return_value = None
    return searcher


@pytest.fixture
def mock_recognizer():
    recognizer = MagicMock()
    recognizer.recognize.return_value = None
    return recognizer


@pytest.fixture
def llm_client():
    """OpenAI-style client whose replies tests can set."""
    client = MagicMock()
    client.responses.create.return_value = MagicMock(output_text="Bag it and bin it.")
    return client


@pytest.fixture
def app(db_path, mock_searcher, mock_recognizer, llm_client):
    """Flask app bound to a temporary store and mocked collaborators."""
    flask_app = create_app({
        "TESTING": True,
        "DB_PATH": db_path,
        "PRODUCT_SEARCHER": mock_searcher,
        "IMAGE_RECOGNIZER": mock_recognizer,
        "GUIDANCE_WRITER": GuidanceWriter(client=llm_client),
    })
    return flask_app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture
def user_headers():
    return {"X-User-Id": "user-1", "X-User-Email": "owner@example.com"}


@pytest.fixture
def other_headers():
    return {"X-User-Id": "user-2"}


@pytest.fixture
def admin_headers(db_path):
    db.upsert_user(db_path, "admin-1", email="admin@example.com", is_admin=True)
    return {"X-User-Id": "admin-1"}


@pytest.fixture
def product(db_path):
    """A stored, never-analysed product."""
    return db.create_product(db_path, {
        "name": "Salmon Feast",
        "brand": "Happy Paws",
        "category": "dog-food",
        "ingredients": "Salmon, sweet potato, peas, fish oil, rosemary extract, vitamin E",
        "barcode": "5000000000017",
        "baseline_score": 90,
    })


@pytest.fixture
def png_base64():
    img = Image.new("RGB", (4, 4), "white")
    buf = BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")
