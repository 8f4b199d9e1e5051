"""Shared fixtures for the pawsitive core test suite."""

import base64
from io import BytesIO
from unittest.mock import MagicMock

import pytest
from PIL import Image

from pawsitive import db


@pytest.fixture
def db_path(tmp_path):
    """Fresh SQLite store with the schema applied."""
    path = str(tmp_path / "pawsitive.db")
    db.init_db(path)
    return path


@pytest.fixture
def user_id(db_path):
    """A registered, non-admin user."""
    db.upsert_user(db_path, "user-1", email="owner@example.com", first_name="Robin")
    return "user-1"


@pytest.fixture
def blacklist(db_path):
    """Store seeded with a couple of blacklisted ingredients."""
    db.add_to_blacklist(db_path, "BHA", "Synthetic preservative", "high")
    db.add_to_blacklist(db_path, "Xylitol", "Toxic to dogs", "high")
    return db.get_blacklist(db_path)


@pytest.fixture
def make_product(db_path):
    """Factory for stored products."""
    def _make(**overrides):
        data = {
            "name": "Salmon Feast",
            "brand": "Happy Paws",
            "category": "dog-food",
            "ingredients": "Salmon, sweet potato, peas, fish oil, rosemary extract, vitamin E",
            "barcode": "0001112223334",
        }
        data.update(overrides)
        return db.create_product(db_path, data)
    return _make


@pytest.fixture
def png_base64():
    """A tiny valid PNG, base64 encoded."""
    img = Image.new("RGBA", (4, 4), (200, 30, 30, 255))
    buf = BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


@pytest.fixture
def mock_searcher():
    """Product search collaborator that finds nothing by default."""
    searcher = MagicMock()
    searcher.search.return_value = None
    return searcher


@pytest.fixture
def mock_recognizer():
    """Image recognizer that recognizes nothing by default."""
    recognizer = MagicMock()
    recognizer.recognize.return_value = None
    return recognizer
