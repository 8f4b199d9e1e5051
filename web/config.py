"""Centralized configuration for the PawsitiveCheck web app."""

import os
from pathlib import Path

from pawsitive.config import DB_PATH as CORE_DB_PATH
from pawsitive.config import MAX_IMAGE_SIZE

# Determine project root (parent of 'web' directory)
_THIS_DIR = Path(__file__).parent
_PROJECT_ROOT = _THIS_DIR.parent

# Database - relative paths resolve against the project root
DB_PATH = str(_PROJECT_ROOT / CORE_DB_PATH) if not Path(CORE_DB_PATH).is_absolute() else CORE_DB_PATH

# Flask app settings (allow env overrides; default debug off for safety)
# Render sets PORT dynamically; fall back to FLASK_PORT or 5000 for local.
FLASK_HOST = os.getenv("FLASK_HOST", "0.0.0.0")
FLASK_PORT = int(os.getenv("FLASK_PORT", os.getenv("PORT", "5000")))
FLASK_DEBUG = os.getenv("FLASK_DEBUG", "False").lower() == "true"

# Base64 inflates by 4/3; leave headroom for the JSON envelope
MAX_CONTENT_LENGTH = MAX_IMAGE_SIZE * 4 // 3 + 64 * 1024

# Product listing pagination
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "50"))
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "200"))

# Users granted admin on their first request (comma-separated ids)
ADMIN_USER_IDS = {
    uid.strip() for uid in os.getenv("PAWSITIVE_ADMIN_IDS", "").split(",") if uid.strip()
}

# Logging
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "True").lower() == "true"
