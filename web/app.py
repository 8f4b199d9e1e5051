"""Flask web app for PawsitiveCheck.

Serves the JSON API used by the scanner and product pages. Run directly for
local development, or point a WSGI server at ``web.app:app``.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

# Load environment variables from .env file (explicitly specify path)
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

from flask import Flask, Response, jsonify, request  # noqa: E402
from werkzeug.exceptions import HTTPException  # noqa: E402

from pawsitive.db import init_db  # noqa: E402
from pawsitive.logging_config import get_logger, setup_logging  # noqa: E402

from .api import api  # noqa: E402
from .config import (  # noqa: E402
    DB_PATH,
    FLASK_DEBUG,
    FLASK_HOST,
    FLASK_PORT,
    LOG_TO_FILE,
    MAX_CONTENT_LENGTH,
)

__all__ = ["app", "create_app"]

logger = get_logger("web")


def create_app(config: Optional[Dict[str, Any]] = None) -> Flask:
    """Build the Flask app.

    Args:
        config: Overrides for app.config, e.g. ``DB_PATH``, ``TESTING``,
            ``PRODUCT_SEARCHER`` or ``IMAGE_RECOGNIZER``.
    """
    flask_app = Flask(__name__)
    flask_app.config.update(
        DB_PATH=DB_PATH,
        MAX_CONTENT_LENGTH=MAX_CONTENT_LENGTH,
    )
    flask_app.json.sort_keys = False
    if config:
        flask_app.config.update(config)

    if not flask_app.testing:
        setup_logging(
            level=logging.DEBUG if FLASK_DEBUG else logging.INFO,
            log_to_file=LOG_TO_FILE,
        )

    flask_app.register_blueprint(api)
    flask_app.extensions["pawsitive_schema_ready"] = False

    @flask_app.before_request
    def ensure_schema() -> None:
        """Create tables on the first request of the process."""
        if not flask_app.extensions["pawsitive_schema_ready"]:
            init_db(flask_app.config["DB_PATH"])
            flask_app.extensions["pawsitive_schema_ready"] = True

    @flask_app.errorhandler(HTTPException)
    def http_error(e: HTTPException):
        """JSON errors for API routes; default pages elsewhere."""
        if not request.path.startswith("/api"):
            return e
        messages = {
            404: "Not found.",
            405: "Method not allowed.",
            413: "Upload too large. Please use a smaller image.",
        }
        return jsonify({"error": messages.get(e.code, e.description)}), e.code

    @flask_app.route("/", methods=["GET"])
    def index() -> Response:
        return jsonify({"service": "pawsitive", "api": "/api"})

    return flask_app


app = create_app()


if __name__ == "__main__":
    # python -m web.app
    app.run(host=FLASK_HOST, port=FLASK_PORT, debug=FLASK_DEBUG)
