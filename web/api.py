"""API endpoints for product safety lookups.

All routes live on the ``api`` blueprint under ``/api``. The caller's identity
comes from the ``X-User-Id`` header set by the upstream auth proxy; users are
upserted on their first request. Responses are JSON with snake_case keys and
errors look like ``{"error": "<actionable text>"}``.
"""

import logging
import sqlite3
from functools import wraps
from typing import Any, Callable, Dict, Optional, Tuple, Type, TypeVar, Union

from flask import Blueprint, Response, current_app, g, jsonify, request
from pydantic import ValidationError

from pawsitive import db
from pawsitive.errors import CAMERA_DENIED_MESSAGE, PawsitiveError
from pawsitive.guidance import GuidanceWriter
from pawsitive.intake import intake, stored_analysis
from pawsitive.logging_config import get_logger, log_event
from pawsitive.models import ScanPayload
from pawsitive.scoring import analyze_candidate, analyze_product, display_clarity, paw_rating, verdict_for
from pawsitive.search import ImageRecognizer, ProductSearchClient

from .config import ADMIN_USER_IDS, DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from .schemas import (
    BlacklistCreate,
    ClarityRequest,
    FeedCreate,
    FeedUpdate,
    InternetSearchRequest,
    OperationCreate,
    PetCreate,
    PetUpdate,
    ProductCreate,
    ProductUpdate,
    RecallCreate,
    RequestModel,
    ReviewCreate,
    ReviewUpdate,
    SaveProductRequest,
    ScanRecordCreate,
    ScanRequest,
)

__all__ = ["api", "ApiError"]

logger = get_logger("web.api")

# Create blueprint for API
api = Blueprint("api", __name__, url_prefix="/api")

JsonResponse = Union[Response, Tuple[Response, int]]
M = TypeVar("M", bound=RequestModel)


class ApiError(Exception):
    """Error with an HTTP status and a message safe to show to users."""

    def __init__(self, status_code: int, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.details = details


# ---------- ERROR HANDLERS ----------


@api.errorhandler(ApiError)
def _handle_api_error(e: ApiError) -> JsonResponse:
    body: Dict[str, Any] = {"error": e.message}
    if e.details is not None:
        body["details"] = e.details
    return jsonify(body), e.status_code


@api.errorhandler(PawsitiveError)
def _handle_pawsitive_error(e: PawsitiveError) -> JsonResponse:
    return jsonify({"error": e.user_message}), e.status_code


@api.errorhandler(sqlite3.Error)
def _handle_db_error(e: sqlite3.Error) -> JsonResponse:
    logger.exception(f"Database error on {request.method} {request.path}")
    return jsonify({"error": "Something went wrong, try again."}), 503


# ---------- HELPERS ----------


def _db_path() -> str:
    return current_app.config["DB_PATH"]


def _searcher():
    return current_app.config.get("PRODUCT_SEARCHER") or ProductSearchClient()


def _recognizer():
    return current_app.config.get("IMAGE_RECOGNIZER") or ImageRecognizer()


def _guidance_writer():
    return current_app.config.get("GUIDANCE_WRITER") or GuidanceWriter()


def _parse(model: Type[M]) -> M:
    """Validate the JSON body against a schema, or raise a 400."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ApiError(400, "Request body must be a JSON object")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        details = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ApiError(400, "Invalid request", details)


def _page_args() -> Tuple[int, int]:
    try:
        limit = int(request.args.get("limit", DEFAULT_PAGE_SIZE))
        offset = int(request.args.get("offset", 0))
    except ValueError:
        raise ApiError(400, "limit and offset must be integers")
    return max(1, min(limit, MAX_PAGE_SIZE)), max(0, offset)


def _optional_int_arg(name: str) -> Optional[int]:
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError:
        raise ApiError(400, f"{name} must be an integer")


def _present(product: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Add display fields to a product dict."""
    if product is None:
        return None
    clarity = display_clarity(product)
    return {
        **product,
        "display_clarity": clarity,
        "verdict": verdict_for(clarity),
        "paw_rating": paw_rating(product.get("cosmic_score") or 0),
    }


def _require_product(product_id: int) -> Dict[str, Any]:
    product = db.get_product(_db_path(), product_id)
    if product is None:
        raise ApiError(404, "Product not found.")
    return product


def login_required(view: Callable) -> Callable:
    """Resolve the caller from X-User-Id into ``g.user``."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        user_id = (request.headers.get("X-User-Id") or "").strip()
        if not user_id:
            raise ApiError(401, "Sign in to continue.")
        g.user = db.upsert_user(
            _db_path(),
            user_id,
            email=request.headers.get("X-User-Email") or None,
            is_admin=True if user_id in ADMIN_USER_IDS else None,
        )
        return view(*args, **kwargs)
    return wrapper


def admin_required(view: Callable) -> Callable:
    @wraps(view)
    @login_required
    def wrapper(*args, **kwargs):
        if not g.user.get("is_admin"):
            raise ApiError(403, "Admin access required.")
        return view(*args, **kwargs)
    return wrapper


# ---------- OPS ----------


@api.route("/health", methods=["GET"])
def health() -> JsonResponse:
    """Liveness plus a cheap store check."""
    try:
        with db.get_connection(_db_path()) as conn:
            conn.execute("SELECT 1").fetchone()
    except sqlite3.Error as e:
        logger.error(f"Health check failed: {e}")
        return jsonify({"status": "degraded", "database": "unavailable"}), 503
    return jsonify({"status": "ok", "database": "ok"})


# ---------- PRODUCTS ----------


@api.route("/products", methods=["GET"])
def list_products() -> JsonResponse:
    limit, offset = _page_args()
    search = request.args.get("search") or None
    products = db.get_products(_db_path(), limit=limit, offset=offset, search=search)
    return jsonify({
        "products": [_present(p) for p in products],
        "limit": limit,
        "offset": offset,
    })


@api.route("/products/<int:product_id>", methods=["GET"])
def get_product(product_id: int) -> JsonResponse:
    return jsonify({"product": _present(_require_product(product_id))})


@api.route("/products/barcode/<code>", methods=["GET"])
def get_product_by_barcode(code: str) -> JsonResponse:
    product = db.get_product_by_barcode(_db_path(), code.strip())
    if product is None:
        return jsonify({"error": "Product not found.", "product": None}), 404
    return jsonify({"product": _present(product)})


@api.route("/products", methods=["POST"])
@login_required
def create_product() -> JsonResponse:
    """Create a product, e.g. when a user accepts an internet search result.

    The new product is analysed immediately so it never sits unscored.
    """
    body = _parse(ProductCreate)
    product = db.create_product(_db_path(), body.model_dump())
    result = analyze_product(_db_path(), product["id"])
    if result is not None:
        product, _ = result
    log_event(
        "product_created",
        {"message": f"Product {product['id']} created by {g.user['id']}",
         "product_id": product["id"], "barcode": product.get("barcode"),
         "source_url": product.get("source_url")},
        logger_name="pawsitive.web",
    )
    return jsonify({"product": _present(product)}), 201


@api.route("/products/<int:product_id>", methods=["PUT"])
@login_required
def update_product(product_id: int) -> JsonResponse:
    """Edit a product. Changes to scoring inputs re-score it right away."""
    body = _parse(ProductUpdate)
    product = db.update_product(_db_path(), product_id, body.model_dump(exclude_unset=True))
    if product is None:
        raise ApiError(404, "Product not found.")
    if product.get("last_analyzed") is None:
        result = analyze_product(_db_path(), product_id)
        if result is not None:
            product, _ = result
    return jsonify({"product": _present(product)})


@api.route("/products/internet-search", methods=["POST"])
@login_required
def internet_search() -> JsonResponse:
    """Search Open Pet Food Facts without touching the local store.

    A hit comes back scored but unsaved; POST /api/products accepts it.
    """
    body = _parse(InternetSearchRequest)
    try:
        candidate = _searcher().search(body.kind, body.query)
    except PawsitiveError as e:
        log_event(
            "external_search_error",
            {"message": f"Internet search failed: {e}", "kind": body.kind, "query": body.query[:120]},
            level=logging.WARNING,
            logger_name="pawsitive.web",
        )
        candidate = None

    if candidate is None:
        return jsonify({"product": None, "message": "Product not found."})

    analysis = analyze_candidate(candidate, db.get_blacklist(_db_path()))
    return jsonify({"source": "internet", "product": {**candidate, **analysis}, "analysis": analysis})


@api.route("/products/<int:product_id>/analyze", methods=["POST"])
@login_required
def analyze(product_id: int) -> JsonResponse:
    result = analyze_product(_db_path(), product_id)
    if result is None:
        raise ApiError(404, "Product not found.")
    product, analysis = result
    return jsonify({"product": _present(product), "analysis": analysis})


@api.route("/products/<int:product_id>/clarity", methods=["POST"])
@admin_required
def set_clarity(product_id: int) -> JsonResponse:
    """Bless or curse a product until its next analysis."""
    body = _parse(ClarityRequest)
    product = db.set_clarity_override(_db_path(), product_id, body.clarity)
    if product is None:
        raise ApiError(404, "Product not found.")
    log_event(
        "clarity_override",
        {"message": f"Product {product_id} clarity override set to {body.clarity}",
         "product_id": product_id, "clarity": body.clarity, "admin_id": g.user["id"]},
        logger_name="pawsitive.web",
    )
    return jsonify({"product": _present(product)})


@api.route("/products/<int:product_id>/disposal", methods=["POST"])
@login_required
def generate_disposal(product_id: int) -> JsonResponse:
    """Write and store disposal instructions for a product."""
    product = _require_product(product_id)
    recalls = db.get_product_recalls(_db_path(), product_id, active_only=True)
    text = _guidance_writer().disposal_instructions(product, recalls)
    product = db.update_product(_db_path(), product_id, {"disposal_instructions": text})
    return jsonify({"product": _present(product), "disposal_instructions": text})


@api.route("/products/<int:product_id>/guidance", methods=["GET"])
@login_required
def product_guidance(product_id: int) -> JsonResponse:
    """Owner-facing advice based on the product's current analysis."""
    product = _require_product(product_id)
    if product.get("last_analyzed") is None:
        result = analyze_product(_db_path(), product_id)
        if result is not None:
            product, _ = result
    recalls = db.get_product_recalls(_db_path(), product_id, active_only=True)
    guidance = _guidance_writer().product_guidance(product, stored_analysis(product), recalls)
    return jsonify({"product_id": product_id, **guidance})


# ---------- SCANNING ----------


@api.route("/scan", methods=["POST"])
@login_required
def scan() -> JsonResponse:
    """Run a barcode or photo through the intake workflow.

    Request JSON:
        {"kind": "barcode" | "image", "value": "<barcode or base64 image>"}
        or {"error": "camera_denied"} when the client could not open the camera

    Response JSON:
        {"status": "found" | "internet" | "not_found", "source", "product",
         "analysis", "scan_id", "message", "reanalyzed"}
    """
    body = _parse(ScanRequest)
    if body.error == "camera_denied":
        log_event(
            "camera_denied",
            {"message": "Client reported camera permission denied", "user_id": g.user["id"]},
            level=logging.INFO,
            logger_name="pawsitive.web",
        )
        return jsonify({"error": CAMERA_DENIED_MESSAGE}), 400

    payload = ScanPayload(kind=body.kind, value=body.value)
    result = intake(
        payload,
        g.user["id"],
        _db_path(),
        searcher=_searcher(),
        recognizer=_recognizer() if str(body.kind).lower() == "image" else None,
    )
    response = result.to_dict()
    if result.status == "found":
        response["product"] = _present(result.product)
    return jsonify(response)


@api.route("/scans", methods=["GET"])
@login_required
def list_scans() -> JsonResponse:
    limit = _optional_int_arg("limit")
    return jsonify({"scans": db.get_user_scan_history(_db_path(), g.user["id"], limit=limit)})


@api.route("/scans", methods=["POST"])
@login_required
def record_scan() -> JsonResponse:
    """Append a client-side scan record (e.g. a lookup done offline)."""
    body = _parse(ScanRecordCreate)
    record = db.create_scan_record(
        _db_path(),
        g.user["id"],
        body.scanned_data,
        analysis_result=body.analysis_result,
        product_id=body.product_id,
    )
    return jsonify(record), 201


@api.route("/scans/export", methods=["GET"])
@login_required
def export_scans() -> Response:
    df = db.export_scan_history(_db_path(), g.user["id"])
    return Response(
        df.to_csv(index=False),
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=scan_history.csv"},
    )


# ---------- REVIEWS ----------


@api.route("/products/<int:product_id>/reviews", methods=["GET"])
def list_reviews(product_id: int) -> JsonResponse:
    _require_product(product_id)
    return jsonify({"reviews": db.get_product_reviews(_db_path(), product_id)})


@api.route("/products/<int:product_id>/reviews", methods=["POST"])
@login_required
def create_review(product_id: int) -> JsonResponse:
    _require_product(product_id)
    body = _parse(ReviewCreate)
    review = db.create_review(_db_path(), product_id, g.user["id"], body.model_dump())
    return jsonify({"review": review}), 201


def _own_review(review_id: int) -> Dict[str, Any]:
    review = db.get_review(_db_path(), review_id)
    if review is None:
        raise ApiError(404, "Review not found.")
    if review["user_id"] != g.user["id"] and not g.user.get("is_admin"):
        raise ApiError(403, "You can only change your own reviews.")
    return review


@api.route("/reviews/<int:review_id>", methods=["PUT"])
@login_required
def update_review(review_id: int) -> JsonResponse:
    _own_review(review_id)
    body = _parse(ReviewUpdate)
    review = db.update_review(_db_path(), review_id, body.model_dump(exclude_unset=True))
    return jsonify({"review": review})


@api.route("/reviews/<int:review_id>", methods=["DELETE"])
@login_required
def delete_review(review_id: int) -> JsonResponse:
    _own_review(review_id)
    db.delete_review(_db_path(), review_id)
    return jsonify({"deleted": True})


@api.route("/user/reviews", methods=["GET"])
@login_required
def my_reviews() -> JsonResponse:
    return jsonify({"reviews": db.get_user_reviews(_db_path(), g.user["id"])})


# ---------- RECALLS ----------


@api.route("/recalls", methods=["GET"])
def list_recalls() -> JsonResponse:
    return jsonify({"recalls": db.get_active_recalls(_db_path())})


@api.route("/products/<int:product_id>/recalls", methods=["GET"])
def product_recalls(product_id: int) -> JsonResponse:
    _require_product(product_id)
    return jsonify({"recalls": db.get_product_recalls(_db_path(), product_id)})


@api.route("/recalls", methods=["POST"])
@admin_required
def create_recall() -> JsonResponse:
    """Record a recall and re-score the recalled product."""
    body = _parse(RecallCreate)
    _require_product(body.product_id)
    try:
        recall = db.create_recall(_db_path(), body.model_dump())
    except sqlite3.IntegrityError:
        raise ApiError(409, f"Recall {body.recall_number} already exists.")
    analyze_product(_db_path(), body.product_id)
    log_event(
        "recall_created",
        {"message": f"Recall {body.recall_number} ({body.severity}) for product {body.product_id}",
         "recall_id": recall["id"], "product_id": body.product_id, "severity": body.severity},
        level=logging.WARNING,
        logger_name="pawsitive.web",
    )
    return jsonify({"recall": recall}), 201


@api.route("/recalls/<int:recall_id>/deactivate", methods=["POST"])
@admin_required
def deactivate_recall(recall_id: int) -> JsonResponse:
    recall = db.deactivate_recall(_db_path(), recall_id)
    if recall is None:
        raise ApiError(404, "Recall not found.")
    analyze_product(_db_path(), recall["product_id"])
    return jsonify({"recall": recall})


# ---------- BLACKLIST ----------


@api.route("/blacklist", methods=["GET"])
def list_blacklist() -> JsonResponse:
    return jsonify({"blacklist": db.get_blacklist(_db_path())})


@api.route("/blacklist", methods=["POST"])
@admin_required
def add_blacklist() -> JsonResponse:
    body = _parse(BlacklistCreate)
    entry = db.add_to_blacklist(
        _db_path(), body.ingredient_name, body.reason, body.severity, added_by_user_id=g.user["id"]
    )
    return jsonify({"entry": entry}), 201


@api.route("/blacklist/<int:entry_id>", methods=["DELETE"])
@admin_required
def remove_blacklist(entry_id: int) -> JsonResponse:
    if not db.deactivate_blacklist_entry(_db_path(), entry_id):
        raise ApiError(404, "Blacklist entry not found.")
    return jsonify({"deleted": True})


# ---------- PETS ----------


def _own_pet(pet_id: int) -> Dict[str, Any]:
    pet = db.get_pet(_db_path(), pet_id)
    if pet is None or pet["user_id"] != g.user["id"]:
        raise ApiError(404, "Pet not found.")
    return pet


@api.route("/pets", methods=["GET"])
@login_required
def list_pets() -> JsonResponse:
    return jsonify({"pets": db.get_user_pets(_db_path(), g.user["id"])})


@api.route("/pets", methods=["POST"])
@login_required
def create_pet() -> JsonResponse:
    body = _parse(PetCreate)
    return jsonify({"pet": db.create_pet(_db_path(), g.user["id"], body.model_dump())}), 201


@api.route("/pets/<int:pet_id>", methods=["PUT"])
@login_required
def update_pet(pet_id: int) -> JsonResponse:
    body = _parse(PetUpdate)
    pet = db.update_pet(_db_path(), pet_id, g.user["id"], body.model_dump(exclude_unset=True))
    if pet is None:
        raise ApiError(404, "Pet not found.")
    return jsonify({"pet": pet})


@api.route("/pets/<int:pet_id>", methods=["DELETE"])
@login_required
def delete_pet(pet_id: int) -> JsonResponse:
    if not db.delete_pet(_db_path(), pet_id, g.user["id"]):
        raise ApiError(404, "Pet not found.")
    return jsonify({"deleted": True})


@api.route("/pets/<int:pet_id>/products", methods=["GET"])
@login_required
def pet_products(pet_id: int) -> JsonResponse:
    _own_pet(pet_id)
    return jsonify({"products": db.get_pet_saved_products(_db_path(), pet_id)})


@api.route("/pets/<int:pet_id>/products", methods=["POST"])
@login_required
def save_pet_product(pet_id: int) -> JsonResponse:
    _own_pet(pet_id)
    body = _parse(SaveProductRequest)
    _require_product(body.product_id)
    saved = db.save_product_for_pet(
        _db_path(), g.user["id"], pet_id, body.product_id, status=body.status, notes=body.notes
    )
    return jsonify({"saved_product": saved}), 201


@api.route("/saved-products/<int:saved_id>", methods=["DELETE"])
@login_required
def remove_saved_product(saved_id: int) -> JsonResponse:
    if not db.remove_saved_product(_db_path(), saved_id, g.user["id"]):
        raise ApiError(404, "Saved product not found.")
    return jsonify({"deleted": True})


# ---------- LIVESTOCK ----------


@api.route("/livestock/operations", methods=["GET"])
@login_required
def list_operations() -> JsonResponse:
    return jsonify({"operations": db.get_user_operations(_db_path(), g.user["id"])})


@api.route("/livestock/operations", methods=["POST"])
@login_required
def create_operation() -> JsonResponse:
    body = _parse(OperationCreate)
    operation = db.create_operation(_db_path(), g.user["id"], body.model_dump())
    return jsonify({"operation": operation}), 201


def _check_feed_links(operation_id: Optional[int], pet_id: Optional[int]) -> None:
    """Feeds may only point at the caller's own operations and pets."""
    if operation_id is not None:
        operation = db.get_operation(_db_path(), operation_id)
        if operation is None or operation["user_id"] != g.user["id"]:
            raise ApiError(404, "Operation not found.")
    if pet_id is not None:
        _own_pet(pet_id)


@api.route("/livestock/feeds", methods=["GET"])
@login_required
def list_feeds() -> JsonResponse:
    feeds = db.get_feed_records(
        _db_path(),
        g.user["id"],
        operation_id=_optional_int_arg("operation_id"),
        pet_id=_optional_int_arg("pet_id"),
    )
    return jsonify({"feeds": feeds})


@api.route("/livestock/feeds", methods=["POST"])
@login_required
def create_feed() -> JsonResponse:
    body = _parse(FeedCreate)
    _check_feed_links(body.operation_id, body.pet_id)
    feed = db.create_feed_record(_db_path(), g.user["id"], body.model_dump())
    return jsonify({"feed": feed}), 201


@api.route("/livestock/feeds/<int:feed_id>", methods=["PUT"])
@login_required
def update_feed(feed_id: int) -> JsonResponse:
    body = _parse(FeedUpdate)
    feed = db.update_feed_record(_db_path(), feed_id, g.user["id"], body.model_dump(exclude_unset=True))
    if feed is None:
        raise ApiError(404, "Feed record not found.")
    return jsonify({"feed": feed})


@api.route("/livestock/feeds/<int:feed_id>", methods=["DELETE"])
@login_required
def delete_feed(feed_id: int) -> JsonResponse:
    if not db.delete_feed_record(_db_path(), feed_id, g.user["id"]):
        raise ApiError(404, "Feed record not found.")
    return jsonify({"deleted": True})


# ---------- ADMIN ----------


@api.route("/admin/analytics", methods=["GET"])
@admin_required
def analytics() -> JsonResponse:
    return jsonify(db.get_analytics(_db_path()))
