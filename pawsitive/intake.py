"""Scan intake workflow.

Takes a barcode or photo, finds the product in the local store or through
external search, scores it, and appends one scan history record.

    validate -> local lookup -> (found | external search) -> history -> result

Invalid payloads are rejected before any I/O. Store errors during lookup are
retried once and then surfaced as LookupFailed. External search errors are
never fatal; the scan just comes back "not found".
"""

import logging
import re
import sqlite3
from typing import Any, Callable, Dict, Optional, Tuple

from pawsitive import db
from pawsitive.config import MAX_BARCODE_LENGTH
from pawsitive.errors import ExternalSearchFailed, InvalidPayload, LookupFailed
from pawsitive.image_utils import ScanImage, decode_scan_image, to_png_base64
from pawsitive.logging_config import get_logger, log_event
from pawsitive.models import SCAN_KINDS, RecognizedProduct, ScanPayload, ScanResult
from pawsitive.scoring import analyze_candidate, analyze_product, display_clarity, is_analysis_stale, verdict_for
from pawsitive.search import ImageRecognizer, ProductSearchClient

__all__ = ["intake", "validate_payload", "stored_analysis", "BARCODE_PATTERN"]

logger = get_logger("intake")

BARCODE_PATTERN = re.compile(r"^[0-9A-Za-z-]+$")

NOT_FOUND_MESSAGE = "Product not found."


def validate_payload(payload: ScanPayload) -> Tuple[str, Optional[ScanImage]]:
    """Check a scan payload without touching the store or the network.

    Returns:
        (normalised barcode or raw image value, decoded image or None)

    Raises:
        InvalidPayload
    """
    kind = (payload.kind or "").strip().lower()
    if kind not in SCAN_KINDS:
        raise InvalidPayload(f"Unknown scan kind: {payload.kind!r}")

    if kind == "image":
        return payload.value, decode_scan_image(payload.value)

    if not isinstance(payload.value, str):
        raise InvalidPayload("Barcode must be a string")
    barcode = payload.value.strip()
    if not barcode:
        raise InvalidPayload("Barcode is empty", user_message="No barcode detected. Try scanning again.")
    if len(barcode) > MAX_BARCODE_LENGTH:
        raise InvalidPayload(f"Barcode longer than {MAX_BARCODE_LENGTH} characters")
    if not BARCODE_PATTERN.match(barcode):
        raise InvalidPayload(f"Barcode has unexpected characters: {barcode[:MAX_BARCODE_LENGTH]!r}")
    return barcode, None


def stored_analysis(product: Dict[str, Any]) -> Dict[str, Any]:
    """Analysis snapshot from a product's stored fields, honouring any override."""
    clarity = display_clarity(product)
    return {
        "cosmic_score": product.get("cosmic_score"),
        "cosmic_clarity": clarity,
        "suspicious_ingredients": product.get("suspicious_ingredients") or [],
        "transparency_level": product.get("transparency_level"),
        "last_analyzed": product.get("last_analyzed"),
        "verdict": verdict_for(clarity),
    }


def _lookup_with_retry(lookup: Callable[[], Optional[Dict[str, Any]]], context: Dict[str, Any]):
    """Run a store lookup, retrying once on a database error."""
    try:
        return lookup()
    except sqlite3.Error as e:
        log_event(
            "lookup_retry",
            {"message": f"Product lookup failed, retrying: {e}", "error": str(e), **context},
            level=logging.WARNING,
            logger_name="pawsitive.intake",
        )
    return lookup()


def _recognize(recognizer: Any, image: ScanImage) -> Optional[RecognizedProduct]:
    try:
        return recognizer.recognize(to_png_base64(image), "image/png")
    except Exception:
        logger.exception("Image recognizer raised; treating photo as unrecognized")
        return None


def _local_lookup(db_path: str, kind: str, value: str, recognized: Optional[RecognizedProduct]):
    if kind == "barcode":
        return db.get_product_by_barcode(db_path, value)
    if recognized is None:
        return None
    if recognized.barcode:
        product = db.get_product_by_barcode(db_path, recognized.barcode)
        if product is not None:
            return product
    if recognized.name:
        return db.find_product_by_name(db_path, recognized.name, recognized.brand)
    return None


def _external_search(searcher: Any, kind: str, value: str, recognized: Optional[RecognizedProduct]):
    """Return a candidate dict or None. Search errors become None."""
    if kind == "barcode":
        query_kind, query = "barcode", value
    elif recognized is None:
        return None
    elif recognized.barcode:
        query_kind, query = "barcode", recognized.barcode
    else:
        query_kind, query = "name", recognized.search_query

    try:
        return searcher.search(query_kind, query)
    except ExternalSearchFailed as e:
        log_event(
            "external_search_error",
            {"message": f"External search failed: {e}", "kind": query_kind, "query": query[:120], "error": str(e)},
            level=logging.WARNING,
            logger_name="pawsitive.intake",
        )
        return None
    except Exception:
        logger.exception(f"External {query_kind} search raised unexpectedly; treating as not found")
        return None


def _score_candidate(db_path: str, candidate: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    try:
        return analyze_candidate(candidate, _load_blacklist(db_path))
    except Exception:
        logger.exception(f"Scoring search result {candidate.get('name')!r} failed; treating as not found")
        return None


def _load_blacklist(db_path: str):
    try:
        return db.get_blacklist(db_path)
    except sqlite3.Error:
        logger.exception("Could not load blacklist; scoring candidate without it")
        return None


def _record_history(
    db_path: str,
    user_id: str,
    scanned_data: str,
    snapshot: Dict[str, Any],
    product_id: Optional[int],
    kind: str,
) -> Optional[int]:
    try:
        record = db.create_scan_record(
            db_path,
            user_id,
            scanned_data,
            analysis_result=snapshot,
            product_id=product_id,
            scan_kind=kind,
        )
    except sqlite3.Error:
        logger.exception(f"Failed to record scan history for user {user_id}")
        return None
    return record["id"]


def _snapshot(result: ScanResult) -> Dict[str, Any]:
    snap: Dict[str, Any] = {"status": result.status, "source": result.source}
    if result.product:
        snap["product_name"] = result.product.get("name")
        snap["brand"] = result.product.get("brand")
        snap["barcode"] = result.product.get("barcode")
    if result.analysis:
        snap.update(result.analysis)
    return snap


def intake(
    payload: ScanPayload,
    user_id: str,
    db_path: str = db.DEFAULT_DB_PATH,
    searcher: Any = None,
    recognizer: Any = None,
) -> ScanResult:
    """Run one scan through lookup, search, scoring and history.

    Args:
        payload: Barcode text or base64 photo.
        user_id: Owner of the history record.
        db_path: SQLite product store.
        searcher: Object with ``search(kind, query)``; defaults to Open Pet Food Facts.
        recognizer: Object with ``recognize(image_base64, mime)``; defaults to the vision model.

    Returns:
        ScanResult with status ``found``, ``internet`` or ``not_found``.

    Raises:
        InvalidPayload: payload rejected, nothing was written.
        LookupFailed: store unreachable after one retry.
    """
    value, image = validate_payload(payload)
    kind = "image" if image is not None else "barcode"
    scanned_data = image.descriptor if image is not None else value
    context = {"kind": kind, "scanned": scanned_data, "user_id": user_id}

    log_event(
        "scan_started",
        {"message": f"Scan started ({kind}: {scanned_data})", **context},
        logger_name="pawsitive.intake",
    )

    recognized = None
    if image is not None:
        recognized = _recognize(recognizer or ImageRecognizer(), image)
        context["recognized"] = recognized.search_query if recognized else None

    try:
        product = _lookup_with_retry(lambda: _local_lookup(db_path, kind, value, recognized), context)
    except sqlite3.Error as e:
        _record_history(db_path, user_id, scanned_data, {"status": "error", "error": "lookup_failed"}, None, kind)
        log_event(
            "scan_unresolved",
            {"message": "Product lookup failed after retry", "error": str(e), "status": "error", **context},
            level=logging.ERROR,
            logger_name="pawsitive.intake",
        )
        raise LookupFailed(f"Product store unavailable: {e}") from e

    if product is not None:
        result = ScanResult(status="found", source="local", product=product)
        if is_analysis_stale(product):
            log_event(
                "analysis_stale",
                {"message": f"Re-analyzing product {product['id']}", "product_id": product["id"],
                 "last_analyzed": product.get("last_analyzed")},
                logger_name="pawsitive.intake",
            )
            try:
                analyzed = analyze_product(db_path, product["id"])
            except sqlite3.Error:
                logger.exception(f"Re-analysis of product {product['id']} failed; using stored analysis")
                analyzed = None
            if analyzed is not None:
                result.product, result.analysis = analyzed
                result.reanalyzed = True
        if result.analysis is None:
            result.analysis = stored_analysis(result.product)
    else:
        candidate = _external_search(searcher or ProductSearchClient(), kind, value, recognized)
        analysis = _score_candidate(db_path, candidate) if candidate is not None else None
        if analysis is not None:
            result = ScanResult(
                status="internet",
                source="internet",
                product={**candidate, **analysis},
                analysis=analysis,
            )
        else:
            result = ScanResult(status="not_found", message=NOT_FOUND_MESSAGE)

    product_id = result.product.get("id") if result.status == "found" else None
    result.scan_id = _record_history(db_path, user_id, scanned_data, _snapshot(result), product_id, kind)

    if result.resolved:
        log_event(
            "scan_resolved",
            {"message": f"Scan resolved via {result.source}: {result.product.get('name')}",
             "source": result.source, "product_id": product_id, "scan_id": result.scan_id,
             "reanalyzed": result.reanalyzed, **context},
            logger_name="pawsitive.intake",
        )
    else:
        log_event(
            "scan_unresolved",
            {"message": "Scan did not match any product", "status": result.status,
             "scan_id": result.scan_id, **context},
            logger_name="pawsitive.intake",
        )
    return result
