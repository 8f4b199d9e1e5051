"""Safety scoring for products.

Combines blacklist matches, recall history and review sentiment into the
0-100 cosmic score and the blessed/questionable/cursed clarity label.

The scorer is the single authority for clarity whenever it runs. An admin
may override clarity in between ("bless" or "curse" a product); the override
is shown until the next analysis clears it.
"""

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from pawsitive import db
from pawsitive.config import (
    ANALYSIS_STALE_AFTER,
    BLACKLIST_MATCH_PENALTY,
    BLESSED_MIN_SCORE,
    CURSED_BELOW_SCORE,
    DEFAULT_BASELINE_SCORE,
    RECALL_FLAT_PENALTY,
    RECALL_SEVERITY_WEIGHTS,
    REVIEW_CONCERN_MAX_RATING,
    REVIEW_CONCERN_WEIGHT,
    REVIEW_SAFETY_KEYWORDS,
)
from pawsitive.ingredients import evaluate
from pawsitive.logging_config import log_event
from pawsitive.models import SafetyScore

__all__ = [
    "score",
    "clamp_score",
    "is_safety_concern",
    "recall_penalty",
    "review_penalty",
    "derive_clarity",
    "is_analysis_stale",
    "analyze_product",
    "analyze_candidate",
    "display_clarity",
    "verdict_for",
    "paw_rating",
]

VERDICTS = {
    "blessed": "The ingredients sing with purity",
    "questionable": "The shadows hide much",
    "cursed": "Banish this from your realm!",
}


def clamp_score(value: float) -> int:
    return int(max(0, min(100, round(value))))


def _active(recalls: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    return [r for r in recalls if r.get("is_active", True)]


def recall_penalty(recalls: Optional[Iterable[Mapping[str, Any]]]) -> int:
    """Severity weight per active recall plus a flat penalty per recall."""
    if not recalls:
        return 0
    active = _active(recalls)
    weights = sum(RECALL_SEVERITY_WEIGHTS.get(str(r.get("severity", "")).lower(), 0) for r in active)
    return weights + RECALL_FLAT_PENALTY * len(active)


def is_safety_concern(
    review: Mapping[str, Any],
    keywords: Iterable[str] = REVIEW_SAFETY_KEYWORDS,
    max_rating: int = REVIEW_CONCERN_MAX_RATING,
) -> bool:
    """A review flags a safety concern by low rating or a symptom keyword in its content."""
    rating = review.get("rating")
    if rating is not None and rating <= max_rating:
        return True
    text = (review.get("content") or "").casefold()
    return any(k.casefold() in text for k in keywords)


def review_penalty(reviews: Optional[Iterable[Mapping[str, Any]]]) -> float:
    if not reviews:
        return 0.0
    reviews = list(reviews)
    flagged = sum(1 for r in reviews if is_safety_concern(r))
    return flagged / len(reviews) * REVIEW_CONCERN_WEIGHT


def derive_clarity(
    cosmic_score: int,
    blacklist_matches: Optional[Iterable[str]],
    recalls: Optional[Iterable[Mapping[str, Any]]],
) -> str:
    """Map score plus qualitative signals to a clarity label.

    Any blacklist hit or active urgent recall curses a product outright.
    Blessed needs a high score and no active recall at all.
    """
    active = _active(recalls or [])
    if blacklist_matches and list(blacklist_matches):
        return "cursed"
    if any(str(r.get("severity", "")).lower() == "urgent" for r in active):
        return "cursed"
    if cosmic_score < CURSED_BELOW_SCORE:
        return "cursed"
    if cosmic_score >= BLESSED_MIN_SCORE and not active:
        return "blessed"
    return "questionable"


def score(
    product: Optional[Mapping[str, Any]],
    recalls: Optional[Iterable[Mapping[str, Any]]] = None,
    reviews: Optional[Iterable[Mapping[str, Any]]] = None,
    blacklist_matches: Optional[Iterable[str]] = None,
) -> SafetyScore:
    """Compute cosmic score and clarity.

    Any input may be None when it could not be fetched; that input then
    contributes no penalty.

    Args:
        product: Product dict; its ``baseline_score`` is the starting value.
        recalls: Recall dicts with ``severity`` and ``is_active``.
        reviews: Review dicts with ``rating`` and ``content``.
        blacklist_matches: Names of matched blacklisted ingredients.
    """
    baseline = (product or {}).get("baseline_score")
    if baseline is None:
        baseline = DEFAULT_BASELINE_SCORE

    recalls = list(recalls) if recalls is not None else None
    matches = list(dict.fromkeys(m.casefold() for m in blacklist_matches)) if blacklist_matches else []

    raw = float(baseline)
    raw -= recall_penalty(recalls)
    raw -= review_penalty(reviews)
    raw -= BLACKLIST_MATCH_PENALTY * len(matches)

    cosmic_score = clamp_score(raw)
    return SafetyScore(
        cosmic_score=cosmic_score,
        cosmic_clarity=derive_clarity(cosmic_score, matches, recalls),
    )


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_analysis_stale(
    product: Mapping[str, Any],
    max_age: timedelta = ANALYSIS_STALE_AFTER,
    now: Optional[datetime] = None,
) -> bool:
    """True when a product was never analysed or its analysis is too old."""
    last = _parse_timestamp(product.get("last_analyzed"))
    if last is None:
        return True
    now = now or datetime.now(timezone.utc)
    return now - last > max_age


def display_clarity(product: Mapping[str, Any]) -> str:
    return product.get("clarity_override") or product.get("cosmic_clarity") or "unknown"


def verdict_for(clarity: str) -> str:
    return VERDICTS.get(clarity, "Awaiting cosmic analysis")


def paw_rating(cosmic_score: int) -> int:
    return max(1, min(5, round(cosmic_score / 20)))


def _build_analysis(safety: SafetyScore, suspicious: List[str], transparency: str, analyzed_at: str) -> Dict[str, Any]:
    return {
        "cosmic_score": safety.cosmic_score,
        "cosmic_clarity": safety.cosmic_clarity,
        "suspicious_ingredients": suspicious,
        "transparency_level": transparency,
        "last_analyzed": analyzed_at,
        "verdict": verdict_for(safety.cosmic_clarity),
        "paw_rating": paw_rating(safety.cosmic_score),
    }


def _fetch_or_none(label: str, product_id: Any, fetch: Callable[[], Any]) -> Any:
    try:
        return fetch()
    except sqlite3.Error as e:
        log_event(
            "analysis_input_unavailable",
            {"message": f"Could not load {label}; scoring without it", "input": label,
             "product_id": product_id, "error": str(e)},
            level=logging.WARNING,
            logger_name="pawsitive.scoring",
        )
        return None


def analyze_candidate(
    candidate: Mapping[str, Any],
    blacklist: Optional[Iterable[Mapping[str, Any]]],
) -> Dict[str, Any]:
    """Score a product that is not in the store yet (no recalls or reviews)."""
    evaluation = evaluate(candidate.get("ingredients"), blacklist or [])
    safety = score(candidate, None, None, evaluation.suspicious)
    return _build_analysis(safety, evaluation.suspicious, evaluation.transparency, db.utcnow_iso())


def analyze_product(
    db_path: str,
    product_id: int,
) -> Optional[Tuple[Dict[str, Any], Dict[str, Any]]]:
    """Re-run ingredient evaluation and scoring for a stored product.

    Blacklist, recalls and reviews are each loaded independently; one that
    cannot be loaded is skipped rather than failing the analysis.

    Returns:
        (updated_product, analysis), or None if the product does not exist.
    """
    product = db.get_product(db_path, product_id)
    if product is None:
        return None

    blacklist = _fetch_or_none("blacklist", product_id, lambda: db.get_blacklist(db_path))
    recalls = _fetch_or_none(
        "recalls", product_id, lambda: db.get_product_recalls(db_path, product_id, active_only=True)
    )
    reviews = _fetch_or_none("reviews", product_id, lambda: db.get_product_reviews(db_path, product_id))

    evaluation = evaluate(product.get("ingredients"), blacklist or [])
    safety = score(product, recalls, reviews, evaluation.suspicious)
    analysis = _build_analysis(safety, evaluation.suspicious, evaluation.transparency, db.utcnow_iso())

    updated = db.update_product_analysis(db_path, product_id, analysis)
    log_event(
        "product_analyzed",
        {
            "message": f"Analyzed product {product_id}: {safety.cosmic_score} ({safety.cosmic_clarity})",
            "product_id": product_id,
            "cosmic_score": safety.cosmic_score,
            "cosmic_clarity": safety.cosmic_clarity,
            "suspicious_count": len(evaluation.suspicious),
        },
        logger_name="pawsitive.scoring",
    )
    return updated or product, analysis
