"""Ingredient risk evaluation.

Matches a product's free-text ingredient list against the ingredient
blacklist and grades how much the list actually discloses. Both checks are
plain substring heuristics; the keyword sets and length threshold live in
config so they can be tuned without touching the logic.
"""

from typing import Iterable, List, Mapping, Optional, Sequence, Union

from pawsitive.config import GENERIC_INGREDIENT_TERMS, TRANSPARENCY_MIN_LENGTH
from pawsitive.models import BlacklistEntry, IngredientEvaluation

__all__ = ["evaluate", "find_blacklist_matches", "grade_transparency"]

BlacklistLike = Union[BlacklistEntry, Mapping]


def find_blacklist_matches(
    ingredient_text: Optional[str],
    blacklist: Iterable[BlacklistLike],
) -> List[str]:
    """Return names of active blacklist entries found in the ingredient text.

    Order follows the blacklist; each name appears once even if the
    blacklist repeats it with different casing.
    """
    if not ingredient_text:
        return []

    haystack = ingredient_text.casefold()
    matches: List[str] = []
    seen = set()
    for raw in blacklist or []:
        entry = BlacklistEntry.coerce(raw)
        if not entry.is_active:
            continue
        needle = entry.ingredient_name.strip().casefold()
        if not needle or needle in seen:
            continue
        if needle in haystack:
            seen.add(needle)
            matches.append(entry.ingredient_name.strip())
    return matches


def grade_transparency(
    ingredient_text: Optional[str],
    min_length: int = TRANSPARENCY_MIN_LENGTH,
    generic_terms: Sequence[str] = tuple(GENERIC_INGREDIENT_TERMS),
) -> str:
    """Grade ingredient disclosure as excellent, good or poor.

    - poor: missing, or shorter than ``min_length`` characters
    - good: long enough but leans on generic terms like "by-product"
    - excellent: long enough and specific
    """
    text = (ingredient_text or "").strip()
    if len(text) < min_length:
        return "poor"
    lowered = text.casefold()
    if any(term.casefold() in lowered for term in generic_terms):
        return "good"
    return "excellent"


def evaluate(
    ingredient_text: Optional[str],
    blacklist: Iterable[BlacklistLike],
    min_length: int = TRANSPARENCY_MIN_LENGTH,
    generic_terms: Sequence[str] = tuple(GENERIC_INGREDIENT_TERMS),
) -> IngredientEvaluation:
    """Evaluate an ingredient list against the blacklist.

    Pure function of its inputs; never raises on empty or missing text.
    """
    return IngredientEvaluation(
        suspicious=find_blacklist_matches(ingredient_text, blacklist),
        transparency=grade_transparency(ingredient_text, min_length, generic_terms),
    )
