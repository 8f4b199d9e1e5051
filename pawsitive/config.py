"""Configuration and constants for the safety-assessment core."""

import os
from datetime import timedelta
from typing import Dict, List

__all__ = [
    "DB_PATH",
    "DEFAULT_BASELINE_SCORE",
    "RECALL_SEVERITY_WEIGHTS",
    "RECALL_FLAT_PENALTY",
    "REVIEW_CONCERN_WEIGHT",
    "REVIEW_CONCERN_MAX_RATING",
    "REVIEW_SAFETY_KEYWORDS",
    "BLACKLIST_MATCH_PENALTY",
    "BLESSED_MIN_SCORE",
    "CURSED_BELOW_SCORE",
    "TRANSPARENCY_MIN_LENGTH",
    "GENERIC_INGREDIENT_TERMS",
    "ANALYSIS_STALE_AFTER",
    "OPEN_PET_FOOD_FACTS_URL",
    "HEADERS",
    "SEARCH_TIMEOUT",
    "SEARCH_MAX_RETRIES",
    "RETRY_BACKOFF_BASE",
    "MAX_RETRY_BACKOFF",
    "RETRY_STATUS_CODES",
    "LLM_MODEL",
    "FALLBACK_DISPOSAL_INSTRUCTIONS",
    "RECALLED_DISPOSAL_INSTRUCTIONS",
    "FALLBACK_GUIDANCE",
    "MAX_BARCODE_LENGTH",
    "MAX_IMAGE_SIZE",
    "SUPPORTED_IMAGE_FORMATS",
    "DEFAULT_BLACKLIST",
]

# Output paths
DB_PATH = os.getenv("PAWSITIVE_DB_PATH", "data/pawsitive.db")


# =============================================================================
# Safety scoring
# =============================================================================
# These are display heuristics, not toxicology. Keep them tunable.

DEFAULT_BASELINE_SCORE = 50

# Deducted once per active recall, on top of RECALL_FLAT_PENALTY
RECALL_SEVERITY_WEIGHTS: Dict[str, int] = {
    "urgent": 30,
    "moderate": 20,
    "medium": 20,
    "low": 0,
}
RECALL_FLAT_PENALTY = 10

# Deduction is ratio_of_concerning_reviews * REVIEW_CONCERN_WEIGHT
REVIEW_CONCERN_WEIGHT = 40
REVIEW_CONCERN_MAX_RATING = 2
REVIEW_SAFETY_KEYWORDS: List[str] = [
    "sick",
    "allergic",
    "reaction",
    "vomit",
    "diarrhea",
    "itchy",
    "unsafe",
]

BLACKLIST_MATCH_PENALTY = 25

# Clarity thresholds
BLESSED_MIN_SCORE = 80
CURSED_BELOW_SCORE = 50

# Ingredient transparency
TRANSPARENCY_MIN_LENGTH = 40
GENERIC_INGREDIENT_TERMS: List[str] = [
    "by-product",
    "byproduct",
    "derivative",
    "meat meal",
    "animal fat",
    "natural flavor",
    "digest",
]

# Products analysed longer ago than this are re-scored on scan
ANALYSIS_STALE_AFTER = timedelta(
    days=int(os.getenv("PAWSITIVE_STALE_AFTER_DAYS", "7"))
)


# =============================================================================
# External product search
# =============================================================================

OPEN_PET_FOOD_FACTS_URL = os.getenv(
    "OPEN_PET_FOOD_FACTS_URL", "https://world.openpetfoodfacts.org"
)

HEADERS = {
    "User-Agent": "PawsitiveCheck/0.1 (pet product safety lookups)",
    "Accept": "application/json",
}

SEARCH_TIMEOUT = 10

# Retry settings with exponential backoff
SEARCH_MAX_RETRIES = 2
RETRY_BACKOFF_BASE = 2.0
MAX_RETRY_BACKOFF = 8.0
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

# Vision model for image payloads
LLM_MODEL = os.getenv("PAWSITIVE_LLM_MODEL", "gpt-4.1-mini")

# Text shown when the model cannot write disposal or owner guidance
FALLBACK_DISPOSAL_INSTRUCTIONS = (
    "Dispose of according to local waste management guidelines. "
    "Do not flush or pour down drains."
)
RECALLED_DISPOSAL_INSTRUCTIONS = (
    "Stop using this product. Seal it in a bag out of reach of pets and dispose of it "
    "according to local waste management guidelines. Do not donate, sell or give it away."
)
FALLBACK_GUIDANCE = (
    "For specific guidance about this product, consult your veterinarian, who can advise "
    "based on your pet's individual needs."
)

MAX_BARCODE_LENGTH = 64

# Scan images (decoded bytes)
MAX_IMAGE_SIZE = int(os.getenv("MAX_IMAGE_SIZE", str(5 * 1024 * 1024)))
SUPPORTED_IMAGE_FORMATS = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
}


# =============================================================================
# Seed data
# =============================================================================

DEFAULT_BLACKLIST: List[Dict[str, str]] = [
    {
        "ingredient_name": "BHA",
        "reason": "Butylated hydroxyanisole, a synthetic preservative listed as a possible carcinogen.",
        "severity": "high",
    },
    {
        "ingredient_name": "BHT",
        "reason": "Butylated hydroxytoluene, a synthetic preservative with long-term exposure concerns.",
        "severity": "high",
    },
    {
        "ingredient_name": "Ethoxyquin",
        "reason": "Synthetic preservative originally developed as a rubber stabilizer.",
        "severity": "high",
    },
    {
        "ingredient_name": "Xylitol",
        "reason": "Sugar alcohol that is highly toxic to dogs.",
        "severity": "high",
    },
    {
        "ingredient_name": "Propylene glycol",
        "reason": "Humectant banned from cat food; linked to anemia in cats.",
        "severity": "medium",
    },
    {
        "ingredient_name": "Menadione",
        "reason": "Synthetic vitamin K3 with toxicity concerns at high doses.",
        "severity": "medium",
    },
    {
        "ingredient_name": "Carrageenan",
        "reason": "Thickener associated with gut inflammation in some studies.",
        "severity": "low",
    },
    {
        "ingredient_name": "Red 40",
        "reason": "Artificial colour with no nutritional purpose.",
        "severity": "low",
    },
]
