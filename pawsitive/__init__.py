"""PawsitiveCheck product safety core."""

__version__ = "0.1.0"

# Re-export main components for convenient imports
from pawsitive.config import DB_PATH, DEFAULT_BLACKLIST
from pawsitive.db import init_db
from pawsitive.errors import ExternalSearchFailed, InvalidPayload, LookupFailed, PawsitiveError
from pawsitive.ingredients import evaluate
from pawsitive.intake import intake
from pawsitive.models import IngredientEvaluation, SafetyScore, ScanPayload, ScanResult
from pawsitive.scoring import analyze_product, score

__all__ = [
    # Version
    "__version__",
    # Config
    "DB_PATH",
    "DEFAULT_BLACKLIST",
    # Models
    "IngredientEvaluation",
    "SafetyScore",
    "ScanPayload",
    "ScanResult",
    # Errors
    "PawsitiveError",
    "InvalidPayload",
    "LookupFailed",
    "ExternalSearchFailed",
    # Core functions
    "init_db",
    "evaluate",
    "score",
    "analyze_product",
    "intake",
]
