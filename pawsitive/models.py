"""Data models for products, scans and analysis results."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

__all__ = [
    "CLARITY_VALUES",
    "TRANSPARENCY_VALUES",
    "BLACKLIST_SEVERITIES",
    "RECALL_SEVERITIES",
    "SCAN_KINDS",
    "BlacklistEntry",
    "IngredientEvaluation",
    "SafetyScore",
    "ScanPayload",
    "RecognizedProduct",
    "ScanResult",
]

CLARITY_VALUES = ("blessed", "questionable", "cursed", "unknown")
TRANSPARENCY_VALUES = ("excellent", "good", "poor", "unknown")
BLACKLIST_SEVERITIES = ("high", "medium", "low")
RECALL_SEVERITIES = ("urgent", "moderate", "low")
SCAN_KINDS = ("barcode", "image")


@dataclass
class BlacklistEntry:
    """A flagged ingredient name.

    Names are matched case-insensitively as substrings of a product's
    ingredient text.
    """

    ingredient_name: str
    reason: str = ""
    severity: str = "medium"
    is_active: bool = True
    id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BlacklistEntry":
        return cls(
            ingredient_name=data.get("ingredient_name", ""),
            reason=data.get("reason") or "",
            severity=data.get("severity") or "medium",
            is_active=bool(data.get("is_active", True)),
            id=data.get("id"),
        )

    @classmethod
    def coerce(cls, entry: Union["BlacklistEntry", Mapping[str, Any]]) -> "BlacklistEntry":
        """Accept either a BlacklistEntry or a database row dict."""
        if isinstance(entry, cls):
            return entry
        return cls.from_dict(entry)


@dataclass
class IngredientEvaluation:
    suspicious: List[str] = field(default_factory=list)
    transparency: str = "poor"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SafetyScore:
    cosmic_score: int
    cosmic_clarity: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScanPayload:
    """Raw input to the scan intake workflow.

    For ``kind == "barcode"`` the value is the decoded barcode text. For
    ``kind == "image"`` it is base64 image data, optionally as a data URL.
    """

    kind: str
    value: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScanPayload":
        return cls(
            kind=str(data.get("kind") or data.get("type") or ""),
            value=data.get("value") if data.get("value") is not None else data.get("query", ""),
        )


@dataclass
class RecognizedProduct:
    """What the image recognizer could read off a product photo."""

    name: Optional[str] = None
    brand: Optional[str] = None
    barcode: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.name or self.barcode)

    @property
    def search_query(self) -> str:
        return " ".join(p for p in (self.brand, self.name) if p)


@dataclass
class ScanResult:
    """Unified result handed back to the caller of ``intake``."""

    status: str  # found | internet | not_found
    source: Optional[str] = None  # local | internet
    product: Optional[Dict[str, Any]] = None
    analysis: Optional[Dict[str, Any]] = None
    scan_id: Optional[int] = None
    message: str = ""
    reanalyzed: bool = False

    @property
    def resolved(self) -> bool:
        return self.product is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
