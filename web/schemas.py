"""Request body schemas for the API.

Bodies are accepted in snake_case or camelCase (``scannedData`` and
``scanned_data`` both work). Unknown keys are ignored.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

__all__ = [
    "RequestModel",
    "ScanRequest",
    "InternetSearchRequest",
    "ScanRecordCreate",
    "ProductCreate",
    "ProductUpdate",
    "ClarityRequest",
    "ReviewCreate",
    "ReviewUpdate",
    "RecallCreate",
    "BlacklistCreate",
    "PetCreate",
    "PetUpdate",
    "SaveProductRequest",
    "OperationCreate",
    "FeedCreate",
    "FeedUpdate",
]


class RequestModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )


# ---------- Scanning ----------


class ScanRequest(RequestModel):
    """Body of POST /api/scan.

    ``error`` carries client-side failures such as ``camera_denied``; the
    kind/value pair is then ignored. The value is checked by the intake
    workflow, not here.
    """

    kind: str = Field("", validation_alias=AliasChoices("kind", "type"))
    value: Any = Field(None, validation_alias=AliasChoices("value", "query", "barcode", "image", "imageBase64"))
    error: Optional[str] = None


class InternetSearchRequest(RequestModel):
    kind: Literal["barcode", "name"] = Field(validation_alias=AliasChoices("type", "kind"))
    query: str = Field(min_length=1)


class ScanRecordCreate(RequestModel):
    scanned_data: str = Field(min_length=1)
    analysis_result: Optional[Dict[str, Any]] = None
    product_id: Optional[int] = None


# ---------- Products ----------


class ProductCreate(RequestModel):
    """New product, or an internet candidate the user accepted."""

    name: str = Field(min_length=1, max_length=300)
    brand: str = Field("Unknown", min_length=1, max_length=200)
    category: str = Field("pet-food", min_length=1)
    description: Optional[str] = None
    ingredients: str = ""
    image_url: Optional[str] = None
    barcode: Optional[str] = Field(None, max_length=64)
    source_url: Optional[str] = None
    baseline_score: Optional[int] = Field(None, ge=0, le=100)
    disposal_instructions: Optional[str] = None
    animal_type: Literal["pet", "livestock"] = "pet"


class ProductUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=1, max_length=300)
    brand: Optional[str] = Field(None, min_length=1, max_length=200)
    category: Optional[str] = None
    description: Optional[str] = None
    ingredients: Optional[str] = None
    image_url: Optional[str] = None
    barcode: Optional[str] = Field(None, max_length=64)
    source_url: Optional[str] = None
    baseline_score: Optional[int] = Field(None, ge=0, le=100)
    disposal_instructions: Optional[str] = None
    animal_type: Optional[Literal["pet", "livestock"]] = None


class ClarityRequest(RequestModel):
    """Admin bless/curse. ``null`` removes the override."""

    clarity: Optional[Literal["blessed", "cursed"]] = None


# ---------- Reviews, recalls, blacklist ----------


class ReviewCreate(RequestModel):
    rating: int = Field(ge=1, le=5)
    title: Optional[str] = Field(None, max_length=200)
    content: str = Field(min_length=1)


class ReviewUpdate(RequestModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, max_length=200)
    content: Optional[str] = Field(None, min_length=1)


class RecallCreate(RequestModel):
    product_id: int
    recall_number: str = Field(min_length=1)
    reason: str = Field(min_length=1)
    severity: Literal["urgent", "moderate", "low"]
    recall_date: str = Field(min_length=1)
    affected_batches: List[str] = Field(default_factory=list)
    source: Optional[str] = None
    source_url: Optional[str] = None
    disposal_instructions: Optional[str] = None


class BlacklistCreate(RequestModel):
    ingredient_name: str = Field(min_length=1, max_length=120)
    reason: str = Field(min_length=1)
    severity: Literal["high", "medium", "low"] = "medium"


# ---------- Pets ----------


class PetCreate(RequestModel):
    name: str = Field(min_length=1, max_length=100)
    species: str = Field(min_length=1)
    breed: Optional[str] = None
    age: Optional[int] = Field(None, ge=0, le=100)
    weight: Optional[float] = Field(None, ge=0)
    weight_unit: Literal["lbs", "kg"] = "lbs"
    allergies: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


class PetUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    species: Optional[str] = Field(None, min_length=1)
    breed: Optional[str] = None
    age: Optional[int] = Field(None, ge=0, le=100)
    weight: Optional[float] = Field(None, ge=0)
    weight_unit: Optional[Literal["lbs", "kg"]] = None
    allergies: Optional[List[str]] = None
    notes: Optional[str] = None
    is_active: Optional[bool] = None


class SaveProductRequest(RequestModel):
    product_id: int
    status: Literal["saved", "favorite", "avoid", "tried"] = "saved"
    notes: Optional[str] = None


# ---------- Livestock ----------


class OperationCreate(RequestModel):
    operation_name: str = Field(min_length=1)
    operation_type: str = Field(min_length=1)
    total_head_count: int = Field(0, ge=0)
    notes: Optional[str] = None


class FeedCreate(RequestModel):
    operation_id: Optional[int] = None
    pet_id: Optional[int] = None
    product_id: Optional[int] = None
    feed_type: str = Field(min_length=1)
    feed_name: str = Field(min_length=1)
    supplier: Optional[str] = None
    quantity_per_feeding: Optional[float] = Field(None, ge=0)
    quantity_unit: str = "lbs"
    feedings_per_day: int = Field(2, ge=0)
    current_stock: float = Field(0, ge=0)
    notes: Optional[str] = None


class FeedUpdate(RequestModel):
    product_id: Optional[int] = None
    feed_type: Optional[str] = Field(None, min_length=1)
    feed_name: Optional[str] = Field(None, min_length=1)
    supplier: Optional[str] = None
    quantity_per_feeding: Optional[float] = Field(None, ge=0)
    quantity_unit: Optional[str] = None
    feedings_per_day: Optional[int] = Field(None, ge=0)
    current_stock: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None
    is_active: Optional[bool] = None
