"""External collaborators for products that are not in the local store.

- ProductSearchClient looks products up on Open Pet Food Facts by barcode or
  by name.
- ImageRecognizer asks a vision model to read the product name, brand and
  barcode off a photo.
"""

import json
import logging
import random
import re
import time
from typing import Any, Dict, Optional

import requests  # type: ignore[import-untyped]

from pawsitive.config import (
    HEADERS,
    LLM_MODEL,
    MAX_RETRY_BACKOFF,
    OPEN_PET_FOOD_FACTS_URL,
    RETRY_BACKOFF_BASE,
    RETRY_STATUS_CODES,
    SEARCH_MAX_RETRIES,
    SEARCH_TIMEOUT,
)
from pawsitive.errors import ExternalSearchFailed
from pawsitive.logging_config import get_logger, log_event
from pawsitive.models import RecognizedProduct

__all__ = [
    "ProductSearchClient",
    "ImageRecognizer",
    "create_session",
    "normalize_candidate",
    "RECOGNITION_PROMPT",
]

logger = get_logger("search")

RECOGNITION_PROMPT = """You are looking at a photo of a pet or livestock product package.
Read what is printed on it and reply with JSON only, no prose:
{"name": "<product name or null>", "brand": "<brand or null>", "barcode": "<digits under the barcode or null>"}
Use null for anything you cannot read with confidence."""


def create_session() -> requests.Session:
    """Create a requests Session with connection pooling and our headers."""
    session = requests.Session()
    session.headers.update(HEADERS)
    session.headers.setdefault("Accept-Encoding", "gzip, deflate")
    return session


def _first(*values: Any) -> Optional[str]:
    for v in values:
        if isinstance(v, str) and v.strip():
            return v.strip()
    return None


def normalize_candidate(raw: Dict[str, Any], base_url: str = OPEN_PET_FOOD_FACTS_URL) -> Optional[Dict[str, Any]]:
    """Map an Open Pet Food Facts product record onto our product fields.

    Returns None when the record has no usable name.
    """
    name = _first(
        raw.get("product_name"),
        raw.get("product_name_en"),
        raw.get("generic_name_en"),
        raw.get("generic_name"),
    )
    if not name:
        return None

    brand = _first(raw.get("brands"))
    if brand:
        brand = brand.split(",")[0].strip()

    category = "pet-food"
    tags = raw.get("categories_tags") or []
    if isinstance(tags, list) and tags and isinstance(tags[-1], str):
        category = tags[-1].split(":", 1)[-1]

    code = _first(raw.get("code"), raw.get("_id"))
    return {
        "name": name,
        "brand": brand or "Unknown",
        "category": category,
        "description": _first(raw.get("generic_name_en"), raw.get("generic_name")),
        "ingredients": _first(raw.get("ingredients_text_en"), raw.get("ingredients_text")) or "",
        "image_url": _first(raw.get("image_front_url"), raw.get("image_url")),
        "barcode": code,
        "source_url": f"{base_url.rstrip('/')}/product/{code}" if code else None,
    }


class ProductSearchClient:
    """Look up a single candidate product on Open Pet Food Facts."""

    def __init__(
        self,
        base_url: str = OPEN_PET_FOOD_FACTS_URL,
        session: Optional[requests.Session] = None,
        timeout: float = SEARCH_TIMEOUT,
        max_retries: int = SEARCH_MAX_RETRIES,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or create_session()
        self.timeout = timeout
        self.max_retries = max_retries

    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """GET with exponential backoff on retryable status codes.

        Returns parsed JSON, or None on 404.

        Raises:
            ExternalSearchFailed: network error, bad JSON, or retries exhausted
        """
        for attempt in range(self.max_retries + 1):
            try:
                resp = self.session.get(url, params=params, timeout=self.timeout)
            except requests.RequestException as e:
                if attempt < self.max_retries:
                    self._backoff(attempt, f"request error: {e}")
                    continue
                raise ExternalSearchFailed(f"Product search unreachable: {e}") from e

            if resp.status_code in RETRY_STATUS_CODES:
                if attempt < self.max_retries:
                    self._backoff(attempt, f"status {resp.status_code}")
                    continue
                raise ExternalSearchFailed(
                    f"Product search failed with status {resp.status_code} after {attempt + 1} attempts"
                )

            if resp.status_code == 404:
                return None

            try:
                resp.raise_for_status()
                data = resp.json()
            except (requests.HTTPError, ValueError) as e:
                raise ExternalSearchFailed(f"Bad response from product search: {e}") from e
            return data if isinstance(data, dict) else None

        raise ExternalSearchFailed("Product search retries exhausted")

    def _backoff(self, attempt: int, reason: str) -> None:
        delay = min(RETRY_BACKOFF_BASE ** attempt, MAX_RETRY_BACKOFF) + random.uniform(0, 0.5)
        logger.warning(
            f"Product search {reason}, backing off {delay:.1f}s (attempt {attempt + 1}/{self.max_retries})"
        )
        time.sleep(delay)

    def _normalize(self, raw: Any) -> Optional[Dict[str, Any]]:
        """Normalise one product record; malformed records raise ExternalSearchFailed."""
        try:
            return normalize_candidate(raw, self.base_url)
        except (AttributeError, TypeError, ValueError) as e:
            raise ExternalSearchFailed(f"Malformed product record from search: {e}") from e

    def search_barcode(self, barcode: str) -> Optional[Dict[str, Any]]:
        data = self._get_json(f"{self.base_url}/api/v2/product/{barcode}.json")
        if not data or not data.get("product") or data.get("status") == 0:
            return None
        candidate = self._normalize(data["product"])
        if candidate and not candidate.get("barcode"):
            candidate["barcode"] = barcode
        return candidate

    def search_name(self, query: str) -> Optional[Dict[str, Any]]:
        data = self._get_json(
            f"{self.base_url}/cgi/search.pl",
            params={
                "search_terms": query,
                "search_simple": 1,
                "action": "process",
                "json": 1,
                "page_size": 1,
            },
        )
        products = (data or {}).get("products") or []
        if not isinstance(products, list) or not products:
            return None
        return self._normalize(products[0])

    def search(self, kind: str, query: str) -> Optional[Dict[str, Any]]:
        """Return zero or one candidate product.

        Args:
            kind: "barcode" for an exact code lookup, anything else searches by name.
            query: Barcode or free-text product name.
        """
        query = (query or "").strip()
        if not query:
            return None
        if kind == "barcode":
            candidate = self.search_barcode(query)
        else:
            candidate = self.search_name(query)
        log_event(
            "external_search",
            {
                "message": f"External {kind} search {'hit' if candidate else 'miss'}",
                "kind": kind,
                "query": query[:120],
                "found": bool(candidate),
            },
            level=logging.DEBUG,
            logger_name="pawsitive.search",
        )
        return candidate


def _get_openai_client():
    """Get OpenAI client (lazy initialization)."""
    from openai import OpenAI
    return OpenAI()


class ImageRecognizer:
    """Identify a product from a photo with a vision-capable LLM."""

    def __init__(self, model: str = LLM_MODEL, client: Any = None):
        self.model = model
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = _get_openai_client()
        return self._client

    @staticmethod
    def _parse(raw: str) -> Optional[RecognizedProduct]:
        text = raw.strip()
        # Strip markdown code fences if the model added them
        text = re.sub(r"^```(?:json)?\s*|\s*```$", "", text)
        data = json.loads(text)
        if not isinstance(data, dict):
            return None
        recognized = RecognizedProduct(
            name=_first(data.get("name")),
            brand=_first(data.get("brand")),
            barcode=_first(data.get("barcode")),
        )
        return None if recognized.is_empty else recognized

    def recognize(self, image_base64: str, mime_type: str = "image/png") -> Optional[RecognizedProduct]:
        """Return what could be read off the image, or None.

        Never raises; recognition problems are logged and treated as
        "nothing recognized".
        """
        input_payload = [
            {
                "role": "user",
                "content": [
                    {"type": "input_text", "text": RECOGNITION_PROMPT},
                    {"type": "input_image", "image_url": f"data:{mime_type};base64,{image_base64}"},
                ],
            }
        ]
        try:
            resp = self.client.responses.create(model=self.model, input=input_payload)
            raw = resp.output_text
        except Exception as e:
            log_event(
                "image_recognition_error",
                {"message": "Image recognition call failed", "error": str(e), "model": self.model},
                level=logging.WARNING,
                logger_name="pawsitive.search",
            )
            return None

        try:
            return self._parse(raw or "")
        except (json.JSONDecodeError, TypeError) as e:
            log_event(
                "image_recognition_parse_error",
                {"message": "Could not parse recognition result", "error": str(e), "raw": (raw or "")[:500]},
                level=logging.WARNING,
                logger_name="pawsitive.search",
            )
            return None
