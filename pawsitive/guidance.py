"""Plain-language disposal instructions and owner guidance for a product.

Both texts are written by the LLM from the product record and its current
analysis. They are advisory only and never feed back into the score. When
the model is unavailable a fixed fallback text is returned instead.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Sequence

from pawsitive.config import (
    FALLBACK_DISPOSAL_INSTRUCTIONS,
    FALLBACK_GUIDANCE,
    LLM_MODEL,
    RECALLED_DISPOSAL_INSTRUCTIONS,
)
from pawsitive.logging_config import log_event
from pawsitive.search import _get_openai_client

__all__ = ["GuidanceWriter", "safety_status"]

DISPOSAL_PROMPT = """Write disposal instructions for this pet product.

Product: {name}
Category: {category}
Safety status: {status}
{severity_line}
Cover the product type and packaging, pet safety while disposing of it, and
recycling where it applies. Keep it to a short, practical paragraph."""

GUIDANCE_PROMPT = """Based on this pet product analysis, give pet owners helpful guidance.

Product: {name} ({brand})
Cosmic score: {score}/100
Safety level: {clarity}
Suspicious ingredients: {suspicious}
Active recalls: {recalls}

Answer in 2-3 sentences: what the score means for their pet, one concrete
thing to do, and when to see a veterinarian. Be clear, not alarming."""


def safety_status(product: Mapping[str, Any], recalls: Sequence[Mapping[str, Any]] = ()) -> str:
    """RECALLED, BLACKLISTED or Normal, in that order of precedence."""
    if any(r.get("is_active", True) for r in recalls):
        return "RECALLED"
    if product.get("is_blacklisted") or product.get("suspicious_ingredients"):
        return "BLACKLISTED"
    return "Normal"


class GuidanceWriter:
    """Ask the LLM for disposal instructions and owner guidance."""

    def __init__(self, model: str = LLM_MODEL, client: Any = None):
        self.model = model
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = _get_openai_client()
        return self._client

    def _complete(self, prompt: str, event: str) -> Optional[str]:
        try:
            resp = self.client.responses.create(model=self.model, input=prompt)
            text = (resp.output_text or "").strip()
        except Exception as e:
            log_event(
                event,
                {"message": "Guidance call failed", "error": str(e), "model": self.model},
                level=logging.WARNING,
                logger_name="pawsitive.guidance",
            )
            return None
        return text or None

    def disposal_instructions(
        self,
        product: Mapping[str, Any],
        recalls: Sequence[Mapping[str, Any]] = (),
    ) -> str:
        """Disposal text for a product; recalled products get the recall fallback."""
        status = safety_status(product, recalls)
        active = [r for r in recalls if r.get("is_active", True)]
        severity = active[0].get("severity") if active else None
        prompt = DISPOSAL_PROMPT.format(
            name=product.get("name"),
            category=product.get("category") or "pet-food",
            status=status,
            severity_line=f"Severity: {severity}\n" if severity else "",
        )
        text = self._complete(prompt, "disposal_instructions_error")
        if text:
            return text
        return RECALLED_DISPOSAL_INSTRUCTIONS if status == "RECALLED" else FALLBACK_DISPOSAL_INSTRUCTIONS

    def product_guidance(
        self,
        product: Mapping[str, Any],
        analysis: Mapping[str, Any],
        recalls: Sequence[Mapping[str, Any]] = (),
    ) -> Dict[str, Any]:
        suspicious = analysis.get("suspicious_ingredients") or []
        prompt = GUIDANCE_PROMPT.format(
            name=product.get("name"),
            brand=product.get("brand") or "Unknown",
            score=analysis.get("cosmic_score"),
            clarity=analysis.get("cosmic_clarity"),
            suspicious=", ".join(suspicious) or "None identified",
            recalls=sum(1 for r in recalls if r.get("is_active", True)),
        )
        text = self._complete(prompt, "product_guidance_error")
        return {"guidance": text or FALLBACK_GUIDANCE, "generated": text is not None}
