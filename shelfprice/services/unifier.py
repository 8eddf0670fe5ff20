# shelfprice/services/unifier.py

"""Normalization oracles that turn raw offers into unified products.

Every oracle answers with JSON text shaped like
``UNIFIED_PRODUCT_SCHEMA``; parsing and filtering of that text is the
caller's job, so implementations stay interchangeable.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any

from curl_cffi.requests import AsyncSession

from shelfprice.config.prompts import UNIFY_SYSTEM_INSTRUCTION
from shelfprice.config.settings import Settings
from shelfprice.errors import ConfigurationError, OracleError
from shelfprice.models.catalog import Category
from shelfprice.models.offer import ChainPrice, RawOffer, UnifiedProduct
from shelfprice.utils.parsing import parse_amount, parse_timestamp, utc_now

logger = logging.getLogger("shelfprice.unifier")

_CHAIN_PRICE_FIELDS = (
    "chain", "priceBgn", "priceEur", "oldPriceBgn", "oldPriceEur",
    "validFrom", "validTo", "discount",
)

UNIFIED_PRODUCT_SCHEMA: dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "chainPrices": {
                "type": "ARRAY",
                "items": {
                    "type": "OBJECT",
                    "properties": {
                        "chain": {"type": "STRING"},
                        "priceBgn": {"type": "NUMBER"},
                        "priceEur": {"type": "NUMBER"},
                        "oldPriceBgn": {"type": "NUMBER"},
                        "oldPriceEur": {"type": "NUMBER"},
                        "validFrom": {"type": "STRING"},
                        "validTo": {"type": "STRING"},
                        "discount": {"type": "NUMBER"},
                    },
                    "required": list(_CHAIN_PRICE_FIELDS),
                },
            },
            "category": {"type": "STRING"},
            "name": {"type": "STRING"},
            "brand": {"type": "STRING"},
            "unit": {"type": "STRING"},
            "imageUrl": {"type": "STRING"},
        },
        "required": ["chainPrices", "category", "name", "unit"],
    },
}


def build_oracle_input(
    batch: list[RawOffer], categories: list[Category],
) -> str:
    """Serialise one batch plus the category vocabulary for the oracle."""
    return json.dumps(
        {
            "categories": [
                {"id": c.id, "name": c.name} for c in categories
            ],
            "products": [offer.to_payload() for offer in batch],
        },
        ensure_ascii=False,
    )


class Unifier(ABC):
    """Capability: normalize and merge a batch of raw offers."""

    name: str = "unifier"

    @abstractmethod
    async def unify(
        self,
        batch: list[RawOffer],
        categories: list[Category],
        schema: dict[str, Any],
    ) -> str:
        """Return the oracle's JSON answer for ``batch``.

        Raises ``OracleError`` when the oracle cannot be reached.
        """


class GeminiUnifier(Unifier):
    """Gemini ``generateContent`` with a structured-output schema."""

    name = "gemini"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: int | None = None,
    ) -> None:
        self._api_key = api_key or Settings.GEMINI_API_KEY
        if not self._api_key:
            raise ConfigurationError(
                "GEMINI_API_KEY is not set; cannot reach the normalization oracle"
            )
        self._model = model or Settings.GEMINI_MODEL
        self._timeout = timeout or Settings.ORACLE_TIMEOUT
        self._url = f"{Settings.GEMINI_ENDPOINT}/{self._model}:generateContent"

    def _build_body(
        self,
        batch: list[RawOffer],
        categories: list[Category],
        schema: dict[str, Any],
    ) -> dict[str, Any]:
        return {
            "systemInstruction": {
                "parts": [{"text": UNIFY_SYSTEM_INSTRUCTION}],
            },
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": build_oracle_input(batch, categories)},
                    ],
                },
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": schema,
                "temperature": Settings.ORACLE_TEMPERATURE,
            },
        }

    @staticmethod
    def _extract_text(payload: dict[str, Any]) -> str:
        """Concatenate the text parts of the first candidate."""
        candidates = payload.get("candidates") or []
        if not candidates:
            raise OracleError("Gemini returned no candidates")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(str(p.get("text", "")) for p in parts)

    async def unify(
        self,
        batch: list[RawOffer],
        categories: list[Category],
        schema: dict[str, Any],
    ) -> str:
        body = self._build_body(batch, categories, schema)
        try:
            async with AsyncSession() as session:
                resp = await session.post(
                    self._url,
                    json=body,
                    headers={
                        "Content-Type": "application/json",
                        "x-goog-api-key": self._api_key,
                    },
                    timeout=self._timeout,
                )
        except Exception as exc:
            raise OracleError(
                f"Gemini request failed for {len(batch)} offers: {exc}"
            ) from exc

        if resp.status_code != 200:
            raise OracleError(
                f"Gemini returned HTTP {resp.status_code}: {resp.text[:200]}"
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise OracleError(f"Gemini returned non-JSON envelope: {exc}") from exc

        text = self._extract_text(payload)
        logger.debug(
            "Gemini answered %d chars for %d offers", len(text), len(batch),
        )
        return text


def normalise_name(name: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace (any script)."""
    lowered = name.casefold()
    cleaned = re.sub(r"[^\w\s%.,]", " ", lowered)
    return " ".join(cleaned.split())


class RuleBasedUnifier(Unifier):
    """Deterministic offline oracle.

    Sightings with the same normalised (name, unit) are merged into one
    product; the scraped category is kept only when it belongs to the
    vocabulary, otherwise the product stays in the catch-all category.
    """

    name = "rules"

    def __init__(self, bgn_to_eur_rate: float | None = None) -> None:
        self._rate = (
            Settings.BGN_TO_EUR_RATE
            if bgn_to_eur_rate is None
            else bgn_to_eur_rate
        )

    def _chain_price(self, offer: RawOffer) -> ChainPrice:
        fact = ChainPrice(
            chain=offer.chain,
            price_bgn=parse_amount(offer.price_bgn) or 0.0,
            price_eur=parse_amount(offer.price_eur) or 0.0,
            old_price_bgn=parse_amount(offer.old_price_bgn),
            old_price_eur=parse_amount(offer.old_price_eur),
            valid_from=parse_timestamp(offer.valid_from) or utc_now(),
            valid_to=parse_timestamp(offer.valid_to),
        ).completed(self._rate)

        discount = abs(parse_amount(offer.discount) or 0.0)
        old_bgn = fact.old_price_bgn or 0.0
        if not discount and old_bgn > fact.price_bgn > 0:
            discount = (old_bgn - fact.price_bgn) / old_bgn * 100
        return replace(fact, discount=min(100, int(round(discount))))

    async def unify(
        self,
        batch: list[RawOffer],
        categories: list[Category],
        schema: dict[str, Any],
    ) -> str:
        vocabulary = {c.name.casefold(): c.name for c in categories}
        merged: dict[tuple[str, str], UnifiedProduct] = {}

        for offer in batch:
            key = (normalise_name(offer.name), offer.unit.strip().casefold())
            category = vocabulary.get(
                offer.category.strip().casefold(),
                Settings.DEFAULT_OTHER_CATEGORY,
            )
            product = merged.get(key)
            if product is None:
                product = UnifiedProduct(
                    name=" ".join(offer.name.split()),
                    category=category,
                    unit=offer.unit.strip(),
                    image_url=offer.image_url or None,
                )
                merged[key] = product
            else:
                if product.category == Settings.DEFAULT_OTHER_CATEGORY:
                    product.category = category
                if not product.image_url and offer.image_url:
                    product.image_url = offer.image_url
            product.chain_prices.append(self._chain_price(offer))

        return json.dumps(
            [p.to_payload() for p in merged.values()],
            ensure_ascii=False,
        )
