"""Normalize raw tool results into the canonical products structure."""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from toolbridge.adapters.ai_backend import AIClientCache
from toolbridge.infra.config import config
from toolbridge.infra.metrics import normalization_degraded_total, normalization_total
from toolbridge.infra.timeout import AI_NORMALIZATION_TIMEOUT
from toolbridge.models.result import MAX_ITEMS, Item, NormalizedResult, Outcome
from toolbridge.services.heuristic_extractor import (
    UNKNOWN_PRODUCT,
    build_summary,
    coerce_price,
    extract_discount,
    extract_products,
)

logger = logging.getLogger(__name__)

PROMPT_CHAR_BUDGET = 15000
TRUNCATION_MARKER = "\n... [response truncated]"

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)

_PROMPT_TEMPLATE = """You are extracting product data from the response of the "{tool_name}" API of {merchant_name}.

API response (JSON):
{payload}

Return ONLY a JSON object, with no commentary and no markdown, in exactly this shape:
{{
  "products": [
    {{
      "id": "string",
      "name": "string",
      "price": 599,
      "originalPrice": 799,
      "currency": "{currency}",
      "discount": "25% off",
      "image": "https://...",
      "description": "string",
      "brand": "string",
      "category": "string",
      "url": "https://...",
      "rating": 4.5,
      "inStock": true
    }}
  ],
  "totalCount": 0,
  "summary": "one short sentence describing the results"
}}

Rules:
- At most {max_items} products, in the order they appear in the response.
- price and originalPrice must be plain numbers, never strings or objects.
- Omit any field that is not available. Never use null.
- Use "{currency}" as currency when the response does not state one.
- If the response contains no products, return an empty products array."""


@dataclass
class NormalizationContext:
    merchant_id: str
    merchant_name: str
    currency_symbol: Optional[str] = None


def _no_data(raw_result: Any) -> NormalizedResult:
    return NormalizedResult(products=[], total_count=0, summary="No data received", raw=raw_result, source="none")


def _text(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def strip_fences(text: str) -> str:
    match = _FENCE_PATTERN.search(text)
    return (match.group(1) if match else text).strip()


def parse_ai_json(text: str) -> Any:
    """
    Decode the JSON document of an AI reply.

    Tolerates markdown fences and prose around the document.

    Raises:
        ValueError: no JSON document could be decoded
    """
    cleaned = strip_fences(text)
    try:
        return json.loads(cleaned)
    except ValueError:
        pass
    for opener, closer in (("{", "}"), ("[", "]")):
        start, end = cleaned.find(opener), cleaned.rfind(closer)
        if start != -1 and end > start:
            try:
                return json.loads(cleaned[start:end + 1])
            except ValueError:
                continue
    raise ValueError("AI reply is not valid JSON")


def _ai_item(raw: Dict[str, Any], index: int, currency: str) -> Optional[Item]:
    name = _text(raw.get("name")) or _text(raw.get("title"))
    if not name or name == UNKNOWN_PRODUCT:
        return None

    price = coerce_price(raw.get("price"))
    original = coerce_price(raw.get("originalPrice", raw.get("original_price")))
    if price is None and original is not None:
        price = original
    in_stock = raw.get("inStock", raw.get("in_stock"))
    rating = coerce_price(raw.get("rating"))

    return Item(
        id=_text(raw.get("id")) or f"item-{index + 1}",
        name=name,
        price=price,
        original_price=original,
        currency=_text(raw.get("currency")) or currency,
        discount=extract_discount(raw, price, original),
        image=_text(raw.get("image")),
        description=_text(raw.get("description")),
        brand=_text(raw.get("brand")),
        category=_text(raw.get("category")),
        url=_text(raw.get("url")),
        rating=float(rating) if rating is not None else None,
        in_stock=in_stock if isinstance(in_stock, bool) else None,
    )


def result_from_ai_reply(text: str, currency: str) -> Outcome[NormalizedResult]:
    """Canonical result from an AI reply. Parse failures degrade to an empty result."""
    try:
        parsed = parse_ai_json(text)
    except ValueError as e:
        return Outcome.degrade(NormalizedResult(source="ai"), str(e))

    degraded: List[str] = []
    total_hint = None
    summary = None
    if isinstance(parsed, list):
        raw_products = parsed
    elif isinstance(parsed, dict) and "products" in parsed:
        raw_products = parsed["products"]
        if isinstance(raw_products, dict):
            raw_products = [raw_products]
        elif not isinstance(raw_products, list):
            degraded.append("AI products field is not a list")
            raw_products = []
        total_hint = parsed.get("totalCount")
        summary = _text(parsed.get("summary"))
    elif isinstance(parsed, dict):
        raw_products = [parsed]
    else:
        return Outcome.degrade(NormalizedResult(source="ai"), "AI reply is not an object or array")

    items: List[Item] = []
    for raw in raw_products:
        if not isinstance(raw, dict):
            continue
        try:
            item = _ai_item(raw, len(items), currency)
        except ValidationError as e:
            degraded.append(f"AI product rejected: {e.error_count()} validation errors")
            continue
        if item is not None:
            items.append(item)

    shown = items[:MAX_ITEMS]
    hinted = coerce_price(total_hint)
    total = max(int(hinted) if isinstance(hinted, (int, float)) and hinted >= 0 else 0, len(items))
    return Outcome(
        value=NormalizedResult(
            products=shown,
            total_count=total if shown else 0,
            summary=summary or build_summary(len(shown), total),
            source="ai",
        ),
        degraded=degraded,
    )


class ResponseNormalizer:
    """
    Two-path normalizer: an AI extraction when the merchant has a backend, and
    the heuristic extractor always. The result with more products wins; ties go
    to the AI result. Never raises.
    """

    def __init__(
        self,
        ai_clients: AIClientCache,
        ai_timeout: float = AI_NORMALIZATION_TIMEOUT,
        default_currency: Optional[str] = None,
    ):
        self.ai_clients = ai_clients
        self.ai_timeout = ai_timeout
        self.default_currency = default_currency or config.DEFAULT_CURRENCY_SYMBOL

    def build_prompt(self, tool_name: str, payload: Any, context: NormalizationContext, currency: str) -> str:
        text = json.dumps(payload, ensure_ascii=False, default=str)
        if len(text) > PROMPT_CHAR_BUDGET:
            text = text[:PROMPT_CHAR_BUDGET] + TRUNCATION_MARKER
        return _PROMPT_TEMPLATE.format(
            tool_name=tool_name,
            merchant_name=context.merchant_name,
            payload=text,
            currency=currency,
            max_items=MAX_ITEMS,
        )

    async def _ai_extract(
        self, tool_name: str, payload: Any, context: NormalizationContext, currency: str
    ) -> Outcome[Optional[NormalizedResult]]:
        try:
            client = self.ai_clients.get(context.merchant_id)
        except Exception as e:
            return Outcome.degrade(None, f"AI client lookup failed: {e}")
        if client is None:
            return Outcome.ok(None)

        try:
            prompt = self.build_prompt(tool_name, payload, context, currency)
        except (TypeError, ValueError) as e:
            return Outcome.degrade(None, f"payload could not be serialized for AI: {e}")

        try:
            reply = await asyncio.wait_for(client.complete(prompt), timeout=self.ai_timeout)
        except asyncio.TimeoutError:
            return Outcome.degrade(None, f"AI normalization timed out after {self.ai_timeout} seconds")
        except Exception as e:
            return Outcome.degrade(None, f"AI normalization failed: {e}")

        if not isinstance(reply, str):
            return Outcome.degrade(None, "AI backend returned no text")
        return result_from_ai_reply(reply, currency)

    async def normalize(self, tool_name: str, raw_result: Any, context: NormalizationContext) -> NormalizedResult:
        if not isinstance(raw_result, dict) or ("data" not in raw_result and "success" not in raw_result):
            normalization_total.labels(source="none").inc()
            return _no_data(raw_result)

        payload = raw_result.get("data")
        currency = context.currency_symbol or self.default_currency

        ai = await self._ai_extract(tool_name, payload, context, currency)
        heuristic = extract_products(payload, currency)

        if ai.degraded:
            normalization_degraded_total.labels(step="ai").inc(len(ai.degraded))
        if heuristic.degraded:
            normalization_degraded_total.labels(step="heuristic").inc(len(heuristic.degraded))

        if ai.value is not None and len(ai.value.products) >= len(heuristic.products):
            chosen = ai.value
        else:
            chosen = heuristic
        if not chosen.products:
            chosen.source = "none"
        chosen.degraded = ai.degraded + heuristic.degraded

        normalization_total.labels(source=chosen.source).inc()
        if chosen.degraded:
            logger.info(
                "Normalization degraded",
                extra={
                    "merchant_id": context.merchant_id,
                    "tool_name": tool_name,
                    "source": chosen.source,
                    "reasons": chosen.degraded,
                },
            )
        return chosen
