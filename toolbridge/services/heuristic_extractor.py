"""
Deterministic product extraction from arbitrary JSON payloads.

Merchant APIs share no schema, so items are located structurally: a
breadth-first walk (bounded in depth and in visited nodes) looks for an array
whose elements carry a name-like field, preferring well-known container keys
(``items``, ``products``, ``results`` ...). Each candidate is then mapped to an
``Item`` through ordered field heuristics that tolerate the common shapes of
e-commerce APIs (nested price objects, media arrays, Elasticsearch hits).
"""

import logging
import math
import re
from collections import deque
from typing import Any, Dict, List, Optional, Tuple, Union

from toolbridge.models.result import MAX_ITEMS, Item, NormalizedResult, Outcome

logger = logging.getLogger(__name__)

Number = Union[int, float]

MAX_DEPTH = 5
NODE_BUDGET = 5000
MAX_DESCRIPTION_LENGTH = 500
UNKNOWN_PRODUCT = "Unknown Product"

CONTAINER_FIELDS = ("items", "products", "results", "data", "list", "records", "hits")
NAME_FIELDS = ("name", "title", "product_name", "productName", "display_name", "displayName", "item_name")
ID_FIELDS = ("id", "_id", "product_id", "productId", "item_id", "uid", "sku", "slug")

PRICE_OBJECT_CURRENT_KEYS = ("effective", "current")
PRICE_OBJECT_OTHER_KEYS = ("final", "discounted", "sale", "selling", "offer", "special", "value", "amount")
PRICE_OBJECT_ORIGINAL_KEYS = ("marked", "original", "mrp", "list", "regular", "compare_at")
FLAT_PRICE_FIELDS = (
    "selling_price", "sellingPrice", "effective_price", "sale_price", "salePrice",
    "final_price", "finalPrice", "offer_price", "special_price", "cost", "amount",
)
FLAT_ORIGINAL_PRICE_FIELDS = (
    "mrp", "marked_price", "markedPrice", "compare_at_price", "compareAtPrice",
    "original_price", "originalPrice", "list_price", "listPrice", "regular_price",
)
COERCE_KEYS = (
    "min", "value", "amount", "max", "effective", "current", "final", "price",
    "sale", "selling", "discounted", "marked", "original", "mrp",
)
DISCOUNT_FIELDS = ("discount", "discount_percent", "discountPercent", "discount_percentage", "discountPercentage")
IMAGE_FIELDS = (
    "image", "image_url", "imageUrl", "img", "thumbnail", "thumbnail_url", "thumbnailUrl",
    "photo", "picture", "featured_image", "featuredImage", "main_image", "primary_image",
)
URL_REF_KEYS = ("url", "src", "href", "secure_url", "link")
BRAND_FIELDS = ("brand", "brand_name", "brandName", "vendor", "manufacturer")
CATEGORY_FIELDS = ("category", "categories", "category_name", "product_type", "productType")
URL_FIELDS = ("url", "link", "product_url", "productUrl", "href", "permalink", "web_url")
DESCRIPTION_FIELDS = ("description", "desc", "short_description", "shortDescription", "summary", "details")
RATING_FIELDS = ("rating", "average_rating", "averageRating", "avg_rating", "stars")
STOCK_FLAG_FIELDS = ("in_stock", "inStock", "available", "is_available", "isAvailable", "sellable")
STOCK_QUANTITY_FIELDS = ("stock", "quantity", "inventory_quantity", "stock_quantity", "qty")
TOTAL_FIELDS = ("total", "total_count", "totalCount", "total_results", "item_total", "nbHits", "found", "count")
PAGINATION_CONTAINERS = ("page", "pagination", "meta", "hits")

CURRENCY_SYMBOLS = {"INR": "₹", "USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥"}

_NUMBER_PATTERN = re.compile(r"-?\d+(?:\.\d+)?")
_IN_STOCK_WORDS = ("in stock", "in_stock", "instock", "available", "true", "yes")
_OUT_OF_STOCK_WORDS = ("out of stock", "out_of_stock", "outofstock", "unavailable", "sold out", "false", "no")


def _as_number(value: float) -> Optional[Number]:
    if not math.isfinite(value):
        return None
    return int(value) if value.is_integer() else value


def coerce_price(value: Any, _depth: int = 0) -> Optional[Number]:
    """
    Permissive numeric coercion.

    ``"₹599"``, ``"1,299.00"``, ``599``, ``{"min": 599}`` and ``{"effective":
    {"min": 599}}`` all coerce; booleans, non-finite numbers and text without
    digits yield None. Integral values come back as ``int``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return _as_number(value)
    if isinstance(value, str):
        match = _NUMBER_PATTERN.search(value.replace(",", ""))
        if not match:
            return None
        return _as_number(float(match.group(0)))
    if _depth >= 3:
        return None
    if isinstance(value, dict):
        for key in COERCE_KEYS:
            if key in value:
                number = coerce_price(value[key], _depth + 1)
                if number is not None:
                    return number
        return None
    if isinstance(value, list) and value:
        return coerce_price(value[0], _depth + 1)
    return None


def _text(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _first_text(obj: Dict[str, Any], fields: Tuple[str, ...]) -> Optional[str]:
    for field in fields:
        text = _text(obj.get(field))
        if text:
            return text
    return None


def _name_of(obj: Dict[str, Any]) -> Optional[str]:
    return _first_text(obj, NAME_FIELDS)


def _unwrap(element: Any) -> Optional[Dict[str, Any]]:
    """Item fields of an element, looking through an Elasticsearch ``_source`` wrapper."""
    if not isinstance(element, dict):
        return None
    source = element.get("_source")
    if isinstance(source, dict):
        merged = dict(source)
        if "_id" in element and not any(k in merged for k in ("id", "_id")):
            merged["_id"] = element["_id"]
        return merged
    return element


def looks_like_item(element: Any) -> bool:
    fields = _unwrap(element)
    return fields is not None and _name_of(fields) is not None


def _is_item_list(value: Any) -> bool:
    return isinstance(value, list) and any(looks_like_item(element) for element in value)


def _looks_like_single_item(node: Dict[str, Any]) -> bool:
    """A lone object counts as an item only with a name plus a price or an image."""
    if not looks_like_item(node):
        return False
    fields = _unwrap(node)
    return extract_prices(fields)[0] is not None or extract_image(fields) is not None


def find_item_candidates(payload: Any) -> Outcome[List[Dict[str, Any]]]:
    """
    Breadth-first search for the item array of a payload.

    Known container fields are followed first (the first non-empty one wins and
    its siblings are not explored). When no array is found, the first
    item-like object becomes a single candidate.
    """
    queue = deque([(payload, 0)])
    seen = set()
    visited = 0
    single_item: Optional[Dict[str, Any]] = None
    degraded: List[str] = []

    while queue:
        node, depth = queue.popleft()
        if not isinstance(node, (dict, list)) or id(node) in seen:
            continue
        seen.add(id(node))
        visited += 1
        if visited > NODE_BUDGET:
            degraded.append("heuristic search stopped at node budget")
            break

        if _is_item_list(node):
            return Outcome(value=[e for e in node if isinstance(e, dict)], degraded=degraded)

        if depth >= MAX_DEPTH:
            continue

        if isinstance(node, list):
            queue.extend((element, depth + 1) for element in node)
            continue

        if single_item is None and _looks_like_single_item(node):
            single_item = node

        container = next(
            (node[field] for field in CONTAINER_FIELDS if isinstance(node.get(field), (dict, list)) and node[field]),
            None,
        )
        if container is not None:
            queue.append((container, depth + 1))
        else:
            queue.extend((value, depth + 1) for value in node.values() if isinstance(value, (dict, list)))

    if single_item is not None:
        return Outcome(value=[single_item], degraded=degraded)
    return Outcome(value=[], degraded=degraded)


def _resolve_image(value: Any, _depth: int = 0) -> Optional[str]:
    if isinstance(value, str):
        return value.strip() or None
    if _depth >= 3:
        return None
    if isinstance(value, dict):
        for key in URL_REF_KEYS:
            image = _resolve_image(value.get(key), _depth + 1)
            if image:
                return image
        return None
    if isinstance(value, list) and value:
        return _resolve_image(value[0], _depth + 1)
    return None


def extract_image(item: Dict[str, Any]) -> Optional[str]:
    medias = item.get("medias")
    if isinstance(medias, list) and medias:
        image = _resolve_image(medias[0])
        if image:
            return image
    image = _resolve_image(item.get("media"))
    if image:
        return image
    for field in IMAGE_FIELDS:
        image = _resolve_image(item.get(field))
        if image:
            return image
    images = item.get("images")
    if isinstance(images, list) and images:
        return _resolve_image(images[0])
    return None


def extract_prices(item: Dict[str, Any]) -> Tuple[Optional[Number], Optional[Number]]:
    """Current and original price of an item; an original-only item uses it as current price too."""
    price: Optional[Number] = None
    original: Optional[Number] = None
    price_obj = item.get("price")

    if isinstance(price_obj, dict):
        for key in PRICE_OBJECT_CURRENT_KEYS:
            price = coerce_price(price_obj.get(key))
            if price is not None:
                break
        if price is None and ("min" in price_obj or "max" in price_obj):
            price = coerce_price(price_obj.get("min")) if "min" in price_obj else None
            if price is None:
                price = coerce_price(price_obj.get("max"))
        if price is None:
            for key in PRICE_OBJECT_OTHER_KEYS:
                price = coerce_price(price_obj.get(key))
                if price is not None:
                    break
        for key in PRICE_OBJECT_ORIGINAL_KEYS:
            original = coerce_price(price_obj.get(key))
            if original is not None:
                break
    elif price_obj is not None:
        price = coerce_price(price_obj)

    if price is None:
        for field in FLAT_PRICE_FIELDS:
            price = coerce_price(item.get(field))
            if price is not None:
                break
    if original is None:
        for field in FLAT_ORIGINAL_PRICE_FIELDS:
            original = coerce_price(item.get(field))
            if original is not None:
                break

    if price is None and original is not None:
        price = original
    return price, original


def _percent_off(value: Number) -> str:
    number = _as_number(float(value))
    return f"{number}% off"


def extract_discount(item: Dict[str, Any], price: Optional[Number], original: Optional[Number]) -> Optional[str]:
    for field in DISCOUNT_FIELDS:
        value = item.get(field)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value) and value > 0:
            return _percent_off(value)
    if price is not None and original is not None and original > price and original > 0:
        return f"{int((original - price) / original * 100 + 0.5)}% off"
    return None


def _named(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return _first_text(value, ("name", "title", "label", "value"))
    if isinstance(value, list):
        for element in value:
            name = _named(element)
            if name:
                return name
        return None
    return _text(value)


def extract_currency(item: Dict[str, Any], default: str) -> str:
    price_obj = item.get("price") if isinstance(item.get("price"), dict) else {}
    for value in (item.get("currency"), item.get("currency_symbol"), price_obj.get("currency"),
                  price_obj.get("currency_symbol"), price_obj.get("currency_code")):
        text = _text(value)
        if text and not text.replace(".", "").isdigit():
            return CURRENCY_SYMBOLS.get(text.upper(), text)
    return default


def extract_rating(item: Dict[str, Any]) -> Optional[float]:
    for field in RATING_FIELDS:
        value = item.get(field)
        if isinstance(value, dict):
            value = next((value[k] for k in ("average", "avg", "value", "rating") if k in value), None)
        number = coerce_price(value)
        if number is not None:
            return float(number)
    return None


def extract_in_stock(item: Dict[str, Any]) -> Optional[bool]:
    for field in STOCK_FLAG_FIELDS:
        value = item.get(field)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _OUT_OF_STOCK_WORDS:
                return False
            if lowered in _IN_STOCK_WORDS:
                return True
    if isinstance(item.get("out_of_stock"), bool):
        return not item["out_of_stock"]
    for field in STOCK_QUANTITY_FIELDS:
        value = item.get(field)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value > 0
    return None


def item_from_dict(raw: Dict[str, Any], index: int, currency: str) -> Optional[Item]:
    """Map one candidate to an Item; None when it has no usable name."""
    fields = _unwrap(raw)
    if fields is None:
        return None
    name = _name_of(fields)
    if not name or name == UNKNOWN_PRODUCT:
        return None

    price, original = extract_prices(fields)
    description = _first_text(fields, DESCRIPTION_FIELDS)
    if description and len(description) > MAX_DESCRIPTION_LENGTH:
        description = description[:MAX_DESCRIPTION_LENGTH].rstrip() + "..."

    return Item(
        id=_first_text(fields, ID_FIELDS) or f"item-{index + 1}",
        name=name,
        price=price,
        original_price=original,
        currency=extract_currency(fields, currency),
        discount=extract_discount(fields, price, original),
        image=extract_image(fields),
        description=description,
        brand=next((b for b in (_named(fields.get(f)) for f in BRAND_FIELDS) if b), None),
        category=next((c for c in (_named(fields.get(f)) for f in CATEGORY_FIELDS) if c), None),
        url=_first_text(fields, URL_FIELDS),
        rating=extract_rating(fields),
        in_stock=extract_in_stock(fields),
    )


def _total_of(value: Any) -> Optional[int]:
    if isinstance(value, dict):
        value = value.get("value")
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float) and math.isfinite(value) and value.is_integer() and value >= 0:
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def extract_total(payload: Any) -> Optional[int]:
    """Total result count from pagination fields at the top level or one container below."""
    candidates: List[Dict[str, Any]] = []
    if isinstance(payload, dict):
        candidates.append(payload)
        for key in PAGINATION_CONTAINERS + CONTAINER_FIELDS:
            nested = payload.get(key)
            if isinstance(nested, dict):
                candidates.append(nested)
                candidates.extend(nested.get(k) for k in PAGINATION_CONTAINERS if isinstance(nested.get(k), dict))

    for candidate in candidates:
        for field in TOTAL_FIELDS:
            if field in candidate:
                total = _total_of(candidate[field])
                if total is not None:
                    return total
    return None


def build_summary(shown: int, total: int) -> str:
    if shown == 0:
        return "No products found in response"
    noun = "product" if total == 1 else "products"
    if total > shown:
        return f"Showing {shown} of {total} {noun}"
    return f"Found {shown} {noun}"


def extract_products(payload: Any, currency: str) -> NormalizedResult:
    """
    Heuristic normalization of a tool payload.

    Never raises: unexpected shapes produce an empty result with the reason in
    ``degraded``.
    """
    try:
        candidates = find_item_candidates(payload)
        items: List[Item] = []
        for index, raw in enumerate(candidates.value):
            item = item_from_dict(raw, index, currency)
            if item is not None:
                items.append(item)

        total = max(extract_total(payload) or 0, len(items))
        shown = items[:MAX_ITEMS]
        return NormalizedResult(
            products=shown,
            total_count=total if shown else 0,
            summary=build_summary(len(shown), total),
            source="heuristic" if shown else "none",
            degraded=list(candidates.degraded),
        )
    except Exception as e:
        logger.warning("Heuristic extraction failed", extra={"error": str(e)}, exc_info=True)
        return NormalizedResult(
            products=[],
            total_count=0,
            summary=build_summary(0, 0),
            source="none",
            degraded=[f"heuristic extraction failed: {e}"],
        )

