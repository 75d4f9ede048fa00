"""Pure extraction strategies over a ``PageSnapshot``.

Each strategy returns a ``PartialItem`` with whatever it could fill and never
raises on a missing field.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Iterable, List, Optional
from urllib.parse import urljoin

import orjson

from ..models import MAX_DESCRIPTION, MAX_IMAGES, PartialItem
from .snapshot import PageSnapshot

LOGGER = logging.getLogger(__name__)

_PRICE_STRIP_RE = re.compile(r"[,\s]")
_PRICE_RE = re.compile(r"(\d+(?:\.\d+)?)")
_WS_RE = re.compile(r"\s+")
_BACKGROUND_RE = re.compile(r"url\(\s*[\"']?([^\"')]+)[\"']?\s*\)", re.IGNORECASE)

_RAW_TITLE_RE = re.compile(r'"title"\s*:\s*"([^"]{3,})"')
_RAW_PRICE_RES = (
    re.compile(r'"price"\s*:\s*(\d+(?:\.\d+)?)'),
    re.compile(r'"min_price"\s*:\s*(\d+(?:\.\d+)?)'),
)
_RAW_IMAGE_RE = re.compile(r"https?://[^\"'\s<>()]+?\.(?:jpe?g|png|webp)", re.IGNORECASE)


def parse_price(value: Any) -> Optional[float]:
    """First integer/decimal token of free-form price text, or ``None``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = _PRICE_RE.search(_PRICE_STRIP_RE.sub("", str(value)))
    return float(match.group(1)) if match else None


def normalize_text(value: Any) -> str:
    return _WS_RE.sub(" ", str(value or "")).strip()


def normalize_description(value: Any, limit: int = MAX_DESCRIPTION) -> Optional[str]:
    text = normalize_text(value)[:limit].rstrip()
    return text or None


def absolute_images(urls: Iterable[str], base_url: str = "", limit: int = MAX_IMAGES) -> List[str]:
    """Resolve against ``base_url``, keep http(s) only, dedup in order, cap."""
    out: List[str] = []
    for raw in urls:
        candidate = (raw or "").strip()
        if not candidate or candidate.startswith("data:"):
            continue
        if base_url:
            candidate = urljoin(base_url, candidate)
        if not candidate.lower().startswith(("http://", "https://")):
            continue
        if candidate not in out:
            out.append(candidate)
            if len(out) >= limit:
                break
    return out


def background_image(style: str) -> str:
    match = _BACKGROUND_RE.search(style or "")
    return match.group(1) if match else ""


# -- structured metadata ------------------------------------------------------


def _is_product(node: Any) -> bool:
    if not isinstance(node, dict):
        return False
    kind = node.get("@type")
    if isinstance(kind, list):
        return "Product" in kind
    return kind == "Product"


def _find_product(data: Any) -> Optional[dict]:
    if _is_product(data):
        return data
    if isinstance(data, list):
        for node in data:
            found = _find_product(node)
            if found:
                return found
    if isinstance(data, dict) and isinstance(data.get("@graph"), list):
        return _find_product(data["@graph"])
    return None


def _offer_price(offers: Any) -> Optional[float]:
    if isinstance(offers, list):
        for offer in offers:
            price = _offer_price(offer)
            if price is not None:
                return price
        return None
    if isinstance(offers, dict):
        for key in ("price", "lowPrice", "highPrice"):
            price = parse_price(offers.get(key))
            if price is not None:
                return price
    return None


def _ld_images(image: Any) -> List[str]:
    if isinstance(image, str):
        return [image]
    if isinstance(image, dict):
        url = image.get("url") or image.get("contentUrl")
        return [url] if isinstance(url, str) else []
    if isinstance(image, list):
        out: List[str] = []
        for entry in image:
            out.extend(_ld_images(entry))
        return out
    return []


def structured_metadata(snapshot: PageSnapshot) -> PartialItem:
    """schema.org ``Product`` records embedded as JSON-LD."""
    for raw in snapshot.ld_json:
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError:
            LOGGER.debug("Skipping malformed JSON-LD block on %s", snapshot.url)
            continue
        product = _find_product(data)
        if not product:
            continue
        return PartialItem(
            title=normalize_text(product.get("name")),
            price=_offer_price(product.get("offers")),
            images=absolute_images(_ld_images(product.get("image")), snapshot.url),
            description=normalize_description(product.get("description")),
        )
    return PartialItem()


# -- heuristic DOM ------------------------------------------------------------


def heuristic_dom(snapshot: PageSnapshot) -> PartialItem:
    """Heading, price-labeled elements, description meta and image attributes."""
    price = None
    for text in snapshot.price_texts:
        price = parse_price(text)
        if price is not None:
            break

    # Lazy-loaded images carry a placeholder (or nothing) in src.
    sources = [
        ref.src if ref.src and not ref.src.startswith("data:") else ref.data_src
        for ref in snapshot.images
    ]
    candidates = absolute_images(sources, snapshot.url)
    if not candidates:
        candidates = absolute_images(
            (background_image(style) for style in snapshot.backgrounds), snapshot.url
        )

    return PartialItem(
        title=normalize_text(snapshot.heading),
        price=price,
        images=candidates,
        description=normalize_description(
            snapshot.meta_description or snapshot.description_text
        ),
    )


# -- raw markup ---------------------------------------------------------------


def raw_text(snapshot: PageSnapshot) -> PartialItem:
    """Regex scan of the raw markup for inlined state blobs."""
    html = snapshot.html
    if not html:
        return PartialItem()

    title_match = _RAW_TITLE_RE.search(html)
    price = None
    for pattern in _RAW_PRICE_RES:
        match = pattern.search(html)
        if match:
            price = float(match.group(1))
            break

    return PartialItem(
        title=normalize_text(title_match.group(1)) if title_match else "",
        price=price,
        images=absolute_images((m.group(0) for m in _RAW_IMAGE_RE.finditer(html))),
    )
