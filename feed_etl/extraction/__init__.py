"""Layered field extraction for product detail pages.

Strategies run in order over one ``PageSnapshot``. The first strategy whose
result already has a title and an image wins outright; otherwise fields are
merged, earlier strategies taking priority.
"""
from __future__ import annotations

import logging
from typing import Callable, Sequence

from ..errors import InsufficientData
from ..models import PartialItem
from .snapshot import SNAPSHOT_JS, ImageRef, PageSnapshot, capture_snapshot
from .strategies import (
    heuristic_dom,
    normalize_description,
    normalize_text,
    parse_price,
    raw_text,
    structured_metadata,
)

LOGGER = logging.getLogger(__name__)

Strategy = Callable[[PageSnapshot], PartialItem]

STRATEGIES: Sequence[Strategy] = (structured_metadata, heuristic_dom, raw_text)


def run_strategies(
    snapshot: PageSnapshot, strategies: Sequence[Strategy] = STRATEGIES
) -> PartialItem:
    """Best-effort merged record; never raises on missing fields."""
    merged = PartialItem()
    for strategy in strategies:
        partial = strategy(snapshot)
        merged.fill_from(partial)
        if merged.is_sufficient():
            LOGGER.debug("%s satisfied extraction for %s", strategy.__name__, snapshot.url)
            break
    return merged


def extract(snapshot: PageSnapshot, strategies: Sequence[Strategy] = STRATEGIES) -> PartialItem:
    """Like ``run_strategies`` but raise ``InsufficientData`` without title or image."""
    merged = run_strategies(snapshot, strategies)
    missing = [name for name, value in (("title", merged.title), ("image", merged.image)) if not value]
    if missing:
        raise InsufficientData(missing)
    return merged


__all__ = [
    "SNAPSHOT_JS",
    "STRATEGIES",
    "ImageRef",
    "PageSnapshot",
    "capture_snapshot",
    "extract",
    "heuristic_dom",
    "normalize_description",
    "normalize_text",
    "parse_price",
    "raw_text",
    "run_strategies",
    "structured_metadata",
]
