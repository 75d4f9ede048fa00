"""Catalog feed builder.

Collects product records from a storefront with a headless browser and
folds them into a persisted, category-grouped JSON feed:
- URL identity resolution and decoy filtering
- Layered field extraction (JSON-LD, DOM heuristics, raw markup)
- Batched concurrent scraping with per-task isolation
- Merge archive with dedup and per-category history cap
"""

from .models import Feed, Item, WorkUnit
from .pipeline import ProductPipeline, RunSummary, run_manual
from .scheduler import TaskScheduler
from .settings import Settings, load_settings

__all__ = [
    "Feed",
    "Item",
    "WorkUnit",
    "ProductPipeline",
    "RunSummary",
    "run_manual",
    "TaskScheduler",
    "Settings",
    "load_settings",
]
