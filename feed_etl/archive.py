"""Persisted feed: tolerant loading, merge with dedup + history cap, atomic save."""
from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import orjson

from .errors import ArchiveReadError, FeedWriteError
from .models import CategoryFeed, Feed, Item, utc_now_iso

LOGGER = logging.getLogger(__name__)

FeedEntry = Union[Item, Dict[str, Any]]


def _as_dict(entry: FeedEntry) -> Dict[str, Any]:
    if isinstance(entry, Item):
        return entry.to_feed_dict()
    return dict(entry)


def unique_by_id(entries: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep the first entry seen for each ``str(id)``.

    Entries without an id cannot be told apart and are all kept.
    """
    seen = set()
    out = []
    for entry in entries:
        if entry.get("id") is None:
            out.append(entry)
            continue
        key = str(entry["id"])
        if key in seen:
            continue
        seen.add(key)
        out.append(entry)
    return out


def parse_feed(raw: Union[str, bytes]) -> Feed:
    """Parse feed JSON; old bare-array files and wrong shapes give an empty feed.

    Raises ``ArchiveReadError`` only when the content is not JSON at all.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not raw.strip():
        return Feed()
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise ArchiveReadError(f"feed is not valid JSON: {exc}") from exc

    if isinstance(data, list):
        LOGGER.info("Previous feed uses the old array format, starting fresh")
        return Feed()
    if not isinstance(data, dict) or not isinstance(data.get("categories"), list):
        LOGGER.warning("Previous feed has an unexpected shape, starting fresh")
        return Feed()

    categories: List[CategoryFeed] = []
    for raw_category in data["categories"]:
        if not isinstance(raw_category, dict):
            continue
        items = raw_category.get("items")
        categories.append(
            CategoryFeed(
                name=str(raw_category.get("name") or ""),
                items=[i for i in items if isinstance(i, dict)] if isinstance(items, list) else [],
            )
        )
    generated_at = data.get("generatedAt")
    if isinstance(generated_at, str) and generated_at:
        return Feed(generated_at=generated_at, categories=categories)
    return Feed(categories=categories)


def load_previous_feed(path: Union[str, Path]) -> Feed:
    """Read the previous feed; anything unreadable counts as an empty feed."""
    feed_path = Path(path)
    if not feed_path.exists():
        LOGGER.info("No previous feed at %s", feed_path)
        return Feed()
    try:
        feed = parse_feed(feed_path.read_bytes())
    except (OSError, ArchiveReadError) as exc:
        LOGGER.warning("Ignoring unreadable previous feed %s: %s", feed_path, exc)
        return Feed()
    LOGGER.info(
        "Loaded previous feed: %d categories, %d items", len(feed.categories), feed.item_count()
    )
    return feed


def merge(
    previous: Optional[Feed],
    fresh_by_category: Mapping[str, Sequence[FeedEntry]],
    history_cap: Optional[int] = None,
    generated_at: Optional[str] = None,
) -> Feed:
    """Fold fresh items into the previous feed.

    Per category with fresh items: fresh first, then previous; dedup by id
    keeping the first occurrence; truncate to ``history_cap``. Categories
    without fresh items are carried over unchanged; repeated previous
    categories of the same name are folded into one. Neither input is mutated.
    """
    if history_cap is not None and history_cap < 0:
        raise ValueError(f"history_cap must be >= 0, got {history_cap}")

    previous_by_name: Dict[str, List[Dict[str, Any]]] = {}
    previous_order: List[str] = []
    if previous is not None:
        for entry in previous.categories:
            if entry.name not in previous_by_name:
                previous_by_name[entry.name] = list(entry.items)
                previous_order.append(entry.name)
            else:
                LOGGER.warning("Previous feed repeats category %s, folding it in", entry.name)
                previous_by_name[entry.name] = unique_by_id(previous_by_name[entry.name] + entry.items)

    categories: List[CategoryFeed] = []
    merged_names = set()
    for name, fresh in fresh_by_category.items():
        if not fresh:
            continue
        existing = [dict(e) for e in previous_by_name.get(name, [])]
        combined = unique_by_id([_as_dict(e) for e in fresh] + existing)
        if history_cap:
            combined = combined[:history_cap]
        categories.append(CategoryFeed(name=name, items=combined))
        merged_names.add(name)
        LOGGER.debug("Merged %s: %d fresh, %d total", name, len(fresh), len(combined))

    for name in previous_order:
        if name not in merged_names:
            categories.append(
                CategoryFeed(name=name, items=[dict(e) for e in previous_by_name[name]])
            )

    return Feed(generated_at=generated_at or utc_now_iso(), categories=categories)


def _atomic_write(path: Path, payload: bytes) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise FeedWriteError(f"cannot write {path}: {exc}") from exc


def save_feed(path: Union[str, Path], feed: Feed) -> Path:
    """Write the feed atomically; raises ``FeedWriteError`` on failure."""
    feed_path = Path(path)
    _atomic_write(feed_path, orjson.dumps(feed.to_dict(), option=orjson.OPT_INDENT_2))
    LOGGER.info(
        "Feed saved to %s (%d categories, %d items)",
        feed_path,
        len(feed.categories),
        feed.item_count(),
    )
    return feed_path


def write_error_report(
    path: Union[str, Path], failures: Sequence[Mapping[str, str]]
) -> Optional[Path]:
    """Write ``[{url, error}]`` when there are failures, otherwise remove a stale report."""
    report_path = Path(path)
    if not failures:
        if report_path.exists():
            report_path.unlink()
            LOGGER.info("No failures this run, removed %s", report_path)
        return None
    payload = {
        "generatedAt": utc_now_iso(),
        "failures": [{"url": f["url"], "error": f["error"]} for f in failures],
    }
    _atomic_write(report_path, orjson.dumps(payload, option=orjson.OPT_INDENT_2))
    LOGGER.warning("%d failure(s) written to %s", len(failures), report_path)
    return report_path
