"""Reading work units from the manual links CSV."""
from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Union

from .errors import NoWorkUnits
from .models import WorkUnit

LOGGER = logging.getLogger(__name__)

URL_COLUMNS = ("url", "URL", "link", "Link")
CATEGORY_COLUMNS = ("category", "Category")


def _looks_like_url(value: str) -> bool:
    return value.lower().startswith(("http://", "https://"))


def _data_lines(lines: Iterable[str]) -> List[str]:
    return [line for line in lines if line.strip() and not line.lstrip().startswith("#")]


def parse_links(lines: Iterable[str]) -> List[WorkUnit]:
    """Parse CSV rows into work units.

    With a header, ``url`` (or ``URL``/``link``) and optional ``category``
    columns are used. Without one, each row is ``url[,category]`` or
    ``category,url``, whichever cell looks like a URL.
    """
    rows = _data_lines(lines)
    if not rows:
        return []

    header = [cell.strip() for cell in next(csv.reader([rows[0]]))]
    units: List[WorkUnit] = []

    if any(name in header for name in URL_COLUMNS):
        reader = csv.DictReader(rows, skipinitialspace=True)
        reader.fieldnames = [name.strip() for name in reader.fieldnames or []]
        for record in reader:
            url = _first(record, URL_COLUMNS)
            if not url:
                continue
            units.append(WorkUnit(source_url=url, category=_first(record, CATEGORY_COLUMNS)))
        return units

    for line_num, cells in enumerate(csv.reader(rows), 1):
        cells = [c.strip() for c in cells if c.strip()]
        urls = [c for c in cells if _looks_like_url(c)]
        if not urls:
            LOGGER.warning("Line %d has no URL, skipping: %s", line_num, cells)
            continue
        others = [c for c in cells if c != urls[0]]
        units.append(WorkUnit(source_url=urls[0], category=others[0] if others else None))
    return units


def _first(record: dict, names: Iterable[str]) -> Optional[str]:
    for name in names:
        value = (record.get(name) or "").strip()
        if value:
            return value
    return None


def read_links(path: Union[str, Path], max_items: Optional[int] = None) -> List[WorkUnit]:
    """Load work units; an unreadable or empty file is fatal for the run."""
    links_path = Path(path)
    try:
        text = links_path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise NoWorkUnits(f"cannot read links file {links_path}: {exc}") from exc

    units = parse_links(text.splitlines())
    if not units:
        raise NoWorkUnits(f"{links_path} contains no product links")
    if max_items and len(units) > max_items:
        LOGGER.info("Limiting %d links to the first %d", len(units), max_items)
        units = units[:max_items]
    return units
