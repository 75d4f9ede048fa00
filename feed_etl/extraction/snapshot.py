"""Immutable capture of a rendered page that strategies run against."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

LOGGER = logging.getLogger(__name__)

# Runs inside the page; returns everything the strategies need in one round trip.
SNAPSHOT_JS = """
() => {
  const attr = (el, name) => (el && el.getAttribute(name)) || '';
  const text = (el) => ((el && el.textContent) || '').trim();
  const all = (sel, limit) => Array.from(document.querySelectorAll(sel)).slice(0, limit);

  const priceNodes = all('[itemprop="price"], [data-price], .price, ._price, [class*="price" i]', 20);
  return {
    url: location.href,
    html: document.documentElement ? document.documentElement.outerHTML : '',
    ldJson: all('script[type="application/ld+json"]', 20).map(n => n.textContent || ''),
    heading: text(document.querySelector('h1')),
    priceTexts: priceNodes
      .map(el => attr(el, 'content') || attr(el, 'data-price') || text(el))
      .filter(Boolean),
    metaDescription: attr(document.querySelector('meta[name="description"]'), 'content')
      || attr(document.querySelector('meta[property="og:description"]'), 'content'),
    descriptionText: text(document.querySelector('[class*="description" i], [class*="desc" i]')),
    images: all('img', 200).map(img => ({
      src: attr(img, 'src'),
      dataSrc: attr(img, 'data-src') || attr(img, 'data-lazy-src') || attr(img, 'data-original'),
    })),
    backgrounds: all('[style*="background-image"]', 50).map(el => attr(el, 'style')),
  };
}
"""


@dataclass(frozen=True)
class ImageRef:
    src: str = ""
    data_src: str = ""


@dataclass(frozen=True)
class PageSnapshot:
    url: str = ""
    html: str = ""
    ld_json: Tuple[str, ...] = ()
    heading: str = ""
    price_texts: Tuple[str, ...] = ()
    meta_description: str = ""
    description_text: str = ""
    images: Tuple[ImageRef, ...] = field(default_factory=tuple)
    backgrounds: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any], url: str = "") -> "PageSnapshot":
        """Build a snapshot from the JS payload, ignoring anything malformed."""

        def strings(key: str) -> Tuple[str, ...]:
            values = data.get(key) or []
            if not isinstance(values, list):
                return ()
            return tuple(str(v) for v in values if isinstance(v, (str, int, float)))

        images = []
        for raw in data.get("images") or []:
            if isinstance(raw, dict):
                images.append(ImageRef(str(raw.get("src") or ""), str(raw.get("dataSrc") or "")))
            elif isinstance(raw, str):
                images.append(ImageRef(src=raw))

        return cls(
            url=str(data.get("url") or url),
            html=str(data.get("html") or ""),
            ld_json=strings("ldJson"),
            heading=str(data.get("heading") or ""),
            price_texts=strings("priceTexts"),
            meta_description=str(data.get("metaDescription") or ""),
            description_text=str(data.get("descriptionText") or ""),
            images=tuple(images),
            backgrounds=strings("backgrounds"),
        )


async def capture_snapshot(driver: Any) -> PageSnapshot:
    """Evaluate the snapshot script through a page driver."""
    url = await driver.current_url()
    data = await driver.evaluate(SNAPSHOT_JS)
    if not isinstance(data, dict):
        LOGGER.warning("Snapshot script returned %s for %s", type(data).__name__, url)
        return PageSnapshot(url=url)
    return PageSnapshot.from_dict(data, url=url)
