"""Category listing pages: read product cards, optionally enrich from detail pages."""
from __future__ import annotations

import asyncio
import logging
import random
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import urljoin

from .affiliate import rewrite
from .decoy import DecoyFilter
from .driver import BrowserSession, PageDriver, navigate_with_retry
from .errors import NoWorkUnits, classify
from .extraction import capture_snapshot, normalize_text, parse_price, run_strategies
from .extraction.strategies import absolute_images, background_image
from .identity import IdentityResolver
from .models import Item, WorkUnit
from .pipeline import RunSummary, build_scheduler, publish
from .scheduler import ContextFactory, ProductTask, TaskState
from .settings import ListingTarget, Settings

LOGGER = logging.getLogger(__name__)

CARDS_JS = """
(selector) => Array.from(document.querySelectorAll(selector)).slice(0, 300).map(el => {
  const anchor = el.tagName === 'A' ? el : el.querySelector('a');
  const img = el.querySelector('img');
  const styled = el.querySelector('[style*="background-image"]');
  const titleEl = el.querySelector('.goods-title, ._title, .title, [data-title]');
  const priceEl = el.querySelector('[data-price], .price, ._price, [class*="price"]');
  return {
    dataId: el.getAttribute('data-goods-id') || el.getAttribute('data-sku-id') || '',
    href: (anchor && anchor.getAttribute('href')) || '',
    title: ((titleEl && titleEl.textContent)
      || (img && img.getAttribute('alt'))
      || el.getAttribute('title') || '').trim(),
    image: (img && img.getAttribute('src')) || '',
    dataSrc: (img && (img.getAttribute('data-src') || img.getAttribute('data-lazy-src'))) || '',
    style: (styled && styled.getAttribute('style')) || '',
    priceText: ((priceEl && priceEl.textContent) || '').trim(),
  };
})
"""

SCROLL_JS = """
async () => {
  await new Promise(resolve => {
    let y = 0; const step = 700; const max = 7000;
    const tick = () => {
      y += step; window.scrollTo(0, y);
      if (y < max) requestAnimationFrame(tick); else setTimeout(resolve, 400);
    };
    tick();
  });
}
"""


def cards_to_items(
    cards: Iterable[Mapping[str, Any]],
    page_url: str,
    *,
    category: str,
    resolver: IdentityResolver,
    decoy: DecoyFilter,
) -> List[Item]:
    """Convert raw card payloads into items, dropping decoys and incomplete cards."""
    items: List[Item] = []
    for card in cards:
        href = str(card.get("href") or "").strip()
        if href:
            href = urljoin(page_url, href)
            if not decoy.host_allowed(href):
                continue

        product_id = str(card.get("dataId") or "").strip()
        if not product_id and href:
            product_id = resolver.try_resolve(href) or ""

        title = normalize_text(card.get("title"))
        # Lazy cards carry a data: placeholder in src until scrolled into view.
        candidates = absolute_images(
            [
                str(card.get("image") or ""),
                str(card.get("dataSrc") or ""),
                background_image(str(card.get("style") or "")),
            ],
            href or page_url,
            limit=1,
        )
        image = candidates[0] if candidates else ""

        product_url = href or (resolver.build_view_url(product_id) if product_id else "")
        if not title or not image or not product_url:
            continue
        if decoy.is_decoy(product_url, title, check_host=False):
            continue

        items.append(
            Item(
                id=product_id or product_url,
                title=title,
                price=parse_price(card.get("priceText")),
                primary_image=image,
                category=category,
                url=product_url,
            )
        )
    return items


class ListingPipeline:
    def __init__(
        self,
        settings: Settings,
        *,
        retry_wait: Tuple[float, float] = (1.0, 3.0),
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.scrape = settings.scrape
        self.site = settings.site
        self.card_resolver = IdentityResolver(
            id_params=self.site.card_id_params,
            path_pattern=self.site.path_pattern,
            redirect_params=self.site.redirect_params,
            min_digit_run=self.site.min_digit_run,
            view_url_template=self.site.view_url_template,
        )
        self.decoy = DecoyFilter.from_profile(self.site)
        self.retry_wait = retry_wait
        self._sleep = sleep

    async def _open(self, driver: PageDriver, url: str) -> None:
        await navigate_with_retry(
            driver,
            url,
            timeout_ms=self.scrape.navigation_timeout_ms,
            attempts=self.scrape.navigation_retries,
            wait=self.retry_wait,
        )
        await driver.settle(self.scrape.settle_timeout_ms)
        await driver.wait_for_selector(self.site.goods_selector, self.scrape.goods_wait_ms)

    async def scrape_listing(self, driver: PageDriver, target: ListingTarget) -> List[Item]:
        await self._open(driver, target.url)
        if self.decoy.is_decoy(await driver.current_url(), check_host=False):
            LOGGER.info("Bounced to a decoy page from %s, retrying once", target.url)
            await self._open(driver, target.url)

        results: List[Item] = []
        for page_number in range(1, max(self.scrape.max_pages_per_category, 1) + 1):
            page_url = await driver.current_url()
            for selector in self.site.card_selectors:
                cards = await driver.evaluate(CARDS_JS, selector)
                if not cards:
                    continue
                found = cards_to_items(
                    cards,
                    page_url,
                    category=target.name,
                    resolver=self.card_resolver,
                    decoy=self.decoy,
                )
                if found:
                    LOGGER.debug("%s page %d: %d cards via %s", target.name, page_number, len(found), selector)
                    results.extend(found)
                    break

            if len(results) >= self.scrape.items_per_category_cap:
                break
            if page_number >= self.scrape.max_pages_per_category:
                break
            await driver.evaluate(SCROLL_JS)
            if not await driver.click(self.site.next_page_selector, self.scrape.dialog_timeout_ms):
                break
            await driver.settle(self.scrape.settle_timeout_ms)
            await driver.wait_for_selector(self.site.goods_selector, self.scrape.goods_wait_ms)

        seen = set()
        unique: List[Item] = []
        for item in results:
            if item.id not in seen:
                seen.add(item.id)
                unique.append(item)
        return unique[: self.scrape.items_per_category_cap]

    async def _enrich_one(self, task: ProductTask[Dict[str, Any]], driver: PageDriver) -> Dict[str, Any]:
        url = task.unit.source_url
        self.decoy.check(url, check_host=False)
        task.advance(TaskState.NAVIGATING)
        await navigate_with_retry(
            driver,
            url,
            timeout_ms=self.scrape.navigation_timeout_ms,
            attempts=self.scrape.navigation_retries,
            wait=self.retry_wait,
        )
        task.advance(TaskState.SETTLING)
        await driver.settle(self.scrape.settle_timeout_ms)
        self.decoy.check(await driver.current_url())
        task.advance(TaskState.EXTRACTING)
        partial = run_strategies(await capture_snapshot(driver))
        update: Dict[str, Any] = {}
        if partial.description:
            update["description"] = partial.description
        if partial.images:
            update["images"] = partial.images
        return update

    async def enrich(self, items: List[Item], context_factory: ContextFactory) -> List[Item]:
        """Fill description and gallery from detail pages for the first items."""
        limit = min(self.scrape.enrich_limit_per_run, len(items))
        if not self.scrape.enrich_details or limit == 0:
            return items
        units = [WorkUnit(source_url=item.url, category=item.category) for item in items[:limit]]
        report = await build_scheduler(self.settings).run(units, context_factory, self._enrich_one)
        enriched = list(items)
        for task in report.tasks:
            if task.succeeded and task.result:
                enriched[task.index] = items[task.index].model_copy(update=task.result)
        return enriched

    def _with_outbound(self, item: Item) -> Item:
        affiliate = self.settings.affiliate
        outbound = rewrite(item.url, affiliate, affiliate.for_category(item.category))
        return item.model_copy(update={"outbound_url": outbound})

    async def collect(
        self, context_factory: ContextFactory
    ) -> Tuple[Dict[str, List[Item]], List[Dict[str, str]]]:
        fresh: Dict[str, List[Item]] = {}
        failures: List[Dict[str, str]] = []
        targets = self.settings.listings
        for position, target in enumerate(targets):
            LOGGER.info("Category: %s", target.name)
            try:
                async with context_factory() as driver:
                    items = await self.scrape_listing(driver, target)
                new_items = items[: self.scrape.max_new_items_per_run_per_category]
                new_items = await self.enrich(new_items, context_factory)
                fresh[target.name] = [self._with_outbound(item) for item in new_items]
                LOGGER.info("%s: %d fresh item(s)", target.name, len(fresh[target.name]))
            except Exception as exc:
                LOGGER.error("Failed category %s: %s", target.name, exc)
                failures.append({"url": target.url, "error": classify(exc)})
                fresh[target.name] = []

            if position < len(targets) - 1:
                low, high = self.scrape.sleep_between_categories_ms
                await self._sleep(random.uniform(low, high) / 1000)
        return fresh, failures


async def run_listings(
    settings: Settings,
    *,
    feed_path: Union[str, Path],
    errors_path: Union[str, Path],
    context_factory: Optional[ContextFactory] = None,
    pipeline: Optional[ListingPipeline] = None,
) -> RunSummary:
    if not settings.listings:
        raise NoWorkUnits("no listings configured")
    pipeline = pipeline or ListingPipeline(settings)

    if context_factory is not None:
        fresh, failures = await pipeline.collect(context_factory)
    else:
        async with BrowserSession(settings.scrape, settings.site) as session:
            fresh, failures = await pipeline.collect(session.page_context)

    feed = publish(
        fresh,
        failures,
        feed_path=feed_path,
        errors_path=errors_path,
        history_cap=settings.scrape.history_cap_per_category,
    )
    return RunSummary(
        succeeded=sum(1 for items in fresh.values() if items),
        failed=len(failures),
        fresh_by_category={name: len(items) for name, items in fresh.items()},
        feed_path=Path(feed_path),
        errors_path=Path(errors_path) if failures else None,
        total_items=feed.item_count(),
    )
