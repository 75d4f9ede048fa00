"""Per-task product flow and the manual links pipeline.

One task: resolve id (locally, or by navigating and re-reading the final
URL) -> navigate to the canonical view URL -> settle -> dismiss dialogs ->
decoy check -> snapshot -> extraction chain -> categorize -> rewrite link.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .affiliate import rewrite
from .archive import load_previous_feed, merge, save_feed, write_error_report
from .categorizer import assign_category
from .decoy import DecoyFilter
from .driver import BrowserSession, PageDriver, dismiss_dialogs, navigate_with_retry
from .errors import ProductIdNotFound
from .extraction import capture_snapshot, extract
from .identity import IdentityResolver
from .models import Feed, Item, PartialItem, WorkUnit, utc_now_iso
from .scheduler import ContextFactory, ProductTask, RunReport, TaskScheduler, TaskState
from .settings import Settings

LOGGER = logging.getLogger(__name__)


@dataclass
class RunSummary:
    succeeded: int = 0
    failed: int = 0
    fresh_by_category: Dict[str, int] = field(default_factory=dict)
    feed_path: Optional[Path] = None
    errors_path: Optional[Path] = None
    total_items: int = 0


class ProductPipeline:
    """Turns one work unit into an ``Item`` using a page driver."""

    def __init__(self, settings: Settings, *, retry_wait: Tuple[float, float] = (1.0, 3.0)) -> None:
        self.settings = settings
        self.scrape = settings.scrape
        self.resolver = IdentityResolver.from_profile(settings.site)
        self.decoy = DecoyFilter.from_profile(settings.site)
        self.retry_wait = retry_wait

    async def _goto(self, driver: PageDriver, url: str) -> None:
        await navigate_with_retry(
            driver,
            url,
            timeout_ms=self.scrape.navigation_timeout_ms,
            attempts=self.scrape.navigation_retries,
            wait=self.retry_wait,
        )

    async def resolve_product(self, task: ProductTask[Item], driver: PageDriver) -> Tuple[str, str]:
        """Return ``(product_id, view_url)`` for the task's source URL."""
        source = task.unit.source_url
        product_id = self.resolver.try_resolve(source)
        if product_id is None:
            # Only known-bad patterns here: short links legitimately live on other hosts.
            self.decoy.check(source, check_host=False)
            task.advance(TaskState.NAVIGATING)
            await self._goto(driver, source)
            final_url = await driver.current_url()
            product_id = self.resolver.try_resolve(final_url)
            if product_id is None:
                # Intermediate redirects: give the page one more bounded chance.
                await driver.settle(self.scrape.redirect_wait_ms)
                final_url = await driver.current_url()
                product_id = self.resolver.try_resolve(final_url)
            if product_id is None:
                raise ProductIdNotFound(final_url)
            LOGGER.debug("Resolved %s via navigation to %s", source, final_url)
        return product_id, self.resolver.build_view_url(product_id)

    async def process(self, task: ProductTask[Item], driver: PageDriver) -> Item:
        product_id, view_url = await self.resolve_product(task, driver)
        self.decoy.check(view_url)

        task.advance(TaskState.NAVIGATING)
        await self._goto(driver, view_url)

        task.advance(TaskState.SETTLING)
        await driver.settle(self.scrape.settle_timeout_ms)
        await dismiss_dialogs(driver, self.settings.site.dialog_close_selectors, self.scrape.dialog_timeout_ms)
        self.decoy.check(await driver.current_url())

        task.advance(TaskState.EXTRACTING)
        snapshot = await capture_snapshot(driver)
        partial = extract(snapshot)
        self.decoy.check(title=partial.title)

        item = self.build_item(product_id, view_url, partial, task.unit.category)
        LOGGER.info("Extracted %s: %s", product_id, item.title[:60])
        return item

    def build_item(
        self,
        product_id: str,
        view_url: str,
        partial: PartialItem,
        explicit_category: Optional[str] = None,
    ) -> Item:
        category = assign_category(
            explicit_category,
            f"{partial.title} {partial.description or ''}",
            self.settings.categories,
        )
        affiliate = self.settings.affiliate
        return Item(
            id=product_id,
            title=partial.title,
            price=partial.price,
            primary_image=partial.image,
            images=partial.images,
            description=partial.description,
            category=category,
            url=view_url,
            outbound_url=rewrite(view_url, affiliate, affiliate.for_category(category)),
        )


def group_by_category(items: Sequence[Item]) -> Dict[str, List[Item]]:
    """Group accepted items by category, in first-seen order."""
    grouped: Dict[str, List[Item]] = {}
    for item in items:
        if not item.title or not item.primary_image:
            LOGGER.warning("Dropping incomplete item %s", item.id)
            continue
        grouped.setdefault(item.category, []).append(item)
    return grouped


def failures_from_report(report: RunReport[Item]) -> List[Dict[str, str]]:
    return [
        {"url": task.unit.source_url, "error": task.error or "unknown"}
        for task in report.failures()
    ]


def publish(
    fresh_by_category: Mapping[str, Sequence[Item]],
    failures: Sequence[Mapping[str, str]],
    *,
    feed_path: Union[str, Path],
    errors_path: Union[str, Path],
    history_cap: Optional[int],
) -> Feed:
    """Merge fresh items into the previous feed and persist both artifacts."""
    previous = load_previous_feed(feed_path)
    feed = merge(previous, fresh_by_category, history_cap, generated_at=utc_now_iso())
    save_feed(feed_path, feed)
    write_error_report(errors_path, failures)
    return feed


def build_scheduler(settings: Settings) -> TaskScheduler:
    low, high = settings.scrape.sleep_between_batches_ms
    return TaskScheduler(
        settings.scrape.concurrency,
        task_timeout=settings.scrape.task_timeout_s,
        pause_between_batches=(low / 1000, high / 1000),
    )


async def collect_products(
    settings: Settings,
    units: Sequence[WorkUnit],
    context_factory: Optional[ContextFactory] = None,
    *,
    pipeline: Optional[ProductPipeline] = None,
) -> RunReport[Item]:
    """Run the product flow for every unit; browser is started unless a factory is given."""
    pipeline = pipeline or ProductPipeline(settings)
    scheduler = build_scheduler(settings)
    if context_factory is not None:
        return await scheduler.run(units, context_factory, pipeline.process)
    async with BrowserSession(settings.scrape, settings.site) as session:
        return await scheduler.run(units, session.page_context, pipeline.process)


async def run_manual(
    settings: Settings,
    units: Sequence[WorkUnit],
    *,
    feed_path: Union[str, Path],
    errors_path: Union[str, Path],
    context_factory: Optional[ContextFactory] = None,
    pipeline: Optional[ProductPipeline] = None,
) -> RunSummary:
    """Manual links run: collect, then merge into the archive.

    Nothing is merged unless the whole run completed; an interrupted run
    leaves the previous feed untouched.
    """
    report = await collect_products(settings, units, context_factory, pipeline=pipeline)
    fresh = group_by_category(report.results())
    failures = failures_from_report(report)
    feed = publish(
        fresh,
        failures,
        feed_path=feed_path,
        errors_path=errors_path,
        history_cap=settings.scrape.history_cap_per_category,
    )
    return RunSummary(
        succeeded=report.succeeded,
        failed=report.failed,
        fresh_by_category={name: len(items) for name, items in fresh.items()},
        feed_path=Path(feed_path),
        errors_path=Path(errors_path) if failures else None,
        total_items=feed.item_count(),
    )
