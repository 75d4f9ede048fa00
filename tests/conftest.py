from contextlib import asynccontextmanager

import orjson
import pytest

from feed_etl.extraction.snapshot import SNAPSHOT_JS
from feed_etl.listing import CARDS_JS
from feed_etl.settings import ScrapeSettings, Settings


class FakeDriver:
    """In-memory page driver.

    ``pages`` maps a URL to the snapshot payload returned for it,
    ``redirects`` maps a requested URL to where navigation lands,
    ``late_redirects`` are applied on the first ``settle`` call,
    ``failures`` maps a URL to the exception navigation raises,
    ``cards`` maps ``(url, selector)`` to listing card payloads.
    """

    def __init__(self, pages=None, redirects=None, late_redirects=None, failures=None, cards=None):
        self.pages = pages or {}
        self.redirects = redirects or {}
        self.late_redirects = late_redirects or {}
        self.failures = failures or {}
        self.cards = cards or {}
        self.url = "about:blank"
        self.visited = []
        self.closed = False

    async def navigate(self, url, *, wait_until="domcontentloaded", timeout_ms=60_000):
        self.visited.append(url)
        if url in self.failures:
            raise self.failures[url]
        self.url = self.redirects.get(url, url)

    async def current_url(self):
        return self.url

    async def query_selector_text(self, selector):
        return None

    async def evaluate(self, script, arg=None):
        if script == SNAPSHOT_JS:
            return self.pages.get(self.url)
        if script == CARDS_JS:
            return self.cards.get((self.url, arg), [])
        return None

    async def settle(self, timeout_ms):
        if self.url in self.late_redirects:
            self.url = self.late_redirects.pop(self.url)

    async def wait_for_selector(self, selector, timeout_ms):
        return True

    async def click(self, selector, timeout_ms):
        return False

    async def close(self):
        self.closed = True


class FakeBrowser:
    """Context factory handing out a fresh ``FakeDriver`` per task."""

    def __init__(self, **driver_kwargs):
        self.driver_kwargs = driver_kwargs
        self.drivers = []
        self.open = 0

    @asynccontextmanager
    async def page_context(self):
        driver = FakeDriver(**self.driver_kwargs)
        self.drivers.append(driver)
        self.open += 1
        try:
            yield driver
        finally:
            self.open -= 1
            await driver.close()


def product_page(url, name="Wireless Earbuds", image="https://img.kwcdn.com/p/a.jpg", price="19.99"):
    ld = {
        "@context": "https://schema.org",
        "@type": "Product",
        "name": name,
        "image": [image] if image else [],
        "offers": {"@type": "Offer", "price": price},
    }
    return {"url": url, "ldJson": [orjson.dumps(ld).decode()]}


@pytest.fixture
def fake_browser():
    return FakeBrowser


@pytest.fixture
def page():
    return product_page


@pytest.fixture
def settings():
    return Settings(
        scrape=ScrapeSettings(
            concurrency=2,
            navigation_retries=1,
            task_timeout_s=5,
            sleep_between_categories_ms=(0, 0),
        ),
        categories=[
            {"name": "Electronics", "keywords": ["earbuds", "charger"]},
            {"name": "Home", "keywords": ["lamp", "kitchen"]},
        ],
    )
