import asyncio

import pytest

from feed_etl.driver import dismiss_dialogs, navigate_with_retry
from feed_etl.errors import NavigationError, NavigationTimeout

URL = "https://www.temu.com/goods.html?goods_id=1"


class FlakyDriver:
    def __init__(self, errors):
        self.errors = list(errors)
        self.calls = 0
        self.clicked = []

    async def navigate(self, url, *, wait_until="domcontentloaded", timeout_ms=60_000):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)

    async def click(self, selector, timeout_ms):
        self.clicked.append(selector)
        return selector.startswith("button")


def test_navigation_retried_then_succeeds():
    driver = FlakyDriver([NavigationTimeout("slow")])
    asyncio.run(navigate_with_retry(driver, URL, timeout_ms=10, attempts=2, wait=(0, 0)))
    assert driver.calls == 2


def test_navigation_gives_up_with_last_error():
    driver = FlakyDriver([NavigationError("reset"), NavigationTimeout("slow")])
    with pytest.raises(NavigationTimeout):
        asyncio.run(navigate_with_retry(driver, URL, timeout_ms=10, attempts=2, wait=(0, 0)))
    assert driver.calls == 2


def test_other_errors_not_retried():
    driver = FlakyDriver([ValueError("bad url")])
    with pytest.raises(ValueError):
        asyncio.run(navigate_with_retry(driver, URL, timeout_ms=10, attempts=3, wait=(0, 0)))
    assert driver.calls == 1


def test_dismiss_dialogs_counts_clicks():
    driver = FlakyDriver([])
    count = asyncio.run(dismiss_dialogs(driver, ["[aria-label=Close]", "button.close"], 100))
    assert count == 1
    assert driver.clicked == ["[aria-label=Close]", "button.close"]
