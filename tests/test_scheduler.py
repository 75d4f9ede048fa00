import asyncio

from feed_etl.errors import DecoyDetected
from feed_etl.models import WorkUnit
from feed_etl.scheduler import NO_RESULT, TASK_TIMEOUT, TaskScheduler, TaskState


def _units(n):
    return [WorkUnit(source_url=f"https://www.temu.com/goods.html?goods_id={i}") for i in range(n)]


def test_batches_run_sequentially_with_bounded_concurrency(fake_browser):
    browser = fake_browser()
    events = []
    active = 0
    peak = 0

    async def handler(task, driver):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        events.append(("start", task.index))
        await asyncio.sleep(0.01 * (task.index % 2 + 1))
        events.append(("end", task.index))
        active -= 1
        return task.index

    scheduler = TaskScheduler(2, task_timeout=5)
    report = asyncio.run(scheduler.run(_units(5), browser.page_context, handler))

    assert peak == 2
    assert report.results() == [0, 1, 2, 3, 4]
    # Batch barrier: tasks 2 and 3 start only after 0 and 1 both ended.
    assert events.index(("start", 2)) > events.index(("end", 0))
    assert events.index(("start", 2)) > events.index(("end", 1))
    assert events.index(("start", 4)) > events.index(("end", 3))


def test_failures_are_isolated_and_classified(fake_browser):
    browser = fake_browser()

    async def handler(task, driver):
        if task.index == 0:
            raise DecoyDetected("app page")
        if task.index == 1:
            raise KeyError("boom")
        if task.index == 2:
            return None
        task.advance(TaskState.EXTRACTING)
        return "ok"

    report = asyncio.run(TaskScheduler(4).run(_units(4), browser.page_context, handler))

    assert [t.error for t in report.tasks] == ["decoy", "unexpected:KeyError", NO_RESULT, None]
    assert report.succeeded == 1
    assert report.failed == 3
    assert report.results() == ["ok"]
    assert [t.state for t in report.tasks] == [TaskState.FAILED] * 3 + [TaskState.DONE]


def test_contexts_released_on_every_path(fake_browser):
    browser = fake_browser()

    async def handler(task, driver):
        if task.index % 2:
            raise RuntimeError("fail")
        return task.index

    asyncio.run(TaskScheduler(3).run(_units(6), browser.page_context, handler))

    assert browser.open == 0
    assert len(browser.drivers) == 6
    assert all(driver.closed for driver in browser.drivers)


def test_task_timeout_records_stage(fake_browser):
    browser = fake_browser()

    async def handler(task, driver):
        task.advance(TaskState.NAVIGATING)
        await asyncio.sleep(10)

    report = asyncio.run(TaskScheduler(2, task_timeout=0.05).run(_units(1), browser.page_context, handler))

    task = report.tasks[0]
    assert task.error == TASK_TIMEOUT
    assert "navigating" in task.error_detail
    assert browser.open == 0


def test_progress_callback_per_batch(fake_browser):
    browser = fake_browser()
    calls = []

    async def handler(task, driver):
        return task.index

    scheduler = TaskScheduler(2, progress_callback=lambda done, total, report: calls.append((done, total)))
    asyncio.run(scheduler.run(_units(5), browser.page_context, handler))

    assert calls == [(2, 5), (4, 5), (5, 5)]


def test_empty_run(fake_browser):
    async def handler(task, driver):
        return 1

    report = asyncio.run(TaskScheduler(2).run([], fake_browser().page_context, handler))
    assert report.tasks == []
    assert report.succeeded == 0
