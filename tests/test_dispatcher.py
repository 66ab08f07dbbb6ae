import asyncio

import services.dispatcher as dispatcher
from _testutil import record


def _patch_updaters(monkeypatch):
    calls = []

    async def fake_standard(items, config, session=None):
        calls.append(("standard", [r.sales_document_item for r in items]))

    async def fake_free(items, config, session=None):
        calls.append(("free", [r.sales_document_item for r in items]))

    monkeypatch.setattr(dispatcher, "send_standard_order_updates", fake_standard)
    monkeypatch.setattr(dispatcher, "send_free_of_charge_order_updates", fake_free)
    return calls


def test_routes_on_first_record_category(monkeypatch, job_config):
    calls = _patch_updaters(monkeypatch)
    groups = {
        "A": [record("A", "10", category="C"), record("A", "20", category="C")],
        "B": [record("B", "10", category="I")],
        "C": [record("C", "10", category="CS")],
    }

    async def scenario():
        tasks = dispatcher.dispatch_orders(groups, job_config)
        await asyncio.gather(*tasks)
        return tasks

    tasks = asyncio.run(scenario())

    assert len(tasks) == 3
    assert sorted(calls) == [("free", ["10"]), ("free", ["10"]), ("standard", ["10", "20"])]


def test_empty_groups_are_skipped(monkeypatch, job_config):
    calls = _patch_updaters(monkeypatch)

    async def scenario():
        tasks = dispatcher.dispatch_orders({"A": [], "B": [record("B", "10")]}, job_config)
        await asyncio.gather(*tasks)
        return tasks

    tasks = asyncio.run(scenario())

    assert len(tasks) == 1
    assert calls == [("standard", ["10"])]


def test_dispatch_does_not_wait_for_updates(monkeypatch, job_config):
    started = []
    release = None

    async def slow_update(items, config, session=None):
        started.append(items[0].sales_document)
        await release.wait()

    monkeypatch.setattr(dispatcher, "send_standard_order_updates", slow_update)

    async def scenario():
        nonlocal release
        release = asyncio.Event()
        tasks = dispatcher.dispatch_orders({"A": [record("A", "10")], "B": [record("B", "10")]}, job_config)
        pending_after_dispatch = [t.done() for t in tasks]
        await asyncio.sleep(0)
        both_started = sorted(started)
        release.set()
        await asyncio.gather(*tasks)
        return pending_after_dispatch, both_started

    pending, both_started = asyncio.run(scenario())

    assert pending == [False, False]
    assert both_started == ["A", "B"]


def test_one_failing_group_does_not_affect_others(monkeypatch, job_config):
    done = []

    async def flaky(items, config, session=None):
        if items[0].sales_document == "BAD":
            raise RuntimeError("boom")
        done.append(items[0].sales_document)

    monkeypatch.setattr(dispatcher, "send_standard_order_updates", flaky)

    async def scenario():
        tasks = dispatcher.dispatch_orders(
            {"BAD": [record("BAD", "10")], "OK": [record("OK", "10")]}, job_config
        )
        return await asyncio.gather(*tasks, return_exceptions=True)

    results = asyncio.run(scenario())

    assert isinstance(results[0], RuntimeError)
    assert done == ["OK"]
