import asyncio
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from fake_source import FakeSource, broken, pipelinerun, succeeded  # noqa: E402
from prstatus.exceptions import ExpositionFailure  # noqa: E402
from prstatus.pipelineruns.models import EntityIdentity  # noqa: E402
from prstatus.pipelineruns.pull import PullCollector, records_from_listing  # noqa: E402


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def _names(records):
    return [record.identity.name for record in records]


def test_each_scrape_reflects_current_listing():
    source = FakeSource([
        pipelinerun("e1", conditions=[succeeded("True", "Succeeded")]),
        pipelinerun("e3", conditions=[succeeded("Unknown", "Running")]),
    ])
    collector = PullCollector(source)

    first = asyncio.run(collector.collect())
    source.delete(EntityIdentity("builds", "e3"))
    source.put(pipelinerun("e2", pending=True))
    second = asyncio.run(collector.collect())

    assert _names(first) == ["e1", "e3"]
    assert _names(second) == ["e1", "e2"]
    assert [record.status for record in second] == ["Succeeded", "Pending"]


def test_listing_failure_fails_the_scrape():
    source = FakeSource([pipelinerun("e1", pending=True)])
    source.fail_with = broken()
    collector = PullCollector(source)

    with pytest.raises(ExpositionFailure):
        asyncio.run(collector.collect())


def test_listing_timeout_fails_the_scrape():
    source = FakeSource([pipelinerun("e1", pending=True)])
    source.delay = 1.0
    collector = PullCollector(source, source_timeout=0.01)

    with pytest.raises(ExpositionFailure):
        asyncio.run(collector.collect())


def test_malformed_item_does_not_abort_listing():
    records, malformed = records_from_listing([
        pipelinerun("ok", pending=True),
        {"metadata": {"namespace": "builds", "name": "bad"}, "status": {"conditions": 3}},
        {"kind": "PipelineRun"},
        pipelinerun("also-ok", conditions=[succeeded("False", "Failed")]),
    ])

    assert _names(records) == ["also-ok", "ok"]
    assert malformed == 2


def test_terminating_runs_are_not_reported():
    records, _ = records_from_listing([pipelinerun("going", deleting=True), pipelinerun("staying")])
    assert _names(records) == ["staying"]


def test_cache_serves_within_max_age_then_relists():
    clock = FakeClock()
    source = FakeSource([pipelinerun("e1", pending=True)])
    collector = PullCollector(source, cache_max_age=5.0, clock=clock)

    async def scenario():
        first = await collector.collect()
        source.put(pipelinerun("e2", pending=True))
        clock.now += 4
        cached = await collector.collect()
        clock.now += 2
        fresh = await collector.collect()
        return first, cached, fresh

    first, cached, fresh = asyncio.run(scenario())
    assert _names(first) == _names(cached) == ["e1"]
    assert _names(fresh) == ["e1", "e2"]
    assert source.list_calls == 2


def test_expired_cache_is_not_served_when_relisting_fails():
    clock = FakeClock()
    source = FakeSource([pipelinerun("e1", pending=True)])
    collector = PullCollector(source, cache_max_age=5.0, clock=clock)

    async def scenario():
        await collector.collect()
        clock.now += 10
        source.fail_with = broken()
        with pytest.raises(ExpositionFailure):
            await collector.collect()

    asyncio.run(scenario())


def test_concurrent_scrapes_share_one_listing_when_cached():
    source = FakeSource([pipelinerun("e1", pending=True)])
    source.delay = 0.01
    collector = PullCollector(source, cache_max_age=30.0)

    async def scenario():
        return await asyncio.gather(*(collector.collect() for _ in range(5)))

    results = asyncio.run(scenario())
    assert all(_names(result) == ["e1"] for result in results)
    assert source.list_calls == 1


def test_without_cache_every_scrape_lists():
    source = FakeSource([pipelinerun("e1", pending=True)])
    collector = PullCollector(source)

    async def scenario():
        await asyncio.gather(*(collector.collect() for _ in range(3)))

    asyncio.run(scenario())
    assert source.list_calls == 3
