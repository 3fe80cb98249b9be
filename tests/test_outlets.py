import time

import pytest

from runner.errors import AdapterFetchError, UnknownOutletError
from runner.ingest.registry import OutletConfig, OutletRegistry
from runner.process.outlets import FeedOutletAdapter, ScrapeProgress, ScraperOrchestrator
from tests.fakes import FakeOutletAdapter, MemorySignalStore, outlet_registry

OUTLET_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"><channel><title>HKFP</title>
<item><title>Legco passes budget</title><link>https://hkfp.example/2024/06/01/budget/</link>
<pubDate>Sat, 01 Jun 2024 08:00:00 GMT</pubDate></item>
<item><title>MTR delays on Island line</title><link>https://hkfp.example/2024/06/01/mtr/</link></item>
</channel></rss>
"""

HOME = """<html><body>
<a href="/realtime/article/1/">A headline long enough to count</a>
<a href="/realtime/article/1/">A headline long enough to count</a>
<a href="/realtime/article/2/">Short</a>
<a href="/about/">About this newspaper and its staff</a>
</body></html>"""


def article_html(text):
    return f"<html><h1>{text}</h1><article><p>{text} in full detail for readers.</p></article></html>"


def fetch_from(pages):
    def fetch(url, headers=None):
        if url in pages:
            return pages[url], None
        return None, "request_error:HTTP404"

    return fetch


def test_one_failing_outlet_does_not_affect_others():
    registry = outlet_registry(["a", "b"])
    adapters = {"a": FakeOutletAdapter(found=3, saved=2), "b": FakeOutletAdapter(error=RuntimeError("boom"))}
    results = ScraperOrchestrator(registry, adapters).run_all_scrapers()

    assert results["a"].success
    assert results["a"].articles_found == 3
    assert results["a"].articles_saved == 2
    assert not results["b"].success
    assert results["b"].error == "boom"


def test_unknown_outlet():
    orchestrator = ScraperOrchestrator(outlet_registry(["a"]), {"a": FakeOutletAdapter()})
    with pytest.raises(UnknownOutletError) as exc:
        orchestrator.run_single_scraper("nope")
    assert str(exc.value) == "Unknown outlet: nope"


def test_single_scraper_normalizes_errors_and_tracks_progress():
    progress = ScrapeProgress()
    orchestrator = ScraperOrchestrator(
        outlet_registry(["a"]), {"a": FakeOutletAdapter(error=ValueError("bad page"))}, progress
    )
    result = orchestrator.run_single_scraper("a", track_progress=True)

    assert not result.success
    assert result.duration_ms >= 0
    snap = progress.snapshot()["a"]
    assert snap["status"] == "error"
    assert snap["message"] == "Error: bad page"


def test_slow_outlet_times_out_without_blocking_others():
    registry = OutletRegistry(
        outlets={
            "fast": OutletConfig(key="fast", name="Fast", timeout_sec=5),
            "slow": OutletConfig(key="slow", name="Slow", timeout_sec=0),
        },
        workers=2,
    )
    adapters = {"fast": FakeOutletAdapter(found=1, saved=1), "slow": FakeOutletAdapter(delay=0.5)}
    results = ScraperOrchestrator(registry, adapters).run_all_scrapers()

    assert results["fast"].success
    assert not results["slow"].success
    assert "timeout" in results["slow"].error


def test_queued_outlet_timeout_starts_when_it_runs():
    registry = OutletRegistry(
        outlets={
            "slow": OutletConfig(key="slow", name="Slow", timeout_sec=2),
            "fast": OutletConfig(key="fast", name="Fast", timeout_sec=1),
        },
        workers=1,
    )
    adapters = {"slow": FakeOutletAdapter(found=1, saved=1, delay=1.2), "fast": FakeOutletAdapter(found=2, saved=2)}
    results = ScraperOrchestrator(registry, adapters).run_all_scrapers()

    assert results["slow"].success
    assert results["fast"].success
    assert results["fast"].articles_saved == 2
    assert adapters["fast"].calls == 1


def test_timed_out_outlet_progress_is_not_overwritten_by_late_finish():
    registry = OutletRegistry(
        outlets={
            "fast": OutletConfig(key="fast", name="Fast", timeout_sec=5),
            "slow": OutletConfig(key="slow", name="Slow", timeout_sec=0),
        },
        workers=2,
    )
    progress = ScrapeProgress()
    adapters = {"fast": FakeOutletAdapter(found=1, saved=1), "slow": FakeOutletAdapter(found=3, saved=3, delay=0.3)}
    results = ScraperOrchestrator(registry, adapters, progress).run_all_scrapers(track_progress=True)
    assert not results["slow"].success

    time.sleep(0.6)
    assert adapters["slow"].calls == 1
    snap = progress.snapshot()
    assert snap["slow"]["status"] == "error"
    assert snap["slow"]["message"] == "timeout after 0s"
    assert snap["fast"]["status"] == "completed"


def test_progress_drops_updates_from_a_stale_run():
    progress = ScrapeProgress()
    run = progress.begin("a", status="running")
    progress.abandon("a", status="error")
    assert not progress.update("a", run, status="completed")
    assert progress.snapshot()["a"]["status"] == "error"
    assert progress.update("a", status="pending")


def test_disabled_outlets_are_skipped():
    registry = outlet_registry(["a", "b"])
    registry.outlets["b"].enabled = False
    adapters = {"a": FakeOutletAdapter(), "b": FakeOutletAdapter()}
    results = ScraperOrchestrator(registry, adapters).run_all_scrapers()
    assert list(results) == ["a"]
    assert adapters["b"].calls == 0


def test_feed_outlet_adapter_saves_and_dedupes():
    outlet = OutletConfig(key="hkfp", name="HKFP", category="Politics", feeds=["https://hkfp.example/feed/"])
    pages = {
        "https://hkfp.example/feed/": OUTLET_RSS,
        "https://hkfp.example/2024/06/01/budget/": article_html("Budget passed"),
    }
    store = MemorySignalStore()
    adapter = FeedOutletAdapter(outlet, store, fetch_from(pages))

    assert adapter.fetch_and_save() == {"articles_found": 2, "articles_saved": 2}
    budget = store.find_article_by_url("https://hkfp.example/2024/06/01/budget/")
    assert budget["title"] == "Budget passed"
    assert budget["content"] == "Budget passed in full detail for readers."
    assert budget["category"] == "Politics"
    assert budget["source"] == "HKFP"
    assert store.find_article_by_url("https://hkfp.example/2024/06/01/mtr/")["content"] == ""

    assert adapter.fetch_and_save() == {"articles_found": 2, "articles_saved": 0}


def test_feed_outlet_adapter_falls_back_to_home_page():
    outlet = OutletConfig(
        key="singtao", name="SingTao", home_url="https://st.example/realtime/", link_pattern="/realtime/article/"
    )
    store = MemorySignalStore()
    adapter = FeedOutletAdapter(outlet, store, fetch_from({"https://st.example/realtime/": HOME}))
    assert adapter.fetch_and_save() == {"articles_found": 1, "articles_saved": 1}
    assert store.articles[0]["url"] == "https://st.example/realtime/article/1/"


def test_feed_outlet_adapter_raises_when_unreachable():
    outlet = OutletConfig(key="x", name="X", feeds=["https://x.example/feed"])
    with pytest.raises(AdapterFetchError) as exc:
        FeedOutletAdapter(outlet, MemorySignalStore(), fetch_from({})).fetch_and_save()
    assert "request_error:HTTP404" in str(exc.value)
