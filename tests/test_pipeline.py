from runner import pipeline
from runner.errors import ConfigError
from runner.ingest.registry import FeedSource, SignalsConfig
from runner.process.outlets import ScrapeProgress
from tests.fakes import FakeOutletAdapter, FakeSourceAdapter, MemorySignalStore, bilingual_config, outlet_registry, raw_item


def make_pipeline(items=None, outlets=None, config=None):
    outlets = outlets or {"a": FakeOutletAdapter(found=1, saved=1)}
    return pipeline.Pipeline(
        config=config or bilingual_config(),
        registry=outlet_registry(list(outlets)),
        store=MemorySignalStore(),
        signal_adapters={"rss": FakeSourceAdapter(items=items or {})},
        outlet_adapters=outlets,
        progress=ScrapeProgress(),
    )


def test_aggregate_then_enrich():
    p = make_pipeline({"td_press": [raw_item(body="Heavy rain expected.")]})
    agg = pipeline.aggregate_signals(p)
    assert agg["success"]
    assert agg["stored"] == 1

    enrich = pipeline.enrich_incomplete_signals(pipeline=p)
    assert enrich["success"]
    assert enrich["processed"] == 1
    assert enrich["failed"] == 1
    assert "no article url known for zh-Hant" in enrich["results"][0]["error"]


def test_configuration_error_becomes_failure_result():
    config = SignalsConfig(feeds={"off": FeedSource(feed_group="off", urls={"en": "u"}, enabled=False)})
    result = pipeline.aggregate_signals(make_pipeline(config=config))
    assert result["success"] is False
    assert result["stored"] == 0
    assert "no enabled feed sources" in result["error"]


def test_loader_failure_is_reported(monkeypatch):
    def broken():
        raise ConfigError("config file not found: feeds.json")

    monkeypatch.setattr(pipeline, "load_signals_config", broken)
    p = pipeline.Pipeline(store=MemorySignalStore())
    result = pipeline.enrich_incomplete_signals(pipeline=p)
    assert result["success"] is False
    assert "config file not found" in result["error"]


def test_enrich_signal_by_id_missing():
    result = pipeline.enrich_signal_by_id("nope", pipeline=make_pipeline())
    assert result["success"] is False
    assert result["error"] == "Signal not found"


def test_unknown_outlet_result():
    result = pipeline.run_outlet_scraper("nope", pipeline=make_pipeline())
    assert result == {"success": False, "outlet": "nope", "error": "Unknown outlet: nope"}


def test_run_all_outlets_summary():
    outlets = {"a": FakeOutletAdapter(found=2, saved=2), "b": FakeOutletAdapter(error=RuntimeError("down"))}
    p = make_pipeline(outlets=outlets)
    result = pipeline.run_all_outlet_scrapers(p)

    assert result["success"]
    assert result["succeeded"] == 1
    assert result["failed"] == 1
    assert result["results"]["b"]["error"] == "down"
    assert p.progress.snapshot()["a"]["status"] == "completed"


def test_statistics():
    p = make_pipeline({"td_press": [raw_item(body="Heavy rain expected.")]})
    pipeline.aggregate_signals(p)
    stats = pipeline.signals_statistics(p)
    assert stats["success"]
    assert stats["processing"]["total_signals"] == 1
    assert stats["scraping"]["signals_needing_scraping"] == 1
