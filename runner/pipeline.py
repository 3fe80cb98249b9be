"""Entry points invoked by scheduled triggers and the HTTP layer.

Each function returns a plain dict carrying ``success`` and, on failure, an
``error`` string. Nothing here raises to the caller.
"""

import sys
import traceback

from backend.db import SignalStore
from runner.errors import UnknownOutletError
from runner.ingest.registry import load_outlet_registry, load_signals_config
from runner.ingest.sources import default_adapters
from runner.process.aggregate import SignalsAggregator
from runner.process.enrich import SignalsScraper
from runner.process.outlets import ScrapeProgress, ScraperOrchestrator, build_outlet_adapters


class Pipeline:
    """Wires config, store and adapters together; everything is built on first use."""

    def __init__(
        self,
        config=None,
        registry=None,
        store=None,
        signal_adapters=None,
        outlet_adapters=None,
        progress: ScrapeProgress | None = None,
    ):
        self._config = config
        self._registry = registry
        self._store = store
        self._signal_adapters = signal_adapters
        self._outlet_adapters = outlet_adapters
        self.progress = progress or ScrapeProgress()

    @property
    def config(self):
        if self._config is None:
            self._config = load_signals_config()
        return self._config

    @property
    def registry(self):
        if self._registry is None:
            self._registry = load_outlet_registry()
        return self._registry

    @property
    def store(self):
        if self._store is None:
            self._store = SignalStore()
        return self._store

    @property
    def signal_adapters(self):
        if self._signal_adapters is None:
            self._signal_adapters = default_adapters()
        return self._signal_adapters

    @property
    def outlet_adapters(self):
        if self._outlet_adapters is None:
            self._outlet_adapters = build_outlet_adapters(self.registry, self.store)
        return self._outlet_adapters

    def aggregator(self) -> SignalsAggregator:
        return SignalsAggregator(self.config, self.store, self.signal_adapters)

    def scraper(self) -> SignalsScraper:
        return SignalsScraper(self.config, self.store, self.signal_adapters)

    def orchestrator(self) -> ScraperOrchestrator:
        return ScraperOrchestrator(self.registry, self.outlet_adapters, self.progress)


_default: Pipeline | None = None


def get_pipeline() -> Pipeline:
    global _default
    if _default is None:
        _default = Pipeline()
    return _default


def _failure(tag: str, err: Exception, **extra) -> dict:
    print(f"{tag} error={err}", file=sys.stderr)
    print(traceback.format_exc()[:4000], file=sys.stderr)
    return {"success": False, "error": str(err), **extra}


def aggregate_signals(pipeline: Pipeline | None = None) -> dict:
    pipeline = pipeline or get_pipeline()
    try:
        out = pipeline.aggregator().process_all_feeds()
    except Exception as e:
        return _failure("AGGREGATE_PASS_FAIL", e, processed=0, grouped=0, stored=0, errors=[str(e)])
    return {"success": True, **out}


def enrich_incomplete_signals(limit: int | None = None, pipeline: Pipeline | None = None) -> dict:
    pipeline = pipeline or get_pipeline()
    try:
        limit = limit if limit is not None else pipeline.config.enrich_limit
        out = pipeline.scraper().process_incomplete_signals(limit)
    except Exception as e:
        return _failure("ENRICH_PASS_FAIL", e, processed=0, updated=0, failed=0, results=[])
    return {
        "success": True,
        "processed": out["processed"],
        "updated": out["updated"],
        "failed": out["failed"],
        "results": [r.to_dict() for r in out["results"]],
    }


def enrich_signal_by_id(source_identifier: str, pipeline: Pipeline | None = None) -> dict:
    pipeline = pipeline or get_pipeline()
    try:
        result = pipeline.scraper().process_single_signal_by_id(source_identifier)
    except Exception as e:
        return _failure("ENRICH_SIGNAL_FAIL", e, source_identifier=source_identifier)
    return result.to_dict()


def run_outlet_scraper(outlet: str, pipeline: Pipeline | None = None) -> dict:
    pipeline = pipeline or get_pipeline()
    try:
        result = pipeline.orchestrator().run_single_scraper(outlet, track_progress=True)
    except UnknownOutletError as e:
        print(f"OUTLET_UNKNOWN outlet={outlet}", file=sys.stderr)
        return {"success": False, "outlet": outlet, "error": str(e)}
    except Exception as e:
        return _failure("OUTLET_RUN_FAIL", e, outlet=outlet)
    return result.to_dict()


def run_all_outlet_scrapers(pipeline: Pipeline | None = None) -> dict:
    pipeline = pipeline or get_pipeline()
    try:
        results = pipeline.orchestrator().run_all_scrapers(track_progress=True)
    except Exception as e:
        return _failure("OUTLETS_RUN_FAIL", e, results={})
    ok = sum(1 for r in results.values() if r.success)
    return {
        "success": True,
        "succeeded": ok,
        "failed": len(results) - ok,
        "results": {key: r.to_dict() for key, r in results.items()},
    }


def signals_statistics(pipeline: Pipeline | None = None) -> dict:
    pipeline = pipeline or get_pipeline()
    try:
        processing = pipeline.aggregator().get_processing_statistics()
        scraping = pipeline.scraper().get_scraping_statistics()
    except Exception as e:
        return _failure("SIGNALS_STATS_FAIL", e)
    return {"success": True, "processing": processing, "scraping": scraping}


def outlet_statistics(pipeline: Pipeline | None = None) -> dict:
    pipeline = pipeline or get_pipeline()
    try:
        counts = pipeline.store.article_counts_by_source()
    except Exception as e:
        return _failure("OUTLET_STATS_FAIL", e)
    return {
        "success": True,
        "articles_last_7d": counts,
        "total": sum(counts.values()),
        "progress": pipeline.progress.snapshot(),
    }
