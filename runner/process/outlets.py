import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from urllib.parse import urljoin

import feedparser
from bs4 import BeautifulSoup

from runner.errors import AdapterFetchError, UnknownOutletError
from runner.ingest.extract import HEADERS, clean_feed_text, extract_by_selectors, fetch_url
from runner.ingest.models import OutletScrapeResult, iso, utc_now
from runner.ingest.registry import OutletConfig, OutletRegistry
from runner.ingest.sources import struct_to_dt


class ScrapeProgress:
    """In-memory per-outlet progress board, readable while scrapers run.

    Each run of an outlet holds a token from ``begin``; once the orchestrator
    abandons an outlet, updates carrying an older token are dropped.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._state: dict[str, dict] = {}
        self._runs: dict[str, int] = {}

    def reset(self, outlets: list[str]) -> None:
        with self._lock:
            self._state = {
                key: {"status": "pending", "progress": 0, "message": "Waiting...", "articles_found": 0}
                for key in outlets
            }

    def begin(self, outlet: str, **fields) -> int:
        with self._lock:
            run = self._runs.get(outlet, 0) + 1
            self._runs[outlet] = run
            self._state.setdefault(outlet, {}).update(fields)
            return run

    def update(self, outlet: str, run: int | None = None, **fields) -> bool:
        with self._lock:
            if run is not None and self._runs.get(outlet) != run:
                return False
            self._state.setdefault(outlet, {}).update(fields)
            return True

    def abandon(self, outlet: str, **fields) -> None:
        with self._lock:
            self._runs[outlet] = self._runs.get(outlet, 0) + 1
            self._state.setdefault(outlet, {}).update(fields)

    def snapshot(self) -> dict[str, dict]:
        with self._lock:
            return {key: dict(val) for key, val in self._state.items()}


class OutletAdapter:
    def fetch_and_save(self) -> dict:
        """Return ``{"articles_found": int, "articles_saved": int}``."""
        raise NotImplementedError


class FeedOutletAdapter(OutletAdapter):
    """Headline ladder (RSS feeds, then home-page links) plus per-article body fetch."""

    def __init__(self, outlet: OutletConfig, store, fetch=fetch_url):
        self.outlet = outlet
        self.store = store
        self.fetch = fetch

    def _from_feeds(self, errors: list[str]) -> list[dict]:
        for url in self.outlet.feeds:
            text, err = self.fetch(url, HEADERS)
            if err:
                errors.append(f"{url}:{err}")
                continue
            parsed = feedparser.parse(text or "")
            headlines = []
            for entry in parsed.entries[: self.outlet.max_items]:
                link = entry.get("link")
                title = clean_feed_text(entry.get("title"))
                if not link or not title:
                    continue
                published = struct_to_dt(entry.get("published_parsed"))
                headlines.append({"title": title, "url": link, "published_at": iso(published)})
            if headlines:
                return headlines
        return []

    def _from_home(self, errors: list[str]) -> list[dict]:
        if not self.outlet.home_url:
            return []
        text, err = self.fetch(self.outlet.home_url, HEADERS)
        if err:
            errors.append(f"{self.outlet.home_url}:{err}")
            return []
        soup = BeautifulSoup(text or "", "html.parser")
        pattern = self.outlet.link_pattern or "/"
        seen = set()
        headlines = []
        for a in soup.find_all("a", href=True):
            href = a["href"]
            title = " ".join(a.get_text(separator=" ").split())
            if pattern not in href or len(title) <= 15:
                continue
            url = urljoin(self.outlet.home_url, href)
            if url in seen:
                continue
            seen.add(url)
            headlines.append({"title": title, "url": url, "published_at": None})
            if len(headlines) >= self.outlet.max_items:
                break
        return headlines

    def fetch_and_save(self) -> dict:
        errors: list[str] = []
        headlines = self._from_feeds(errors) or self._from_home(errors)
        if not headlines:
            if errors:
                raise AdapterFetchError(self.outlet.key, "; ".join(errors))
            return {"articles_found": 0, "articles_saved": 0}

        saved = 0
        for item in headlines:
            html, err = self.fetch(item["url"], HEADERS)
            content = ""
            title = item["title"]
            if not err:
                page_title, content = extract_by_selectors(
                    html or "", self.outlet.title_selectors, self.outlet.body_selectors
                )
                title = page_title or title
            article = {
                "title": title,
                "content": content,
                "url": item["url"],
                "source": self.outlet.name,
                "category": self.outlet.category,
                "published_at": item["published_at"] or iso(utc_now()),
            }
            try:
                if self.store.save_article(article):
                    saved += 1
            except Exception as e:
                print(f"OUTLET_SAVE_FAIL outlet={self.outlet.key} url={item['url']} error={e}", file=sys.stderr)
        return {"articles_found": len(headlines), "articles_saved": saved}


def build_outlet_adapters(registry: OutletRegistry, store, fetch=fetch_url) -> dict[str, OutletAdapter]:
    return {key: FeedOutletAdapter(cfg, store, fetch) for key, cfg in registry.outlets.items()}


class ScraperOrchestrator:
    def __init__(
        self,
        registry: OutletRegistry,
        adapters: dict[str, OutletAdapter],
        progress: ScrapeProgress | None = None,
    ):
        self.registry = registry
        self.adapters = adapters
        self.progress = progress or ScrapeProgress()

    def run_single_scraper(
        self, outlet: str, track_progress: bool = False, run: int | None = None
    ) -> OutletScrapeResult:
        cfg = self.registry.get(outlet)
        adapter = self.adapters.get(outlet)
        if cfg is None or adapter is None:
            raise UnknownOutletError(outlet)

        if track_progress:
            running = {
                "status": "running",
                "progress": 10,
                "message": f"Starting {cfg.name} scraper...",
                "start_time": iso(utc_now()),
            }
            if run is None:
                run = self.progress.begin(outlet, **running)
            else:
                self.progress.update(outlet, run, **running)
        print(f"OUTLET_START outlet={outlet}")
        started = time.monotonic()
        try:
            out = adapter.fetch_and_save()
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            print(f"OUTLET_FAIL outlet={outlet} error={e} duration_ms={duration_ms}", file=sys.stderr)
            if track_progress:
                self.progress.update(
                    outlet, run, status="error", progress=0, message=f"Error: {e}",
                    error=str(e), end_time=iso(utc_now()),
                )
            return OutletScrapeResult(outlet, duration_ms=duration_ms, success=False, error=str(e))

        duration_ms = int((time.monotonic() - started) * 1000)
        found = int(out.get("articles_found") or 0)
        saved = int(out.get("articles_saved") or 0)
        print(f"OUTLET_DONE outlet={outlet} found={found} saved={saved} duration_ms={duration_ms}")
        if track_progress:
            self.progress.update(
                outlet, run, status="completed", progress=100, articles_found=found,
                message=f"Completed: {saved}/{found} saved", end_time=iso(utc_now()),
            )
        return OutletScrapeResult(outlet, found, saved, duration_ms, True)

    def run_all_scrapers(self, track_progress: bool = False) -> dict[str, OutletScrapeResult]:
        keys = [k for k in self.registry.keys() if k in self.adapters]
        runs: dict[str, int] = {}
        if track_progress:
            self.progress.reset(keys)
            runs = {key: self.progress.begin(key) for key in keys}
        results: dict[str, OutletScrapeResult] = {}
        if not keys:
            return results

        timeouts = {key: self.registry.get(key).timeout_sec for key in keys}
        start_times: dict[str, float] = {}
        started = {key: threading.Event() for key in keys}

        def timed(key):
            start_times[key] = time.monotonic()
            started[key].set()
            return self.run_single_scraper(key, track_progress, runs.get(key))

        # each outlet's timeout runs from its own start, not from submission
        queue_deadline = time.monotonic() + sum(timeouts.values())
        pool = ThreadPoolExecutor(max_workers=max(1, min(self.registry.workers, len(keys))))
        try:
            futures = {key: pool.submit(timed, key) for key in keys}
            for key, future in futures.items():
                timeout_sec = timeouts[key]
                try:
                    if not started[key].wait(max(0.0, queue_deadline - time.monotonic())):
                        future.cancel()
                        raise FutureTimeout()
                    remaining = max(0.0, start_times[key] + timeout_sec - time.monotonic())
                    results[key] = future.result(timeout=remaining)
                except FutureTimeout:
                    # a running worker is abandoned, not cancelled: its thread finishes on its own
                    msg = f"timeout after {timeout_sec}s"
                    print(f"OUTLET_TIMEOUT outlet={key} timeout_sec={timeout_sec}", file=sys.stderr)
                    if track_progress:
                        self.progress.abandon(
                            key, status="error", progress=0, message=msg, error=msg, end_time=iso(utc_now()),
                        )
                    begun = start_times.get(key)
                    duration_ms = int((time.monotonic() - begun) * 1000) if begun is not None else 0
                    results[key] = OutletScrapeResult(key, duration_ms=duration_ms, success=False, error=msg)
                except Exception as e:
                    results[key] = OutletScrapeResult(key, success=False, error=str(e))
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        ok = sum(1 for r in results.values() if r.success)
        print(f"OUTLETS_DONE outlets={len(results)} ok={ok} failed={len(results) - ok}")
        return results
