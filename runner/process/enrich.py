import sys
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from runner.errors import AdapterFetchError, ConfigError, PersistenceError, RetryCeilingExceeded
from runner.ingest.models import (
    INCOMPLETE_STATUSES,
    ScrapeAttemptResult,
    Signal,
    iso,
    utc_now,
)
from runner.ingest.registry import FeedSource, SignalsConfig
from runner.ingest.sources import SourceAdapter, default_adapters
from runner.process.grouping import compute_status, language_content, required_languages

ENRICH_WRITE_FIELDS = (
    "content",
    "processing_status",
    "scraping_attempts",
    "error_log",
    "updated_at",
)


class SignalsScraper:
    """Fills missing per-language bodies of stored signals from their known URLs."""

    def __init__(
        self,
        config: SignalsConfig,
        store,
        adapters: dict[str, SourceAdapter] | None = None,
        clock=utc_now,
        sleep=time.sleep,
    ):
        self.config = config
        self.store = store
        self.adapters = adapters if adapters is not None else default_adapters()
        self.clock = clock
        self.sleep = sleep

    def process_incomplete_signals(self, limit: int) -> dict:
        if limit < 1:
            raise ValueError("limit must be a positive integer")
        targets = self.store.query_signals(
            statuses=INCOMPLETE_STATUSES,
            max_retry=self.config.retry_ceiling,
            limit=limit,
            order_by="updated_at",
            desc=False,
        )
        if not targets:
            print("SCRAPE_NOTHING_TO_DO")
            return {"processed": 0, "updated": 0, "failed": 0, "results": []}
        print(f"SCRAPE_START targets={len(targets)} ceiling={self.config.retry_ceiling}")

        results: list[ScrapeAttemptResult] = []
        updated = 0
        failed = 0
        for i, target in enumerate(targets):
            if i and self.config.rate_limit_sec:
                self.sleep(self.config.rate_limit_sec)
            result = self._process(target, enforce_ceiling=True)
            results.append(result)
            if result.success:
                updated += 1
                print(
                    f"SCRAPE_OK source_identifier={result.source_identifier} "
                    f"langs={','.join(result.languages_processed) or '-'}"
                )
            else:
                failed += 1
                print(
                    f"SCRAPE_FAIL source_identifier={result.source_identifier} error={result.error}",
                    file=sys.stderr,
                )

        print(f"SCRAPE_DONE processed={len(results)} updated={updated} failed={failed}")
        return {"processed": len(results), "updated": updated, "failed": failed, "results": results}

    def process_single_signal_by_id(self, source_identifier: str) -> ScrapeAttemptResult:
        try:
            signal = self.store.find_signal(source_identifier)
        except PersistenceError as e:
            return ScrapeAttemptResult(source_identifier, False, error=str(e))
        if signal is None:
            return ScrapeAttemptResult(source_identifier, False, error="Signal not found")
        return self._process(signal, enforce_ceiling=False)

    def _adapter_for(self, signal: Signal) -> tuple[FeedSource, SourceAdapter]:
        feed = self.config.feed(signal.feed_group)
        if feed is None:
            raise ConfigError(f"No scraping configuration found for feed group: {signal.feed_group}")
        adapter = self.adapters.get(feed.adapter)
        if adapter is None:
            raise ConfigError(f"No adapter {feed.adapter} for feed group: {signal.feed_group}")
        return feed, adapter

    def _fetch_languages(self, urls: dict[str, str], languages: list[str], feed, adapter) -> dict:
        def fetch(lang):
            url = urls.get(lang)
            if not url:
                return AdapterFetchError(feed.feed_group, f"no article url known for {lang}")
            try:
                return adapter.fetch_content(url, lang, feed, min_body=self.config.min_body_chars)
            except Exception as e:
                return e

        if not languages:
            return {}
        with ThreadPoolExecutor(max_workers=len(languages)) as pool:
            futures = {lang: pool.submit(fetch, lang) for lang in languages}
            return {lang: future.result() for lang, future in futures.items()}

    def _process(self, target: Signal, enforce_ceiling: bool) -> ScrapeAttemptResult:
        key = target.source_identifier
        signal = target
        try:
            signal = self.store.find_signal(key) or target
            if enforce_ceiling and signal.retry_count > self.config.retry_ceiling:
                raise RetryCeilingExceeded(key, signal.retry_count, self.config.retry_ceiling)
            feed, adapter = self._adapter_for(signal)
            missing = [lang for lang in required_languages(signal, feed) if not signal.has_body(lang)]
            urls = feed.derive_language_urls(signal.meta_urls)
            outcomes = self._fetch_languages(urls, missing, feed, adapter)

            # status is recomputed once, after every language has settled
            now = self.clock()
            fresh = self.store.find_signal(key) or signal
            processed: list[str] = []
            failures: dict[str, str] = {}
            for lang in missing:
                outcome = outcomes[lang]
                if isinstance(outcome, Exception):
                    failures[lang] = str(outcome)
                    fresh.log_error(str(outcome), "content_scraping", lang)
                    continue
                if fresh.has_body(lang):
                    continue
                title, body = outcome
                current = fresh.languages.get(lang)
                fresh.meta_urls.setdefault(lang, urls[lang])
                fresh.languages[lang] = language_content(
                    title or (current.title if current else ""),
                    body,
                    (current.link if current and current.link else fresh.meta_urls[lang]),
                    now,
                )
                processed.append(lang)

            fresh.retry_count += len(failures)
            fresh.processing_status = compute_status(fresh, feed)
            fresh.updated_at = now
            self.store.update_signal(fresh, ENRICH_WRITE_FIELDS)
        except RetryCeilingExceeded as e:
            return ScrapeAttemptResult(key, False, error=str(e), details={"skipped": "retry_ceiling"})
        except Exception as e:
            self._record_failure(signal, e)
            return ScrapeAttemptResult(key, False, error=str(e))

        details = {
            "languages_attempted": missing,
            "languages_failed": sorted(failures),
            "retry_count": fresh.retry_count,
            "processing_status": fresh.processing_status,
        }
        if fresh.retry_count > self.config.retry_ceiling:
            details["retry_ceiling_exceeded"] = True
            print(f"SCRAPE_RETRY_CEILING source_identifier={key} retry_count={fresh.retry_count}")
        error = None
        if failures:
            error = "; ".join(f"{lang}: {msg}" for lang, msg in failures.items())
        success = bool(processed) or not failures
        if not success and not error:
            error = "No content could be scraped for any language"
        return ScrapeAttemptResult(key, success, processed, error, details)

    def _record_failure(self, signal: Signal, err: Exception) -> None:
        if isinstance(err, PersistenceError):
            return
        signal.retry_count += 1
        signal.log_error(str(err), "content_scraping")
        signal.updated_at = self.clock()
        try:
            self.store.update_signal(signal, ("scraping_attempts", "error_log", "updated_at"))
        except PersistenceError as e:
            print(f"SCRAPE_BOOKKEEPING_FAIL source_identifier={signal.source_identifier} error={e}", file=sys.stderr)

    def get_scraping_statistics(self) -> dict:
        ceiling = self.config.retry_ceiling
        rows = self.store.signal_rows("source_identifier,processing_status,feed_group,scraping_attempts")
        needing = 0
        over = 0
        by_feed_group: dict[str, int] = {}
        for row in rows:
            if row.get("processing_status") not in INCOMPLETE_STATUSES:
                continue
            if int(row.get("scraping_attempts") or 0) > ceiling:
                over += 1
                continue
            needing += 1
            group = row.get("feed_group") or "unknown"
            by_feed_group[group] = by_feed_group.get(group, 0) + 1

        recent = self.store.query_signals(
            updated_since=self.clock() - timedelta(hours=24),
            limit=10,
            order_by="updated_at",
            desc=True,
        )
        return {
            "retry_ceiling": ceiling,
            "signals_needing_scraping": needing,
            "signals_over_retry_ceiling": over,
            "needing_by_feed_group": by_feed_group,
            "recent_scraping_activity": [
                {
                    "source_identifier": s.source_identifier,
                    "processing_status": s.processing_status,
                    "scraping_attempts": s.retry_count,
                    "updated_at": iso(s.updated_at),
                }
                for s in recent
            ],
        }
