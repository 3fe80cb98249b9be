import sys
import time
from concurrent.futures import ThreadPoolExecutor

from runner.errors import ConfigError
from runner.ingest.models import (
    STATUS_COMPLETE,
    STATUS_ENGLISH_ONLY,
    STATUS_PARTIAL,
    RawItem,
    Signal,
    utc_now,
)
from runner.ingest.registry import FeedSource, SignalsConfig
from runner.ingest.sources import SourceAdapter, default_adapters
from runner.process.grouping import FingerprintStrategy, compute_status, group, merge_update

SIGNAL_WRITE_FIELDS = ("content", "processing_status", "updated_at")


class SignalsAggregator:
    """One pass over every enabled feed: fetch, group, merge, persist."""

    def __init__(
        self,
        config: SignalsConfig,
        store,
        adapters: dict[str, SourceAdapter] | None = None,
        strategy: FingerprintStrategy | None = None,
        clock=utc_now,
    ):
        self.config = config
        self.store = store
        self.adapters = adapters if adapters is not None else default_adapters()
        self.strategy = strategy or FingerprintStrategy()
        self.clock = clock

    def process_all_feeds(self) -> dict:
        started_ts = time.monotonic()
        feeds = self.config.enabled_feeds()
        if not feeds:
            raise ConfigError("no enabled feed sources")
        usable = [f for f in feeds if f.adapter in self.adapters]
        if not usable:
            raise ConfigError("no adapter configured for any enabled feed")
        print(f"AGGREGATE_START feeds={len(feeds)}")

        errors: list[str] = []
        for feed in feeds:
            if feed.adapter not in self.adapters:
                errors.append(f"Feed group {feed.feed_group}: unknown adapter {feed.adapter}")

        raw_items = self._fetch_all(usable, errors)
        updates = group(raw_items, self.config.feeds, self.strategy)
        print(f"AGGREGATE_GROUPED raw={len(raw_items)} signals={len(updates)}")

        stored = 0
        unchanged = 0
        for update in updates:
            try:
                feed = self.config.feed(update.feed_group)
                existing = self.store.find_signal(update.fingerprint)
                signal, changed = merge_update(existing, update, feed, self.clock())
                if not changed:
                    unchanged += 1
                    continue
                if not signal.languages:
                    errors.append(f"Signal {update.fingerprint}: no language content")
                    continue
                if existing is None:
                    self.store.insert_signal(signal)
                else:
                    self.store.update_signal(signal, SIGNAL_WRITE_FIELDS)
                stored += 1
                print(
                    f"AGGREGATE_STORED source_identifier={signal.source_identifier} "
                    f"langs={','.join(sorted(signal.languages))} status={signal.processing_status}"
                )
            except Exception as e:
                msg = f"Signal {update.fingerprint}: {e}"
                errors.append(msg)
                print(f"AGGREGATE_STORE_FAIL {msg}", file=sys.stderr)

        elapsed = int(time.monotonic() - started_ts)
        print(
            f"AGGREGATE_DONE processed={len(raw_items)} grouped={len(updates)} "
            f"stored={stored} unchanged={unchanged} errors={len(errors)} elapsed={elapsed}s"
        )
        return {
            "processed": len(raw_items),
            "grouped": len(updates),
            "stored": stored,
            "errors": errors,
        }

    def _fetch_feed(self, feed: FeedSource) -> list[RawItem]:
        return self.adapters[feed.adapter].fetch_raw_items(feed)

    def _fetch_all(self, feeds: list[FeedSource], errors: list[str]) -> list[RawItem]:
        # every feed settles before grouping; one failure never cancels siblings
        raw_items: list[RawItem] = []
        workers = max(1, min(self.config.feed_workers, len(feeds)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [(feed, pool.submit(self._fetch_feed, feed)) for feed in feeds]
            for feed, future in futures:
                try:
                    items = future.result()
                except Exception as e:
                    msg = f"Feed group {feed.feed_group}: {e}"
                    errors.append(msg)
                    print(f"AGGREGATE_FEED_FAIL {msg}", file=sys.stderr)
                    self.store.record_feed_fetch(feed.feed_group, False)
                    continue
                print(f"AGGREGATE_FEED_OK feed_group={feed.feed_group} items={len(items)}")
                self.store.record_feed_fetch(feed.feed_group, True)
                raw_items.extend(items)
        return raw_items

    def get_processing_statistics(self) -> dict:
        rows = self.store.signal_rows()
        stats = {
            "total_signals": len(rows),
            "by_status": {},
            "by_feed_group": {},
            "content_completeness": {
                STATUS_COMPLETE: 0,
                STATUS_PARTIAL: 0,
                STATUS_ENGLISH_ONLY: 0,
            },
            "over_retry_ceiling": 0,
        }
        for row in rows:
            status = row.get("processing_status") or STATUS_PARTIAL
            feed_group = row.get("feed_group") or "unknown"
            stats["by_status"][status] = stats["by_status"].get(status, 0) + 1
            stats["by_feed_group"][feed_group] = stats["by_feed_group"].get(feed_group, 0) + 1
            signal = Signal.from_row({**row, "source_identifier": row.get("source_identifier") or ""})
            computed = compute_status(signal, self.config.feed(signal.feed_group))
            stats["content_completeness"][computed] += 1
            if signal.retry_count > self.config.retry_ceiling:
                stats["over_retry_ceiling"] += 1
        return stats
