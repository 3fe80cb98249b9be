import os
import random
import time
from datetime import datetime, timezone, timedelta

import httpx
from dotenv import load_dotenv
from supabase import create_client as _create_client

from runner.errors import PersistenceError
from runner.ingest.models import Signal, iso, utc_now

_ENV_PATH = os.path.join(os.path.dirname(__file__), ".env")
load_dotenv(_ENV_PATH)

_sb = None

SIGNALS_TABLE = "government_signals"
FEED_SOURCES_TABLE = "government_feed_sources"
ARTICLES_TABLE = "articles"
PAGE_SIZE = 1000


def create_client(url: str | None = None, key: str | None = None):
    url = url or os.getenv("SUPABASE_URL")
    key = key or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_KEY")
    if not url or not key:
        missing = []
        if not url:
            missing.append("SUPABASE_URL")
        if not key:
            missing.append("SUPABASE_SERVICE_ROLE_KEY or SUPABASE_KEY")
        raise RuntimeError(f"Missing {', '.join(missing)}")
    return _create_client(url, key)


def get_client():
    global _sb
    if _sb:
        return _sb

    _sb = create_client()
    return _sb


def _is_transient_run_row_error(err: Exception) -> bool:
    if isinstance(err, (httpx.ConnectError, httpx.ReadError, httpx.RemoteProtocolError)):
        return True
    msg = str(err)
    transient_markers = [
        "UNEXPECTED_EOF_WHILE_READING",
        "SSL",
        "Connection reset",
        "Broken pipe",
        "timeout",
    ]
    return any(m in msg for m in transient_markers)


def _run_row_retry(fn, *args, **kwargs):
    delays = [1, 2, 4]
    for i, delay in enumerate(delays, start=1):
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            if not _is_transient_run_row_error(e) or i == len(delays):
                raise
            jitter = random.uniform(0, 0.2)
            print(f"RUN_ROW_RETRY attempt={i} error={str(e)[:200]}")
            time.sleep(delay + jitter)


def start_ingest_run(sb, job_name: str) -> str | None:
    try:
        res = _run_row_retry(
            lambda: sb.table("ingest_runs").insert({"job_name": job_name}).execute()
        )
        return res.data[0]["id"]
    except Exception:
        print("RUN_ROW_UNAVAILABLE proceeding_without_run_row=1")
        return None


def finish_ingest_run(
    sb, run_id: str | None, ok: bool, stats: dict, error: str | None = None
):
    if not run_id:
        return
    payload = {
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "ok": ok,
        "stats": stats or {},
        "error": error,
    }
    try:
        _run_row_retry(
            lambda: sb.table("ingest_runs").update(payload).eq("id", run_id).execute()
        )
    except Exception as e:
        if _is_transient_run_row_error(e):
            print("RUN_ROW_UNAVAILABLE finish_failed=1")
        else:
            print(f"RUN_ROW_UNAVAILABLE finish_failed=1 error={str(e)[:200]}")


class SignalStore:
    """Supabase-backed persistence for signals, feed health and outlet articles.

    Every call wraps client failures in :class:`PersistenceError`. Signal
    writes are column-scoped: :meth:`update_signal` only sends the named
    fields so concurrent writers of other columns are left alone.
    """

    def __init__(self, sb=None):
        self._sb = sb

    @property
    def sb(self):
        if self._sb is None:
            self._sb = get_client()
        return self._sb

    def _run(self, operation: str, build):
        try:
            return _run_row_retry(lambda: build().execute())
        except Exception as e:
            raise PersistenceError(operation, str(e)[:300]) from e

    # signals

    def find_signal(self, source_identifier: str) -> Signal | None:
        res = self._run(
            "find_signal",
            lambda: self.sb.table(SIGNALS_TABLE)
            .select("*")
            .eq("source_identifier", source_identifier)
            .limit(1),
        )
        if not res.data:
            return None
        return Signal.from_row(res.data[0])

    def insert_signal(self, signal: Signal) -> None:
        if not signal.languages:
            raise PersistenceError("insert_signal", f"{signal.source_identifier} has no languages")
        row = signal.to_row()
        self._run(
            "insert_signal",
            lambda: self.sb.table(SIGNALS_TABLE).upsert(row, on_conflict="source_identifier"),
        )

    def update_signal(self, signal: Signal, fields: tuple[str, ...]) -> None:
        row = signal.to_row()
        payload = {f: row[f] for f in fields}
        self._run(
            "update_signal",
            lambda: self.sb.table(SIGNALS_TABLE)
            .update(payload)
            .eq("source_identifier", signal.source_identifier),
        )

    def query_signals(
        self,
        statuses: tuple[str, ...] | None = None,
        feed_group: str | None = None,
        max_retry: int | None = None,
        min_retry: int | None = None,
        updated_since: datetime | None = None,
        limit: int | None = None,
        order_by: str = "updated_at",
        desc: bool = False,
    ) -> list[Signal]:
        def build():
            q = self.sb.table(SIGNALS_TABLE).select("*")
            if statuses:
                q = q.in_("processing_status", list(statuses))
            if feed_group:
                q = q.eq("feed_group", feed_group)
            if max_retry is not None:
                q = q.lte("scraping_attempts", max_retry)
            if min_retry is not None:
                q = q.gte("scraping_attempts", min_retry)
            if updated_since is not None:
                q = q.gte("updated_at", iso(updated_since))
            q = q.order(order_by, desc=desc)
            if limit:
                q = q.limit(limit)
            return q

        res = self._run("query_signals", build)
        return [Signal.from_row(row) for row in res.data or []]

    def signal_rows(self, columns: str = "processing_status,feed_group,scraping_attempts,content") -> list[dict]:
        rows: list[dict] = []
        start = 0
        while True:
            res = self._run(
                "signal_rows",
                lambda: self.sb.table(SIGNALS_TABLE)
                .select(columns)
                .range(start, start + PAGE_SIZE - 1),
            )
            batch = res.data or []
            rows.extend(batch)
            if len(batch) < PAGE_SIZE:
                return rows
            start += PAGE_SIZE

    # feed health

    def record_feed_fetch(self, feed_group: str, ok: bool) -> None:
        now = iso(utc_now())
        try:
            if ok:
                payload = {
                    "last_successful_fetch": now,
                    "last_fetch_attempt": now,
                    "fetch_error_count": 0,
                }
            else:
                res = self._run(
                    "record_feed_fetch",
                    lambda: self.sb.table(FEED_SOURCES_TABLE)
                    .select("fetch_error_count")
                    .eq("feed_group", feed_group)
                    .limit(1),
                )
                count = 0
                if res.data:
                    count = int(res.data[0].get("fetch_error_count") or 0)
                payload = {"last_fetch_attempt": now, "fetch_error_count": count + 1}
            self._run(
                "record_feed_fetch",
                lambda: self.sb.table(FEED_SOURCES_TABLE).update(payload).eq("feed_group", feed_group),
            )
        except PersistenceError as e:
            print(f"FEED_HEALTH_UNAVAILABLE feed_group={feed_group} error={e}")

    # outlet articles

    def find_article_by_url(self, url: str) -> dict | None:
        res = self._run(
            "find_article",
            lambda: self.sb.table(ARTICLES_TABLE).select("id,title,created_at").eq("url", url).limit(1),
        )
        return res.data[0] if res.data else None

    def save_article(self, article: dict) -> bool:
        """Insert into ``articles``; False when the URL is already stored."""
        url = article.get("url")
        if not url:
            raise ValueError("Article missing url")
        if self.find_article_by_url(url):
            return False
        row = dict(article)
        row.setdefault("created_at", iso(utc_now()))
        self._run("save_article", lambda: self.sb.table(ARTICLES_TABLE).insert(row))
        return True

    def article_counts_by_source(self, since: datetime | None = None) -> dict[str, int]:
        since = since or utc_now() - timedelta(days=7)
        res = self._run(
            "article_counts",
            lambda: self.sb.table(ARTICLES_TABLE)
            .select("source,created_at")
            .gte("created_at", iso(since))
            .order("created_at", desc=True),
        )
        counts: dict[str, int] = {}
        for row in res.data or []:
            source = row.get("source") or "unknown"
            counts[source] = counts.get(source, 0) + 1
        return counts
