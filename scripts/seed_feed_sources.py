import argparse
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]
sys.path.append(str(BASE_DIR))

from backend.db import FEED_SOURCES_TABLE, get_client
from runner.errors import ConfigError
from runner.ingest.registry import FEEDS_PATH, FeedSource, load_signals_config


def feed_row(feed: FeedSource) -> dict:
    return {
        "feed_group": feed.feed_group,
        "department": feed.department,
        "category": feed.category,
        "adapter": feed.adapter,
        "urls": dict(feed.urls),
        "required_languages": list(feed.required_languages),
        "merge_family": feed.merge_family,
        "is_active": feed.enabled,
        "scraping_config": {
            "english_only": feed.english_only,
            "notice_id_regex": feed.notice_id_regex,
            "language_url_map": dict(feed.language_url_map),
            "content_selectors": {"title": feed.title_selectors, "body": feed.body_selectors},
        },
    }


def chunked(rows: list[dict], size: int = 100):
    for i in range(0, len(rows), size):
        yield rows[i : i + size]


def main() -> int:
    parser = argparse.ArgumentParser(description="Upsert feed sources into government_feed_sources.")
    parser.add_argument("--feeds", help=f"Path to feed config (default {FEEDS_PATH.name})")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    try:
        config = load_signals_config(Path(args.feeds) if args.feeds else None)
    except ConfigError as e:
        print(f"SEED_CONFIG_ERROR {e}", file=sys.stderr)
        return 2

    rows = [feed_row(feed) for feed in config.feeds.values()]
    if not rows:
        print("No feed sources to seed.")
        return 0
    if args.dry_run:
        for row in rows:
            print(f"{row['feed_group']:<24} {row['adapter']:<8} active={row['is_active']} langs={','.join(row['urls'])}")
        return 0

    sb = get_client()
    seeded = 0
    for batch in chunked(rows):
        sb.table(FEED_SOURCES_TABLE).upsert(batch, on_conflict="feed_group").execute()
        seeded += len(batch)

    print(f"Seeded/updated {seeded} feed sources.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
