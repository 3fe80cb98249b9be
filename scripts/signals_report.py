import argparse
import json
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]
sys.path.append(str(BASE_DIR))

from runner import pipeline


def _format_group(name: str, total: int, needing: int) -> str:
    return f"{total:>7}  {needing:>8}  {name}"


def main() -> int:
    parser = argparse.ArgumentParser(description="Signal completeness and scraping report.")
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    payload = pipeline.signals_statistics()
    if not payload.get("success"):
        print(f"REPORT_FAILED error={payload.get('error')}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(payload, ensure_ascii=False))
        return 0

    processing = payload["processing"]
    scraping = payload["scraping"]
    print(f"total_signals={processing['total_signals']} retry_ceiling={scraping['retry_ceiling']}")
    for status, count in sorted(processing["content_completeness"].items()):
        print(f"  {status:<18} {count}")
    print(
        f"needing_scraping={scraping['signals_needing_scraping']} "
        f"over_retry_ceiling={scraping['signals_over_retry_ceiling']}"
    )
    print("signals  needing  feed_group")
    needing = scraping["needing_by_feed_group"]
    for name, total in sorted(processing["by_feed_group"].items()):
        print(_format_group(name, total, needing.get(name, 0)))
    if scraping["recent_scraping_activity"]:
        print("recent:")
        for row in scraping["recent_scraping_activity"]:
            print(
                f"  {(row.get('updated_at') or '-'):>32}  {row['processing_status']:<16} "
                f"attempts={row['scraping_attempts']}  {row['source_identifier']}"
            )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
