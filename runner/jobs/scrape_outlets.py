import argparse
import json

from backend.db import finish_ingest_run, get_client, start_ingest_run
from runner import pipeline


def main() -> int:
    parser = argparse.ArgumentParser(description="Scrape news outlets into the articles table.")
    parser.add_argument("outlets", nargs="*", help="outlet keys (default: every enabled outlet)")
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    sb = get_client()
    run_id = start_ingest_run(sb, "scrape_outlets")
    if args.outlets:
        results = {key: pipeline.run_outlet_scraper(key) for key in args.outlets}
        ok = all(r.get("success") for r in results.values())
        result = {"success": ok, "results": results}
    else:
        result = pipeline.run_all_outlet_scrapers()
        ok = bool(result.get("success")) and not result.get("failed")

    by_outlet = {
        key: {"found": r.get("articles_found", 0), "saved": r.get("articles_saved", 0), "error": r.get("error")}
        for key, r in (result.get("results") or {}).items()
    }
    finish_ingest_run(sb, run_id, ok, {"by_outlet": by_outlet}, error=result.get("error"))
    for key, row in by_outlet.items():
        print(f"OUTLET_SUMMARY outlet={key} found={row['found']} saved={row['saved']} error={row['error'] or '-'}")
    if args.json:
        print(json.dumps(result, ensure_ascii=False, default=str))
    return 0 if ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
