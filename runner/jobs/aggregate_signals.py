import argparse
import json

from backend.db import finish_ingest_run, get_client, start_ingest_run
from runner import pipeline


def main() -> int:
    parser = argparse.ArgumentParser(description="Fetch every enabled feed and merge items into signals.")
    parser.add_argument("--json", action="store_true", help="print the result as JSON")
    args = parser.parse_args()

    sb = get_client()
    run_id = start_ingest_run(sb, "aggregate_signals")
    try:
        result = pipeline.aggregate_signals()
    except KeyboardInterrupt:
        finish_ingest_run(sb, run_id, False, {"aborted": True}, error="KeyboardInterrupt")
        return 130

    stats = {k: v for k, v in result.items() if k not in {"success", "error"}}
    ok = bool(result.get("success")) and not result.get("errors")
    finish_ingest_run(sb, run_id, ok, stats, error=result.get("error"))
    if args.json:
        print(json.dumps(result, ensure_ascii=False, default=str))
    return 0 if result.get("success") else 1


if __name__ == "__main__":
    raise SystemExit(main())
