import argparse
import json

from backend.db import finish_ingest_run, get_client, start_ingest_run
from runner import pipeline


def main() -> int:
    parser = argparse.ArgumentParser(description="Fill missing language bodies of incomplete signals.")
    parser.add_argument("--limit", type=int, default=None, help="max signals this pass (default SIGNALS_ENRICH_LIMIT)")
    parser.add_argument("--id", dest="source_identifier", default=None, help="enrich one signal, ignoring the retry ceiling")
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()
    if args.limit is not None and args.limit < 1:
        parser.error("--limit must be >= 1")

    sb = get_client()
    run_id = start_ingest_run(sb, "enrich_signals")
    if args.source_identifier:
        result = pipeline.enrich_signal_by_id(args.source_identifier)
        stats = {"source_identifier": args.source_identifier, "details": result.get("details")}
    else:
        result = pipeline.enrich_incomplete_signals(args.limit)
        stats = {k: result.get(k) for k in ("processed", "updated", "failed")}

    finish_ingest_run(sb, run_id, bool(result.get("success")), stats, error=result.get("error"))
    if args.json:
        print(json.dumps(result, ensure_ascii=False, default=str))
    return 0 if result.get("success") else 1


if __name__ == "__main__":
    raise SystemExit(main())
