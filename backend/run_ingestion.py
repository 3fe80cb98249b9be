import os
import subprocess
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]

# outlet scraping is the slowest job and gets the largest ceiling
JOBS = [
    ("aggregate_signals", "runner.jobs.aggregate_signals", "AGGREGATE_TIMEOUT", 300),
    ("enrich_signals", "runner.jobs.enrich_signals", "ENRICH_TIMEOUT", 300),
    ("scrape_outlets", "runner.jobs.scrape_outlets", "OUTLETS_TIMEOUT", 600),
]


def run_job(name: str, module: str, timeout_env: str, default_timeout: int) -> int:
    print(f"Running {name}...")
    env = os.environ.copy()
    existing = env.get("PYTHONPATH", "")
    env["PYTHONPATH"] = f"{REPO_ROOT}{os.pathsep}{existing}" if existing else str(REPO_ROOT)
    try:
        timeout_sec = int(env.get(timeout_env, str(default_timeout)))
    except ValueError:
        timeout_sec = default_timeout
    try:
        subprocess.run(
            [sys.executable, "-m", module],
            cwd=REPO_ROOT,
            env=env,
            check=True,
            timeout=timeout_sec,
        )
        print(f"Job ok: {name}")
        return 0
    except subprocess.TimeoutExpired:
        print(f"Job timed out: {name} after {timeout_sec}s")
        return 1
    except subprocess.CalledProcessError as e:
        print(f"Job failed: {name} ({e.returncode})")
        return e.returncode or 1


def main(argv: list[str] | None = None) -> int:
    selected = set(argv if argv is not None else sys.argv[1:])
    failures = 0
    for name, module, timeout_env, default_timeout in JOBS:
        if selected and name not in selected:
            continue
        rc = run_job(name, module, timeout_env, default_timeout)
        if rc != 0:
            failures += 1

    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
