import subprocess

from backend import run_ingestion


def test_runs_selected_jobs_and_counts_failures(monkeypatch):
    ran = []

    def fake_run(cmd, cwd=None, env=None, check=None, timeout=None):
        module = cmd[-1]
        ran.append((module, timeout))
        if module.endswith("scrape_outlets"):
            raise subprocess.TimeoutExpired(cmd, timeout)

    monkeypatch.setattr(run_ingestion.subprocess, "run", fake_run)
    monkeypatch.setenv("OUTLETS_TIMEOUT", "900")
    monkeypatch.setenv("ENRICH_TIMEOUT", "not-a-number")

    assert run_ingestion.main(["enrich_signals", "scrape_outlets"]) == 1
    assert ran == [("runner.jobs.enrich_signals", 300), ("runner.jobs.scrape_outlets", 900)]


def test_all_jobs_ok(monkeypatch):
    monkeypatch.setattr(run_ingestion.subprocess, "run", lambda *a, **kw: None)
    assert run_ingestion.main([]) == 0
