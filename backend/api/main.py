from fastapi import Depends, FastAPI, Header, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from backend.config import get_list, get_str
from runner import pipeline

app = FastAPI(title="Signals API")

ALLOWED_ORIGINS = get_list("ALLOWED_ORIGINS") or ["http://localhost:3000"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


def require_cron(authorization: str | None = Header(default=None)):
    secret = get_str("CRON_SECRET")
    if not secret or authorization != f"Bearer {secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")


def _respond(response: Response, payload: dict) -> dict:
    if not payload.get("success"):
        response.status_code = 500
    return payload


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/api/cron/signals-aggregator", dependencies=[Depends(require_cron)])
def cron_signals_aggregator(response: Response):
    return _respond(response, pipeline.aggregate_signals())


class ScraperRequest(BaseModel):
    source_identifier: str | None = None
    max_signals: int | None = Field(default=None, ge=1, le=100)


@app.get("/api/cron/signals-scraper", dependencies=[Depends(require_cron)])
def cron_signals_scraper(response: Response, limit: int | None = Query(None, ge=1, le=100)):
    return _respond(response, pipeline.enrich_incomplete_signals(limit))


@app.post("/api/cron/signals-scraper", dependencies=[Depends(require_cron)])
def manual_signals_scraper(response: Response, payload: ScraperRequest | None = None):
    payload = payload or ScraperRequest()
    if payload.source_identifier:
        result = pipeline.enrich_signal_by_id(payload.source_identifier)
        if result.get("error") == "Signal not found":
            raise HTTPException(status_code=404, detail="Signal not found")
        return _respond(response, result)
    return _respond(response, pipeline.enrich_incomplete_signals(payload.max_signals))


@app.get("/api/cron/outlets", dependencies=[Depends(require_cron)])
def cron_all_outlets(response: Response):
    return _respond(response, pipeline.run_all_outlet_scrapers())


@app.get("/api/cron/outlets/{outlet}", dependencies=[Depends(require_cron)])
def cron_outlet(outlet: str, response: Response):
    result = pipeline.run_outlet_scraper(outlet)
    if not result.get("success") and str(result.get("error") or "").startswith("Unknown outlet"):
        response.status_code = 404
        return result
    return _respond(response, result)


@app.get("/api/signals/stats", dependencies=[Depends(require_cron)])
def signals_stats(response: Response):
    return _respond(response, pipeline.signals_statistics())


@app.get("/api/outlets/stats", dependencies=[Depends(require_cron)])
def outlets_stats(response: Response):
    return _respond(response, pipeline.outlet_statistics())


@app.get("/api/outlets/progress")
def outlets_progress():
    return {"progress": pipeline.get_pipeline().progress.snapshot()}
