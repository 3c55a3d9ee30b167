import logging
from functools import lru_cache
from typing import Dict, Optional

from fastapi import FastAPI, Depends, Query, Body, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from leadscraper.auth import operator_guard
from leadscraper.db import get_engine
from leadscraper.errors import LeadScraperError, NotFoundError, ValidationError
from leadscraper.fetcher import PageFetcher
from leadscraper.job_store import JobStore
from leadscraper.lead_store import LeadStore
from leadscraper.logging_config import configure_logging
from leadscraper.models import LeadCreate, ScrapeRequest, SyncScrapeRequest
from leadscraper.settings import Settings, get_settings, settings
from leadscraper.status import StatusService
from leadscraper.submission import SubmissionService
from leadscraper.transport import QueueTransport, build_queue

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="leadscraper")

@app.get("/healthz", include_in_schema=False)
def healthz():
    return {"ok": True}

# ----- CORS (admin UI lives on another origin) -----
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----- Errors -> {"error": ...} -----
ERROR_STATUS = (
    (ValidationError, 400),
    (NotFoundError, 404),
)

@app.exception_handler(LeadScraperError)
async def pipeline_error(request: Request, exc: LeadScraperError):
    code = next((c for cls, c in ERROR_STATUS if isinstance(exc, cls)), 500)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"error": str(exc) or type(exc).__name__})

@app.exception_handler(RequestValidationError)
async def bad_request(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if any(e.get("type") == "json_invalid" for e in errors):
        msg = "Invalid JSON"
    else:
        msg = "; ".join(
            f"{'.'.join(str(p) for p in e.get('loc', ())[1:]) or 'body'}: {e.get('msg')}" for e in errors
        )
    return JSONResponse(status_code=400, content={"error": msg})

# ----- Dependencies (overridable in tests) -----
def get_db_engine():
    return get_engine()

@lru_cache(maxsize=1)
def _default_queue() -> QueueTransport:
    return build_queue(settings, get_engine())

def get_queue() -> QueueTransport:
    return _default_queue()

def get_fetcher(cfg: Settings = Depends(get_settings)):
    fetcher = PageFetcher(timeout=cfg.FETCH_TIMEOUT_S, user_agent=cfg.USER_AGENT)
    try:
        yield fetcher
    finally:
        fetcher.close()

def get_job_store(engine=Depends(get_db_engine)) -> JobStore:
    return JobStore(engine)

def get_lead_store(engine=Depends(get_db_engine), cfg: Settings = Depends(get_settings)) -> LeadStore:
    return LeadStore(engine, max_contacts=cfg.MAX_CONTACTS_PER_LEAD)

def get_submission_service(
    store: JobStore = Depends(get_job_store),
    queue: QueueTransport = Depends(get_queue),
    leads: LeadStore = Depends(get_lead_store),
    fetcher=Depends(get_fetcher),
    cfg: Settings = Depends(get_settings),
) -> SubmissionService:
    return SubmissionService(store, queue, leads=leads, fetcher=fetcher, settings=cfg)

def get_status_service(store: JobStore = Depends(get_job_store)) -> StatusService:
    return StatusService(store)

# ----- Scrape jobs -----
@app.post("/api/scrape/job", status_code=202)
def enqueue_scrape_job(
    body: ScrapeRequest,
    svc: SubmissionService = Depends(get_submission_service),
    _: None = Depends(operator_guard),
):
    """
    body: { "urls": [...], "industry"?, "location"?, "deep"?, "perSitePageLimit"?, "limit"? }
    returns: { "status": "queued", "jobId": "job_..." }
    """
    return svc.submit(body)

@app.get("/api/scrape/job")
def scrape_job_status(
    id: Optional[str] = Query(None, description="job id returned by POST /api/scrape/job"),
    svc: StatusService = Depends(get_status_service),
    _: None = Depends(operator_guard),
):
    return svc.get_status(id)

@app.post("/api/scrape")
def scrape_now(
    body: SyncScrapeRequest,
    svc: SubmissionService = Depends(get_submission_service),
    _: None = Depends(operator_guard),
):
    # small interactive batches only; bounded by SYNC_SCRAPE_TIMEOUT_S
    return svc.scrape_now(body)

# ----- Lead table -----
@app.get("/api/leads")
def list_leads(
    search: Optional[str] = Query(None),
    status: Optional[str] = Query(None, description="lead status or 'all'"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    export: Optional[str] = Query(None, description="'csv' to download every lead"),
    leads: LeadStore = Depends(get_lead_store),
    _: None = Depends(operator_guard),
):
    if export == "csv":
        return Response(
            content=leads.export_csv(),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="leads.csv"'},
        )
    rows = leads.list_leads(search=search, status=status, limit=limit, offset=offset)
    return {"leads": [r.model_dump(mode="json") for r in rows]}

@app.post("/api/leads", status_code=201)
def create_lead(body: LeadCreate, leads: LeadStore = Depends(get_lead_store), _: None = Depends(operator_guard)):
    lead = leads.create_lead(body.model_dump(exclude={"contacts"}))
    if body.contacts:
        leads.add_contacts(lead.id, body.contacts)
    out = lead.model_dump(mode="json")
    out["contacts"] = [c.model_dump(mode="json") for c in leads.list_contacts(lead.id)]
    return out

@app.get("/api/leads/{lead_id}")
def get_lead(lead_id: int, leads: LeadStore = Depends(get_lead_store), _: None = Depends(operator_guard)):
    lead = leads.get_lead(lead_id)
    if lead is None:
        raise NotFoundError("not found")
    out = lead.model_dump(mode="json")
    out["contacts"] = [c.model_dump(mode="json") for c in leads.list_contacts(lead_id)]
    return out

@app.patch("/api/leads/{lead_id}")
def patch_lead(
    lead_id: int,
    payload: Dict = Body(...),
    leads: LeadStore = Depends(get_lead_store),
    _: None = Depends(operator_guard),
):
    lead = leads.update_lead(lead_id, payload or {})
    if lead is None:
        raise NotFoundError("not found")
    return lead.model_dump(mode="json")
