from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional
import uuid

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PField
from sqlalchemy import JSON, DateTime
from sqlmodel import SQLModel, Field

# Job lifecycle: queued -> running -> complete | failed
QUEUED = "queued"
RUNNING = "running"
COMPLETE = "complete"
FAILED = "failed"
TERMINAL = frozenset({COMPLETE, FAILED})

JOB_TYPE_SCRAPE = "scrape"


def utcnow() -> datetime:
    # naive UTC, same shape sqlite hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_job_id() -> str:
    return "job_" + uuid.uuid4().hex


def timestamp_field(**kw):
    # plain DateTime column: values are naive UTC, whatever sqlmodel would infer
    return Field(sa_type=DateTime, **kw)


# ----- Tables -----

class ScrapeJob(SQLModel, table=True):
    __tablename__ = "lead_jobs"

    job_id: str = Field(default_factory=new_job_id, primary_key=True)
    type: str = JOB_TYPE_SCRAPE
    status: str = Field(default=QUEUED, index=True)  # queued|running|complete|failed
    payload: Dict = Field(default_factory=dict, sa_type=JSON)
    result: Optional[List[Dict]] = Field(default=None, sa_type=JSON)
    failures: Optional[List[Dict]] = Field(default=None, sa_type=JSON)
    error: Optional[str] = None
    enqueue_attempts: int = 0
    created_at: datetime = timestamp_field(default_factory=utcnow)
    updated_at: datetime = timestamp_field(default_factory=utcnow, index=True)
    started_at: Optional[datetime] = timestamp_field(default=None)
    finished_at: Optional[datetime] = timestamp_field(default=None)


class Lead(SQLModel, table=True):
    __tablename__ = "leads"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_name: str = Field(max_length=500, unique=True, index=True)
    website_url: Optional[str] = None
    industry: Optional[str] = None
    location: Optional[str] = None
    contact_name: Optional[str] = None
    contact_title: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    status: str = Field(default="new", index=True)
    notes: Optional[str] = None
    source_url: Optional[str] = None
    created_at: datetime = timestamp_field(default_factory=utcnow)
    updated_at: datetime = timestamp_field(default_factory=utcnow)


class LeadContact(SQLModel, table=True):
    __tablename__ = "lead_contacts"

    id: Optional[int] = Field(default=None, primary_key=True)
    lead_id: int = Field(foreign_key="leads.id", index=True)
    name: str
    title: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    linkedin_url: Optional[str] = None
    twitter_url: Optional[str] = None
    created_at: datetime = timestamp_field(default_factory=utcnow)


class QueuedMessage(SQLModel, table=True):
    """Row-per-message backing store for the database queue backend."""

    __tablename__ = "queue_messages"

    message_id: str = Field(default_factory=lambda: uuid.uuid4().hex, primary_key=True)
    queue: str = Field(index=True)
    body: str
    receive_count: int = 0
    receipt: Optional[str] = None
    visible_at: datetime = timestamp_field(default_factory=utcnow, index=True)
    dead_letter_reason: Optional[str] = None
    created_at: datetime = timestamp_field(default_factory=utcnow)


# ----- Wire schemas -----

class ScrapeRequest(BaseModel):
    """Client body for POST /api/scrape/job; also the immutable job payload."""

    model_config = ConfigDict(populate_by_name=True)

    urls: List[str] = PField(default_factory=list)
    industry: Optional[str] = None
    location: Optional[str] = None
    deep: Optional[bool] = None
    per_site_page_limit: Optional[int] = PField(default=None, alias="perSitePageLimit", ge=0)
    limit: Optional[int] = PField(default=None, ge=1)

    def as_payload(self) -> Dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class SyncScrapeRequest(ScrapeRequest):
    query: Optional[str] = None


class ScrapeMessage(ScrapeRequest):
    """Queue message body: the job payload plus jobType/jobId for correlation."""

    job_type: Literal["scrape"] = PField(default=JOB_TYPE_SCRAPE, alias="jobType")
    job_id: str = PField(alias="jobId", min_length=1)
    urls: List[str] = PField(min_length=1)

    @classmethod
    def for_job(cls, job: ScrapeJob) -> "ScrapeMessage":
        return cls.model_validate({**job.payload, "jobType": job.type, "jobId": job.job_id})

    def to_body(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class ContactRecord(BaseModel):
    name: str
    title: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    linkedin_url: Optional[str] = None
    twitter_url: Optional[str] = None


class LeadRecord(BaseModel):
    """One extracted lead per processed target; every field but the name is best-effort."""

    company_name: str
    website_url: Optional[str] = None
    industry: Optional[str] = None
    location: Optional[str] = None
    contact_name: Optional[str] = None
    contact_title: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    source_url: str
    extracted_at: datetime = PField(default_factory=utcnow)
    contacts: List[ContactRecord] = PField(default_factory=list)


class LeadCreate(BaseModel):
    """Body for POST /api/leads: one hand-entered lead."""

    company_name: str = PField(min_length=1, max_length=500)
    website_url: Optional[str] = None
    industry: Optional[str] = None
    location: Optional[str] = None
    contact_name: Optional[str] = None
    contact_title: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    source_url: Optional[str] = None
    contacts: List[ContactRecord] = PField(default_factory=list)
