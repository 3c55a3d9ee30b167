import csv
import io
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlmodel import select

from leadscraper.db import session_scope
from leadscraper.errors import ValidationError
from leadscraper.models import ContactRecord, Lead, LeadContact, LeadRecord, utcnow

logger = logging.getLogger(__name__)

MERGE_FIELDS = (
    "website_url", "industry", "location", "contact_name",
    "contact_title", "email", "phone", "source_url",
)
UPDATABLE_FIELDS = ("company_name", "status", "notes") + MERGE_FIELDS
LEAD_STATUSES = ("new", "contacted", "qualified", "converted", "lost")
CSV_HEADERS = [
    "id", "company_name", "website_url", "industry", "location", "contact_name",
    "contact_title", "email", "phone", "status", "notes", "source_url",
    "contacts_count", "created_at", "updated_at",
]


class LeadStore:
    """Searchable lead table; company_name is the cross-job dedupe key."""

    def __init__(self, engine, max_contacts: int = 25):
        self.engine = engine
        self.max_contacts = max_contacts

    def bulk_upsert(self, records: Iterable[LeadRecord]) -> int:
        """Insert new companies, merge non-null fields into existing ones."""
        count = 0
        with session_scope(self.engine) as s:
            for rec in records:
                lead = s.exec(select(Lead).where(Lead.company_name == rec.company_name)).first()
                if lead is None:
                    lead = Lead(company_name=rec.company_name)
                for f in MERGE_FIELDS:
                    value = getattr(rec, f)
                    if value is not None:
                        setattr(lead, f, value)
                lead.updated_at = utcnow()
                s.add(lead)
                s.flush()
                if rec.contacts:
                    self._add_contacts(s, lead.id, rec.contacts)
                count += 1
            s.commit()
        logger.info("Upserted %d lead(s)", count)
        return count

    def create_lead(self, data: Dict) -> Lead:
        """Insert one lead; a company that is already in the table is rejected."""
        name = (data.get("company_name") or "").strip()
        if not name:
            raise ValidationError("company_name required")
        status = data.get("status") or "new"
        if status not in LEAD_STATUSES:
            raise ValidationError(f"invalid status {status!r}")

        fields = {f: data.get(f) or None for f in MERGE_FIELDS + ("notes",)}
        with session_scope(self.engine) as s:
            if s.exec(select(Lead).where(Lead.company_name == name)).first() is not None:
                raise ValidationError(f"lead {name!r} already exists")
            lead = Lead(company_name=name, status=status, **fields)
            s.add(lead)
            s.commit()
            s.refresh(lead)
        logger.info("Created lead %s (%s)", lead.id, name)
        return lead

    def add_contacts(self, lead_id: int, contacts: List[ContactRecord]) -> int:
        with session_scope(self.engine) as s:
            added = self._add_contacts(s, lead_id, contacts)
            s.commit()
            return added

    def _add_contacts(self, s, lead_id: int, contacts: List[ContactRecord]) -> int:
        # same person twice (e.g. a redelivered job) is not a new contact
        existing = {
            c.name.lower()
            for c in s.exec(select(LeadContact).where(LeadContact.lead_id == lead_id)).all()
        }
        added = 0
        for c in contacts[: self.max_contacts]:
            if c.name.lower() in existing:
                continue
            s.add(LeadContact(lead_id=lead_id, **c.model_dump()))
            existing.add(c.name.lower())
            added += 1
        return added

    def list_contacts(self, lead_id: int) -> List[LeadContact]:
        with session_scope(self.engine) as s:
            stmt = select(LeadContact).where(LeadContact.lead_id == lead_id).order_by(LeadContact.id)
            return list(s.exec(stmt).all())

    def list_leads(
        self,
        search: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Lead]:
        stmt = select(Lead)
        if search:
            stmt = stmt.where(func.lower(Lead.company_name).like(f"%{search.lower()}%"))
        if status and status != "all":
            stmt = stmt.where(Lead.status == status)
        stmt = stmt.order_by(Lead.created_at.desc(), Lead.id.desc()).offset(offset).limit(limit)
        with session_scope(self.engine) as s:
            return list(s.exec(stmt).all())

    def get_lead(self, lead_id: int) -> Optional[Lead]:
        with session_scope(self.engine) as s:
            return s.get(Lead, lead_id)

    def update_lead(self, lead_id: int, updates: Dict) -> Optional[Lead]:
        if "status" in updates and updates["status"] not in LEAD_STATUSES:
            raise ValidationError(f"invalid status {updates['status']!r}")
        with session_scope(self.engine) as s:
            lead = s.get(Lead, lead_id)
            if lead is None:
                return None
            changed = False
            for k, v in updates.items():
                if k in UPDATABLE_FIELDS:
                    setattr(lead, k, v)
                    changed = True
            if changed:
                lead.updated_at = utcnow()
                s.add(lead)
                s.commit()
                s.refresh(lead)
            return lead

    def export_csv(self) -> str:
        with session_scope(self.engine) as s:
            counts = dict(
                s.exec(select(LeadContact.lead_id, func.count(LeadContact.id)).group_by(LeadContact.lead_id)).all()
            )
            leads = s.exec(select(Lead).order_by(Lead.created_at.desc(), Lead.id.desc())).all()

            buf = io.StringIO()
            w = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
            w.writerow(CSV_HEADERS)
            for lead in leads:
                row = lead.model_dump()
                row["contacts_count"] = counts.get(lead.id, 0)
                w.writerow(["" if row.get(h) is None else row[h] for h in CSV_HEADERS])
        return buf.getvalue()
