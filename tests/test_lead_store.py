import csv
import io

import pytest

from leadscraper.errors import ValidationError
from leadscraper.lead_store import CSV_HEADERS, LeadStore
from leadscraper.models import ContactRecord, LeadRecord


def _record(name="Acme Plumbing", **kw):
    kw.setdefault("source_url", "https://acme.test/")
    return LeadRecord(company_name=name, **kw)


def test_upsert_inserts_then_merges(leads):
    leads.bulk_upsert([_record(email="info@acme.test", phone="+15125550100")])
    leads.bulk_upsert([_record(email=None, location="Austin, TX")])

    [lead] = leads.list_leads()
    assert lead.email == "info@acme.test"
    assert lead.phone == "+15125550100"
    assert lead.location == "Austin, TX"
    assert lead.status == "new"


def test_contacts_deduped_by_name(leads):
    jane = ContactRecord(name="Jane Doe", title="CEO")
    leads.bulk_upsert([_record(contacts=[jane])])
    leads.bulk_upsert([_record(contacts=[ContactRecord(name="jane doe"), ContactRecord(name="John Smith")])])

    [lead] = leads.list_leads()
    assert [c.name for c in leads.list_contacts(lead.id)] == ["Jane Doe", "John Smith"]
    assert leads.add_contacts(lead.id, [jane]) == 0


def test_contacts_capped(engine):
    store = LeadStore(engine, max_contacts=2)
    people = [ContactRecord(name=f"Person {c}") for c in "ABC"]
    store.bulk_upsert([_record(contacts=people)])
    [lead] = store.list_leads()
    assert len(store.list_contacts(lead.id)) == 2


def test_list_leads_search_and_status(leads):
    leads.bulk_upsert([_record("Acme Plumbing"), _record("Bolt Electric"), _record("Acme Roofing")])
    acme_roof = next(l for l in leads.list_leads(search="roof"))
    leads.update_lead(acme_roof.id, {"status": "contacted"})

    assert {l.company_name for l in leads.list_leads(search="ACME")} == {"Acme Plumbing", "Acme Roofing"}
    assert [l.company_name for l in leads.list_leads(status="contacted")] == ["Acme Roofing"]
    assert len(leads.list_leads(status="all")) == 3
    assert len(leads.list_leads(limit=2)) == 2
    assert len(leads.list_leads(limit=2, offset=2)) == 1


def test_update_lead(leads):
    leads.bulk_upsert([_record()])
    [lead] = leads.list_leads()

    updated = leads.update_lead(lead.id, {"notes": "call back", "status": "qualified", "id": 999})
    assert updated.id == lead.id
    assert (updated.notes, updated.status) == ("call back", "qualified")
    assert leads.update_lead(12345, {"notes": "x"}) is None
    with pytest.raises(ValidationError):
        leads.update_lead(lead.id, {"status": "bogus"})


def test_export_csv(leads):
    leads.bulk_upsert([_record(email="info@acme.test", contacts=[ContactRecord(name="Jane Doe")])])
    rows = list(csv.reader(io.StringIO(leads.export_csv())))

    assert rows[0] == CSV_HEADERS
    row = dict(zip(CSV_HEADERS, rows[1]))
    assert row["company_name"] == "Acme Plumbing"
    assert row["email"] == "info@acme.test"
    assert row["phone"] == ""
    assert row["contacts_count"] == "1"


def test_export_csv_empty(leads):
    assert leads.export_csv().strip() == ",".join(f'"{h}"' for h in CSV_HEADERS)


def test_create_lead(leads):
    lead = leads.create_lead({"company_name": " Bolt Electric ", "email": "hi@bolt.test", "phone": ""})

    assert lead.id is not None
    assert lead.company_name == "Bolt Electric"
    assert lead.status == "new"
    assert lead.email == "hi@bolt.test"
    assert lead.phone is None
    assert [l.company_name for l in leads.list_leads()] == ["Bolt Electric"]


def test_create_lead_validates(leads):
    with pytest.raises(ValidationError, match="company_name required"):
        leads.create_lead({"company_name": "  "})
    with pytest.raises(ValidationError, match="invalid status"):
        leads.create_lead({"company_name": "Bolt Electric", "status": "hot"})

    leads.create_lead({"company_name": "Bolt Electric", "status": "qualified"})
    with pytest.raises(ValidationError, match="already exists"):
        leads.create_lead({"company_name": "Bolt Electric"})
    assert len(leads.list_leads()) == 1
