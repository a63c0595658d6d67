"""
Integration tests: upload -> import -> re-import -> rollback through the
real application, its module-level orchestrator and the SQLite file DB
configured in conftest.
"""
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from tally_migration.core.config import settings
from tally_migration.core.database import engine
from tally_migration.main import app
from tally_migration.models import JournalEntry, JournalEntryLine
from tally_migration.repositories import Repositories

from conftest import sample_bytes

BASE = "/api/migration"
# Own company so rows left by other modules in the shared DB file don't interfere
COMPANY = 901


@pytest.fixture(scope="module")
def client():
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


def _upload_and_import(client, name, body=None):
    r = client.post(
        f"{BASE}/upload",
        params={"company_id": COMPANY},
        files={"file": (name, sample_bytes(name), "text/xml")},
    )
    assert r.status_code == 201, r.text
    batch_id = r.json()["batch_id"]
    r = client.post(f"{BASE}/batches/{batch_id}/import", json=body)
    assert r.status_code == 202, r.text
    return batch_id


@pytest.fixture(scope="module")
def imported(client, tmp_path_factory):
    """Masters and DayBook imported once for the whole module."""
    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(settings, "RAW_BACKUP_DIR", tmp_path_factory.mktemp("raw_backup"))
        masters_id = _upload_and_import(client, "Masters.xml")
        vouchers_id = _upload_and_import(client, "DayBook.xml", {"import_masters": False})
    return {"masters": masters_id, "vouchers": vouchers_id}


class TestPipeline:
    def test_masters_batch(self, client, imported):
        batch = client.get(f"{BASE}/batches/{imported['masters']}").json()
        assert batch["status"] == "completed"
        assert batch["import_type"] == "full"
        assert batch["imported_ledgers"] == 11
        assert batch["suspense_entries_created"] == 1

    def test_vouchers_batch(self, client, imported):
        batch = client.get(f"{BASE}/batches/{imported['vouchers']}").json()
        assert batch["status"] == "completed"
        assert batch["import_type"] == "vouchers"
        assert batch["imported_vouchers"] == 9
        assert batch["failed_vouchers"] == 0

    def test_documents_created(self, imported):
        with Session(engine) as s:
            repos = Repositories(s)
            invoice = repos.invoices.get_by_number(COMPANY, "SI/001")
            assert invoice is not None
            assert invoice.tally_migration_batch_id == imported["vouchers"]
            assert repos.vendor_invoices.get_by_number(COMPANY, "PI/001") is not None

    def test_journals_balance(self, imported):
        with Session(engine) as s:
            entries = s.exec(select(JournalEntry).where(JournalEntry.company_id == COMPANY)).all()
            assert len(entries) == 9
            for entry in entries:
                lines = s.exec(
                    select(JournalEntryLine).where(JournalEntryLine.journal_entry_id == entry.id)
                ).all()
                debit = round(sum(l.debit_amount for l in lines), 2)
                credit = round(sum(l.credit_amount for l in lines), 2)
                assert debit == credit, entry.journal_number

    def test_reimport_skips_existing(self, client, imported):
        batch_id = _upload_and_import(client, "DayBook.xml", {"import_masters": False})
        result = client.get(f"{BASE}/batches/{batch_id}/result").json()
        assert result["status"] == "completed"
        assert result["vouchers"]["total_imported"] == 0
        assert result["vouchers"]["total_skipped"] == 9
        with Session(engine) as s:
            count = len(s.exec(select(JournalEntry).where(JournalEntry.company_id == COMPANY)).all())
        assert count == 9

    def test_batches_listed(self, client, imported):
        listing = client.get(f"{BASE}/batches", params={"company_id": COMPANY}).json()
        ids = {b["id"] for b in listing["items"]}
        assert {imported["masters"], imported["vouchers"]} <= ids


class TestRollbackOrder:
    def test_masters_kept_while_vouchers_use_them(self, client, imported):
        preview = client.get(f"{BASE}/batches/{imported['masters']}/rollback/preview").json()
        assert preview["dependent_transactions_count"] > 0

        r = client.post(f"{BASE}/batches/{imported['masters']}/rollback")
        assert r.status_code == 200
        assert r.json()["success"] is False
        assert client.get(f"{BASE}/batches/{imported['masters']}").json()["status"] == "completed"

    def test_vouchers_then_masters(self, client, imported):
        r = client.post(f"{BASE}/batches/{imported['vouchers']}/rollback", json={"reason": "test run"})
        assert r.json()["success"] is True
        assert r.json()["journal_entries_deleted"] == 9

        r = client.post(f"{BASE}/batches/{imported['masters']}/rollback")
        assert r.json()["success"] is True, r.json()["errors"]
        with Session(engine) as s:
            repos = Repositories(s)
            assert repos.parties.list_for_company(COMPANY) == []
            assert repos.journals.list_for_company(COMPANY) == []
