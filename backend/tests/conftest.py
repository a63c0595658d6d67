"""
Shared pytest fixtures.

DATABASE_URL points at a throwaway SQLite file before the package is
imported; every test that touches the database gets its own in-memory
engine instead.
"""
import os
import sys
import tempfile
from pathlib import Path

# Ensure the tally_migration package is importable when running pytest from project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

_tmp_db = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
_tmp_db.close()
_tmp_dir = tempfile.mkdtemp()
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_tmp_db.name}")
os.environ.setdefault("LOG_FILE", os.path.join(_tmp_dir, "migration.log"))
os.environ.setdefault("AUDIT_LOG_FILE", os.path.join(_tmp_dir, "batches.log"))
os.environ.setdefault("RAW_BACKUP_DIR", os.path.join(_tmp_dir, "raw_backup"))

import pytest  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

import tally_migration.models  # noqa: E402,F401
from tally_migration.models import MigrationBatch  # noqa: E402
from tally_migration.core.config import settings  # noqa: E402
from tally_migration.etl.xml_parser import parse_xml  # noqa: E402
from tally_migration.migration.cache import ParsedDocumentCache  # noqa: E402
from tally_migration.migration.orchestrator import ImportOrchestrator  # noqa: E402
from tally_migration.repositories import Repositories  # noqa: E402

COMPANY_ID = 1
SAMPLE_DIR = Path(__file__).parent.parent.parent / "sample_data"


def sample_bytes(name: str) -> bytes:
    return (SAMPLE_DIR / name).read_bytes()


@pytest.fixture(autouse=True)
def raw_backup_dir(tmp_path, monkeypatch):
    """Keep raw export backups out of the source tree."""
    backup_dir = tmp_path / "raw_backup"
    monkeypatch.setattr(settings, "RAW_BACKUP_DIR", backup_dir)
    return backup_dir


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def repos(session):
    return Repositories(session)


@pytest.fixture
def batch(repos):
    row = repos.batches.add(MigrationBatch(
        company_id=COMPANY_ID,
        batch_number="TALLY-20240601-TEST01",
        status="importing",
    ))
    repos.session.commit()
    return row


@pytest.fixture
def orchestrator(engine):
    return ImportOrchestrator(ParsedDocumentCache(), session_factory=lambda: Session(engine))


@pytest.fixture
def masters_document():
    return parse_xml(sample_bytes("Masters.xml"), "Masters.xml")


@pytest.fixture
def daybook_document():
    return parse_xml(sample_bytes("DayBook.xml"), "DayBook.xml")
