"""Batch lifecycle through the import orchestrator."""
import re
from datetime import datetime

import pytest
from loguru import logger
from sqlmodel import Session

from tally_migration.core.errors import InternalError, MigrationError, NotFoundError, ValidationError
from tally_migration.migration.cache import ParsedDocumentCache
from tally_migration.migration.master_mapping import MasterMappingService
from tally_migration.migration.orchestrator import ImportOrchestrator, new_batch_number
from tally_migration.migration.validation import ValidationService
from tally_migration.models import MigrationLog
from tally_migration.schemas.responses import (
    BatchRead,
    ImportRequest,
    LedgerMappingIn,
    LogRead,
    MappingConfig,
    RollbackRequest,
)
from tally_migration.schemas.tally import ParsedDocument

from conftest import COMPANY_ID, sample_bytes

UNBALANCED_XML = b"""<?xml version="1.0" encoding="utf-8"?>
<ENVELOPE><BODY><IMPORTDATA><REQUESTDATA>
  <TALLYMESSAGE>
    <VOUCHER VCHTYPE="Journal">
      <GUID>guid-unbalanced</GUID>
      <DATE>20240520</DATE>
      <VOUCHERNUMBER>JV/9</VOUCHERNUMBER>
      <ALLLEDGERENTRIES.LIST><LEDGERNAME>Rent</LEDGERNAME><AMOUNT>100.00 Dr</AMOUNT></ALLLEDGERENTRIES.LIST>
      <ALLLEDGERENTRIES.LIST><LEDGERNAME>Cash</LEDGERNAME><AMOUNT>90.00 Cr</AMOUNT></ALLLEDGERENTRIES.LIST>
    </VOUCHER>
  </TALLYMESSAGE>
</REQUESTDATA></IMPORTDATA></BODY></ENVELOPE>"""


def _upload(orchestrator, name="Masters.xml", raw=None):
    return orchestrator.upload_and_parse(COMPANY_ID, name, raw if raw is not None else sample_bytes(name))


@pytest.fixture
def masters_import(orchestrator):
    upload = _upload(orchestrator)
    return upload, orchestrator.start_import(upload.batch_id)


class TestHelpers:
    def test_batch_number(self):
        number = new_batch_number(datetime(2024, 3, 15, 10, 0))
        assert re.match(r"^TALLY-20240315-[0-9A-F]{6}$", number)
        assert new_batch_number() != new_batch_number()


class TestReadModels:
    def test_built_from_rows(self, repos, batch):
        log = repos.logs.add(MigrationLog(
            batch_id=batch.id,
            record_type="ledger",
            tally_name="Cash",
            status="success",
            processing_order=1,
        ))
        detail = BatchRead.model_validate(batch)
        assert detail.batch_number == "TALLY-20240601-TEST01"
        assert detail.status == "importing"
        line = LogRead.model_validate(log)
        assert (line.tally_name, line.status, line.processing_order) == ("Cash", "success", 1)


class TestCache:
    def test_oldest_entry_evicted_when_full(self):
        cache = ParsedDocumentCache(max_entries=2)
        for batch_id in (1, 2, 3):
            cache.set(batch_id, ParsedDocument(file_name=f"{batch_id}.xml"))
        assert 1 not in cache
        assert len(cache) == 2
        assert cache.get(3).file_name == "3.xml"

    def test_evict(self):
        cache = ParsedDocumentCache()
        cache.set(1, ParsedDocument(file_name="a.xml"))
        assert cache.evict(1)
        assert not cache.evict(1)
        assert cache.get(1) is None


class TestUpload:
    def test_preview(self, orchestrator):
        upload = _upload(orchestrator)
        assert upload.status == "preview"
        assert upload.source_format == "xml"
        assert upload.company_name == "Sharma Traders Pvt Ltd"
        assert upload.total_ledgers == 12
        assert upload.can_proceed
        assert upload.batch_number.startswith("TALLY-")
        assert upload.batch_id in orchestrator.cache

        batch = orchestrator.get_batch_detail(upload.batch_id)
        assert batch.source_file_name == "Masters.xml"
        assert batch.source_file_size == len(sample_bytes("Masters.xml"))
        assert batch.tally_company_name == "Sharma Traders Pvt Ltd"

    def test_parsed_data_and_validation(self, orchestrator):
        upload = _upload(orchestrator, "DayBook.xml")
        document = orchestrator.get_parsed_data(upload.batch_id)
        assert len(document.vouchers.vouchers) == 9
        assert orchestrator.validate(upload.batch_id).can_proceed

    def test_parse_failure_marks_batch_failed(self, orchestrator):
        with pytest.raises(ValidationError):
            _upload(orchestrator, "broken.xml", b"<ENVELOPE><BODY>")
        batch = orchestrator.list_batches(COMPANY_ID).items[0]
        assert batch.status == "failed"
        assert batch.error_message.startswith("Invalid XML format")

    def test_validation_failure_marks_batch_failed(self, orchestrator, monkeypatch):
        def broken(self, *args, **kwargs):
            raise RuntimeError("db gone")

        monkeypatch.setattr(ValidationService, "validate", broken)
        with pytest.raises(InternalError):
            _upload(orchestrator)
        batch = orchestrator.list_batches(COMPANY_ID).items[0]
        assert batch.status == "failed"
        assert batch.error_message == "Unexpected error: db gone"

    def test_unbalanced_file_cannot_proceed(self, orchestrator):
        upload = _upload(orchestrator, "bad.xml", UNBALANCED_XML)
        assert not upload.can_proceed
        assert upload.validation.error_count == 1
        with pytest.raises(ValidationError, match="validation error"):
            orchestrator.start_import(upload.batch_id)
        assert orchestrator.get_batch_detail(upload.batch_id).status == "preview"

        result = orchestrator.start_import(upload.batch_id, ImportRequest(ignore_validation_errors=True))
        assert result.status == "completed"
        assert result.vouchers.total_imported == 1

    def test_missing_parsed_data(self, orchestrator):
        with pytest.raises(NotFoundError, match="upload the file again"):
            orchestrator.get_parsed_data(12345)

    def test_missing_batch(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.get_batch_detail(12345)


class TestMappings:
    def test_configure_moves_batch_to_mapping(self, orchestrator):
        upload = _upload(orchestrator)
        saved = orchestrator.configure_mappings(upload.batch_id, MappingConfig(ledger_mappings=[
            LedgerMappingIn(
                tally_ledger_name="Misc Ledger",
                target_entity="chart_of_accounts",
                target_account_type="expense",
            ),
        ]))
        assert saved == 1
        assert orchestrator.get_batch_detail(upload.batch_id).status == "mapping"

        result = orchestrator.start_import(upload.batch_id)
        assert result.status == "completed"
        assert result.suspense_count == 0
        assert orchestrator.get_batch_detail(upload.batch_id).imported_ledgers == 12

    def test_configure_after_import_refused(self, orchestrator, masters_import):
        upload, _ = masters_import
        with pytest.raises(ValidationError):
            orchestrator.configure_mappings(upload.batch_id, MappingConfig())


class TestImport:
    def test_masters_then_vouchers(self, orchestrator, masters_import):
        upload, result = masters_import
        assert result.status == "completed"
        assert result.masters.total_imported == 17
        assert result.vouchers.total_imported == 0
        assert result.failed_count == 0
        assert result.suspense_count == 1
        assert [item.tally_name for item in result.suspense_items] == ["Misc Ledger"]
        assert upload.batch_id not in orchestrator.cache

        batch = orchestrator.get_batch_detail(upload.batch_id)
        assert batch.import_type == "full"
        assert batch.imported_ledgers == 11
        assert batch.imported_stock_items == 1

        daybook = _upload(orchestrator, "DayBook.xml")
        second = orchestrator.start_import(daybook.batch_id, ImportRequest(import_masters=False))
        assert second.status == "completed"
        assert second.masters is None
        assert second.vouchers.total_imported == 9
        assert second.suspense_count == 1
        assert second.suspense_amount == 1500
        assert orchestrator.get_batch_detail(daybook.batch_id).import_type == "vouchers"

    def test_progress_updates(self, orchestrator):
        upload = _upload(orchestrator)
        updates = []
        orchestrator.start_import(upload.batch_id, progress=updates.append)
        assert [u.message for u in updates[:2]] == ["Imported units", "Imported stock groups"]
        final = updates[-1]
        assert final.status == "completed"
        assert final.percent_complete == 100.0
        assert orchestrator.get_progress(upload.batch_id).status == "completed"

    def test_log_lines_tagged_with_batch(self, orchestrator):
        upload = _upload(orchestrator)
        seen = []
        handler = logger.add(lambda m: seen.append(m.record["extra"].get("batch")), level="INFO")
        try:
            orchestrator.start_import(upload.batch_id)
        finally:
            logger.remove(handler)
        assert upload.batch_number in seen

    def test_failing_progress_sink_is_ignored(self, orchestrator):
        upload = _upload(orchestrator)

        def broken(update):
            raise RuntimeError("socket closed")

        assert orchestrator.start_import(upload.batch_id, progress=broken).status == "completed"

    def test_result_summaries_bounded(self, engine):
        orchestrator = ImportOrchestrator(
            ParsedDocumentCache(), session_factory=lambda: Session(engine), max_results=1,
        )
        first = _upload(orchestrator)
        orchestrator.start_import(first.batch_id)
        daybook = _upload(orchestrator, "DayBook.xml")
        orchestrator.start_import(daybook.batch_id, ImportRequest(import_masters=False))

        older = orchestrator.get_result(first.batch_id)
        assert older.masters is None
        assert older.imported_count == 22
        assert orchestrator.get_result(daybook.batch_id).vouchers.total_imported == 9

    def test_live_progress_while_importing(self, orchestrator):
        upload = _upload(orchestrator)
        orchestrator.prepare_import(upload.batch_id, ImportRequest())
        progress = orchestrator.get_progress(upload.batch_id)
        assert progress.status == "importing"
        assert progress.current_phase == "starting"
        assert orchestrator.get_batch_detail(upload.batch_id).status == "importing"

    def test_cannot_import_twice(self, orchestrator, masters_import):
        upload, _ = masters_import
        with pytest.raises(MigrationError):
            orchestrator.start_import(upload.batch_id)

    def test_cancel(self, orchestrator):
        upload = _upload(orchestrator)
        request = ImportRequest()
        token = orchestrator.prepare_import(upload.batch_id, request)
        assert orchestrator.cancel_import(upload.batch_id)
        assert token.cancelled

        result = orchestrator.run_import(upload.batch_id, request)
        assert result.status == "cancelled"
        assert result.error_message == "Import was cancelled"
        assert result.imported_count == 0
        assert upload.batch_id not in orchestrator.cache

    def test_cancel_when_not_importing(self, orchestrator):
        upload = _upload(orchestrator)
        with pytest.raises(ValidationError, match="is not importing"):
            orchestrator.cancel_import(upload.batch_id)

    def test_unexpected_error_fails_batch(self, orchestrator, monkeypatch):
        def boom(self, *args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(MasterMappingService, "import_masters", boom)
        upload = _upload(orchestrator)
        result = orchestrator.start_import(upload.batch_id)
        assert result.status == "failed"
        assert result.error_message == "Unexpected error: disk full"


class TestQueries:
    def test_logs_paging(self, orchestrator, masters_import):
        upload, _ = masters_import
        page = orchestrator.get_logs(upload.batch_id, page=1, page_size=5)
        assert len(page.items) == 5
        # 17 records, 5 control accounts and one suspense ledger
        assert page.total == 23
        suspense = orchestrator.get_logs(upload.batch_id, status="mapped_to_suspense")
        assert suspense.total == 1
        units = orchestrator.get_logs(upload.batch_id, record_type="unit")
        assert [row.tally_name for row in units.items] == ["Nos"]

    def test_list_batches(self, orchestrator, masters_import):
        _upload(orchestrator, "DayBook.xml")
        listing = orchestrator.list_batches(COMPANY_ID)
        assert listing.total == 2
        assert orchestrator.list_batches(COMPANY_ID, status="completed").total == 1
        assert orchestrator.list_batches(COMPANY_ID + 1).total == 0


class TestRollback:
    def test_rollback_completed_import(self, orchestrator, masters_import):
        upload, _ = masters_import
        preview = orchestrator.preview_rollback(upload.batch_id)
        assert preview.can_rollback
        assert preview.masters_count == 22

        result = orchestrator.rollback(upload.batch_id, RollbackRequest(reason="test"))
        assert result.success
        assert orchestrator.get_batch_detail(upload.batch_id).status == "rolled_back"
        assert orchestrator.get_logs(upload.batch_id).total == 0

        with pytest.raises(ValidationError):
            orchestrator.rollback(upload.batch_id)

    def test_rollback_cancelled_import(self, orchestrator):
        upload = _upload(orchestrator)
        request = ImportRequest()
        orchestrator.prepare_import(upload.batch_id, request)
        orchestrator.cancel_import(upload.batch_id)
        orchestrator.run_import(upload.batch_id, request)
        assert orchestrator.rollback(upload.batch_id).success
