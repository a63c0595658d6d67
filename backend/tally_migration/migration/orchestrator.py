"""
Import orchestrator: the batch lifecycle.

    parsing -> preview -> mapping -> importing -> completed | failed | cancelled
                                                          \\-> rolled_back

Each call opens its own session from ``session_factory`` so that imports
can run on a worker thread while progress and cancel requests arrive on
others. Parsed documents wait in the injected cache between upload and
import and are evicted once the batch reaches a terminal state.
"""
from __future__ import annotations

import secrets
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, Optional

from loguru import logger
from sqlmodel import Session

from tally_migration.core.config import settings
from tally_migration.core.database import new_session
from tally_migration.core.errors import (
    ImportCancelled,
    InternalError,
    MigrationError,
    NotFoundError,
    ValidationError,
)
from tally_migration.etl.parser import parse_file
from tally_migration.migration.cache import ParsedDocumentCache
from tally_migration.migration.control import CancellationToken, ProgressCallback, report_progress
from tally_migration.migration.mappings import FieldMappingService
from tally_migration.migration.master_mapping import MasterMappingService
from tally_migration.migration.rollback import RollbackService
from tally_migration.migration.validation import ValidationService
from tally_migration.migration.voucher_mapping import VoucherMappingService
from tally_migration.models import MigrationBatch
from tally_migration.repositories import Repositories
from tally_migration.schemas.responses import (
    BatchListResponse,
    BatchRead,
    FailedRecord,
    ImportProgress,
    ImportRequest,
    ImportResult,
    LogListResponse,
    LogRead,
    MappingConfig,
    MasterImportResult,
    RollbackPreview,
    RollbackRequest,
    RollbackResult,
    UploadResponse,
    ValidationResult,
    VoucherImportResult,
)
from tally_migration.schemas.tally import ParsedDocument

_PHASES = {
    "uploading": "upload",
    "parsing": "parsing",
    "preview": "preview",
    "mapping": "mapping",
    "importing": "importing",
    "completed": "completed",
    "failed": "failed",
    "cancelled": "cancelled",
    "rolled_back": "rolled_back",
}
_TERMINAL = {"completed", "failed", "cancelled", "rolled_back"}

# Log record type -> batch "imported_*" counter
_IMPORTED_FIELDS = {
    "unit": "imported_units",
    "stock_group": "imported_stock_groups",
    "godown": "imported_godowns",
    "cost_center": "imported_cost_centers",
    "ledger": "imported_ledgers",
    "stock_item": "imported_stock_items",
}


def new_batch_number(now: Optional[datetime] = None) -> str:
    """'TALLY-20240315-9F2A1C'."""
    now = now or datetime.utcnow()
    return f"TALLY-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


class ImportOrchestrator:
    def __init__(
        self,
        cache: Optional[ParsedDocumentCache] = None,
        session_factory: Callable[[], Session] = new_session,
        max_results: int = 64,
    ):
        self.cache = cache or ParsedDocumentCache()
        self.session_factory = session_factory
        self._lock = threading.Lock()
        self._tokens: dict[int, CancellationToken] = {}
        self._progress: dict[int, ImportProgress] = {}
        self._results: dict[int, tuple[Optional[MasterImportResult], Optional[VoucherImportResult]]] = {}
        self._max_results = max_results

    @contextmanager
    def _repos(self) -> Iterator[Repositories]:
        session = self.session_factory()
        try:
            yield Repositories(session)
        finally:
            session.close()

    @staticmethod
    def _batch(repos: Repositories, batch_id: int) -> MigrationBatch:
        batch = repos.batches.get(batch_id)
        if batch is None:
            raise NotFoundError(f"Batch {batch_id} not found")
        return batch

    @contextmanager
    def _audit(self, batch_id: int) -> Iterator[None]:
        """Tag every log line inside the block with the batch number."""
        with self._repos() as repos:
            number = self._batch(repos, batch_id).batch_number
        with logger.contextualize(batch=number):
            yield

    # ── upload / preview ─────────────────────────────────────────────────────

    def upload_and_parse(
        self,
        company_id: int,
        file_name: str,
        raw: bytes,
        created_by: Optional[int] = None,
    ) -> UploadResponse:
        with self._repos() as repos:
            session = repos.session
            batch = repos.batches.add(MigrationBatch(
                company_id=company_id,
                batch_number=new_batch_number(),
                source_file_name=file_name,
                source_file_size=len(raw),
                status="parsing",
                upload_started_at=datetime.utcnow(),
                created_by=created_by,
            ))
            session.commit()
            logger.info(f"Batch {batch.batch_number}: parsing {file_name} ({len(raw):,} bytes)")

            try:
                document = parse_file(raw, file_name, backup_dir=settings.RAW_BACKUP_DIR)
                validation = ValidationService(repos).validate(company_id, document)
            except MigrationError as exc:
                self._fail_upload(repos, batch.id, exc.message)
                raise
            except Exception as exc:
                logger.exception(f"Batch {batch.batch_number}: upload failed")
                self._fail_upload(repos, batch.id, f"Unexpected error: {exc}")
                raise InternalError(f"Failed to process {file_name}: {exc}") from exc

            self._apply_document(batch, document, validation)
            session.commit()
            self.cache.set(batch.id, document)
            logger.info(
                f"Batch {batch.batch_number}: parsed {len(document.masters.ledgers)} ledgers, "
                f"{len(document.vouchers.vouchers)} vouchers; can_proceed={validation.can_proceed}"
            )
            return UploadResponse(
                batch_id=batch.id,
                batch_number=batch.batch_number,
                status=batch.status,
                source_format=document.source_format,
                company_name=document.masters.company_name,
                total_ledgers=batch.total_ledgers,
                total_stock_items=batch.total_stock_items,
                total_vouchers=batch.total_vouchers,
                can_proceed=validation.can_proceed,
                validation=validation,
            )

    def _fail_upload(self, repos: Repositories, batch_id: int, message: str) -> None:
        repos.session.rollback()
        batch = self._batch(repos, batch_id)
        batch.status = "failed"
        batch.error_message = message
        batch.updated_at = datetime.utcnow()
        repos.session.commit()
        logger.error(f"Batch {batch.batch_number}: upload failed: {message}")

    @staticmethod
    def _apply_document(batch: MigrationBatch, document: ParsedDocument, validation: ValidationResult) -> None:
        masters, vouchers = document.masters, document.vouchers
        batch.source_format = document.source_format
        batch.tally_company_name = masters.company_name
        batch.tally_company_guid = masters.company_guid
        batch.tally_from_date = masters.books_from or vouchers.min_date
        batch.tally_to_date = masters.books_to or vouchers.max_date
        batch.total_ledgers = len(masters.ledgers)
        batch.total_groups = len(masters.groups)
        batch.total_stock_items = len(masters.stock_items)
        batch.total_stock_groups = len(masters.stock_groups)
        batch.total_godowns = len(masters.godowns)
        batch.total_units = len(masters.units)
        batch.total_cost_centers = len(masters.cost_centers)
        batch.total_vouchers = len(vouchers.vouchers)
        batch.can_proceed = validation.can_proceed
        batch.validation_error_count = validation.error_count
        batch.validation_warning_count = validation.warning_count
        batch.status = "preview"
        batch.parsing_completed_at = datetime.utcnow()
        batch.updated_at = batch.parsing_completed_at

    def get_parsed_data(self, batch_id: int) -> ParsedDocument:
        document = self.cache.get(batch_id)
        if document is None:
            raise NotFoundError(
                f"Parsed data for batch {batch_id} is no longer available; upload the file again"
            )
        return document

    def validate(self, batch_id: int) -> ValidationResult:
        document = self.get_parsed_data(batch_id)
        with self._repos() as repos:
            batch = self._batch(repos, batch_id)
            return ValidationService(repos).validate(batch.company_id, document)

    # ── mapping ──────────────────────────────────────────────────────────────

    def configure_mappings(self, batch_id: int, config: MappingConfig) -> int:
        with self._repos() as repos:
            batch = self._batch(repos, batch_id)
            if batch.status not in ("preview", "mapping"):
                raise ValidationError(f"Cannot configure mappings for a batch in status {batch.status}")
            service = FieldMappingService(repos)
            service.ensure_defaults(batch.company_id)
            saved = service.save_config(batch.company_id, config)
            batch.status = "mapping"
            batch.mapping_completed_at = datetime.utcnow()
            batch.updated_at = batch.mapping_completed_at
            repos.session.commit()
            logger.info(f"Batch {batch.batch_number}: saved {saved} field mapping(s)")
            return saved

    # ── import ───────────────────────────────────────────────────────────────

    def prepare_import(self, batch_id: int, request: ImportRequest) -> CancellationToken:
        """Check preconditions and move the batch to ``importing``."""
        self.get_parsed_data(batch_id)
        with self._repos() as repos:
            batch = self._batch(repos, batch_id)
            if batch.status not in ("preview", "mapping"):
                raise ValidationError(f"Cannot start import for a batch in status {batch.status}")
            if not batch.can_proceed and not request.ignore_validation_errors:
                raise ValidationError(
                    f"Batch has {batch.validation_error_count} validation error(s); "
                    f"fix the file or set ignore_validation_errors"
                )
            if request.import_masters and request.import_vouchers:
                batch.import_type = "full"
            else:
                batch.import_type = "masters" if request.import_masters else "vouchers"
            batch.status = "importing"
            batch.import_started_at = datetime.utcnow()
            batch.updated_at = batch.import_started_at
            batch.error_message = None
            repos.session.commit()

        token = CancellationToken()
        with self._lock:
            self._tokens[batch_id] = token
            self._progress[batch_id] = ImportProgress(
                batch_id=batch_id, status="importing", current_phase="starting",
                message="Import queued",
            )
        return token

    def run_import(
        self,
        batch_id: int,
        request: ImportRequest,
        progress: Optional[ProgressCallback] = None,
    ) -> ImportResult:
        """Run a prepared import to a terminal state. Never raises for per-record failures."""
        with self._audit(batch_id):
            return self._run_import(batch_id, request, progress)

    def _run_import(
        self,
        batch_id: int,
        request: ImportRequest,
        progress: Optional[ProgressCallback],
    ) -> ImportResult:
        with self._lock:
            token = self._tokens.get(batch_id)
        if token is None:
            token = self.prepare_import(batch_id, request)

        def sink(update: ImportProgress) -> None:
            with self._lock:
                self._progress[batch_id] = update
            report_progress(progress, update)

        masters_result: Optional[MasterImportResult] = None
        vouchers_result: Optional[VoucherImportResult] = None
        with self._repos() as repos:
            batch = self._batch(repos, batch_id)
            try:
                document = self.get_parsed_data(batch_id)
                if request.import_masters:
                    masters_result = MasterMappingService(repos).import_masters(
                        batch_id, batch.company_id, document.masters, sink, token
                    )
                if request.import_vouchers:
                    vouchers_result = VoucherMappingService(repos).import_vouchers(
                        batch_id, batch.company_id, document.vouchers.vouchers, request, sink, token
                    )
                status, error = "completed", None
            except ImportCancelled as exc:
                repos.session.rollback()
                status, error = "cancelled", exc.message
                logger.warning(f"Batch {batch.batch_number}: import cancelled")
            except MigrationError as exc:
                repos.session.rollback()
                status, error = "failed", exc.message
                logger.error(f"Batch {batch.batch_number}: import failed: {exc.message}")
            except Exception as exc:
                repos.session.rollback()
                status, error = "failed", f"Unexpected error: {exc}"
                logger.exception(f"Batch {batch.batch_number}: import failed")

            batch = self._batch(repos, batch_id)
            self._record_counts(repos, batch, vouchers_result)
            batch.status = status
            batch.error_message = error
            batch.import_completed_at = datetime.utcnow()
            batch.updated_at = batch.import_completed_at
            repos.session.commit()

        self.cache.evict(batch_id)
        with self._lock:
            self._tokens.pop(batch_id, None)
            self._progress.pop(batch_id, None)
            self._results.pop(batch_id, None)
            while len(self._results) >= self._max_results:
                # Oldest run goes first; counts stay readable from the log
                del self._results[next(iter(self._results))]
            self._results[batch_id] = (masters_result, vouchers_result)
        report_progress(progress, self.get_progress(batch_id))
        logger.info(f"Batch {batch_id}: import finished with status {status}")
        return self.get_result(batch_id)

    def start_import(
        self,
        batch_id: int,
        request: Optional[ImportRequest] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> ImportResult:
        request = request or ImportRequest()
        self.prepare_import(batch_id, request)
        return self.run_import(batch_id, request, progress)

    @staticmethod
    def _record_counts(repos: Repositories, batch: MigrationBatch,
                       vouchers_result: Optional[VoucherImportResult]) -> None:
        """Batch counters from the log, so partial runs are counted too."""
        for field in _IMPORTED_FIELDS.values():
            setattr(batch, field, 0)
        batch.imported_vouchers = batch.failed_masters = batch.failed_vouchers = 0
        suspense_entries, suspense_amount = 0, 0.0

        for log in repos.logs.for_batch(batch.id):
            is_voucher = log.record_type.startswith("voucher_")
            if log.status == "success":
                if is_voucher:
                    batch.imported_vouchers += 1
                elif log.record_type in _IMPORTED_FIELDS:
                    field = _IMPORTED_FIELDS[log.record_type]
                    setattr(batch, field, getattr(batch, field) + 1)
            elif log.status == "failed":
                if is_voucher:
                    batch.failed_vouchers += 1
                else:
                    batch.failed_masters += 1
            elif log.status == "mapped_to_suspense":
                suspense_entries += 1
                suspense_amount += abs(log.tally_amount or 0.0)

        if vouchers_result is not None:
            suspense_entries += vouchers_result.suspense_lines
            suspense_amount += vouchers_result.suspense_amount
        batch.suspense_entries_created = suspense_entries
        batch.suspense_total_amount = round(suspense_amount, 2)

    def cancel_import(self, batch_id: int) -> bool:
        with self._lock:
            token = self._tokens.get(batch_id)
        if token is None:
            with self._repos() as repos:
                batch = self._batch(repos, batch_id)
            raise ValidationError(f"Batch {batch.batch_number} is not importing")
        token.cancel()
        logger.info(f"Batch {batch_id}: cancellation requested")
        return True

    # ── queries ──────────────────────────────────────────────────────────────

    def get_progress(self, batch_id: int) -> ImportProgress:
        with self._lock:
            live = self._progress.get(batch_id)
        with self._repos() as repos:
            batch = self._batch(repos, batch_id)
            counts = repos.logs.count_by_status(batch_id)

        if live is not None and batch.status == "importing":
            progress = live.model_copy()
        else:
            succeeded = counts.get("success", 0)
            failed = counts.get("failed", 0)
            skipped = counts.get("skipped", 0)
            suspense = counts.get("mapped_to_suspense", 0)
            total = (
                batch.total_units + batch.total_stock_groups + batch.total_godowns
                + batch.total_cost_centers + batch.total_ledgers + batch.total_stock_items
                + batch.total_vouchers
            )
            processed = succeeded + failed + skipped + suspense
            done = batch.status in _TERMINAL
            percent = 100.0 if done else (round(min(processed / total, 1.0) * 100, 1) if total else 0.0)
            progress = ImportProgress(
                batch_id=batch_id,
                status=batch.status,
                current_phase=_PHASES.get(batch.status, batch.status),
                percent_complete=percent,
                processed_records=processed,
                total_records=total,
                succeeded=succeeded,
                failed=failed,
                skipped=skipped,
                suspense=suspense,
                message=batch.error_message,
            )

        if batch.status == "importing" and batch.import_started_at and 0 < progress.percent_complete < 100:
            elapsed = (datetime.utcnow() - batch.import_started_at).total_seconds()
            remaining = elapsed * (100 - progress.percent_complete) / progress.percent_complete
            progress.estimated_seconds_remaining = int(remaining)
        return progress

    def get_result(self, batch_id: int) -> ImportResult:
        with self._repos() as repos:
            batch = self._batch(repos, batch_id)
            counts = repos.logs.count_by_status(batch_id)
            failed = repos.logs.for_batch(batch_id, status="failed")
            suspense = repos.logs.for_batch(batch_id, status="mapped_to_suspense")
            with self._lock:
                masters, vouchers = self._results.get(batch_id, (None, None))
            return ImportResult(
                batch_id=batch.id,
                batch_number=batch.batch_number,
                status=batch.status,
                masters=masters,
                vouchers=vouchers,
                imported_count=counts.get("success", 0),
                failed_count=counts.get("failed", 0),
                skipped_count=counts.get("skipped", 0),
                suspense_count=batch.suspense_entries_created,
                suspense_amount=batch.suspense_total_amount,
                errors=[
                    FailedRecord(
                        record_type=log.record_type, tally_guid=log.tally_guid,
                        tally_name=log.tally_name, error_message=log.error_message,
                    )
                    for log in failed
                ],
                suspense_items=[
                    FailedRecord(
                        record_type=log.record_type, tally_guid=log.tally_guid,
                        tally_name=log.tally_name, error_message=log.error_message,
                    )
                    for log in suspense
                ],
                started_at=batch.import_started_at,
                completed_at=batch.import_completed_at,
                error_message=batch.error_message,
            )

    # ── rollback ─────────────────────────────────────────────────────────────

    def preview_rollback(self, batch_id: int) -> RollbackPreview:
        with self._repos() as repos:
            return RollbackService(repos).preview_rollback(batch_id)

    def rollback(self, batch_id: int, request: Optional[RollbackRequest] = None) -> RollbackResult:
        with self._audit(batch_id), self._repos() as repos:
            result = RollbackService(repos).rollback(batch_id, request)
        if result.success:
            self.cache.evict(batch_id)
            with self._lock:
                self._results.pop(batch_id, None)
        return result

    # ── listing ──────────────────────────────────────────────────────────────

    def list_batches(self, company_id: int, page: int = 1, page_size: int = 20,
                     status: Optional[str] = None) -> BatchListResponse:
        with self._repos() as repos:
            rows, total = repos.batches.page(company_id, page, page_size, status)
            return BatchListResponse(
                items=[BatchRead.model_validate(row) for row in rows],
                total=total, page=page, page_size=page_size,
            )

    def get_batch_detail(self, batch_id: int) -> BatchRead:
        with self._repos() as repos:
            return BatchRead.model_validate(self._batch(repos, batch_id))

    def get_logs(self, batch_id: int, page: int = 1, page_size: int = 50,
                 status: Optional[str] = None, record_type: Optional[str] = None) -> LogListResponse:
        with self._repos() as repos:
            self._batch(repos, batch_id)
            rows, total = repos.logs.page(batch_id, page, page_size, status, record_type)
            return LogListResponse(
                items=[LogRead.model_validate(row) for row in rows],
                total=total, page=page, page_size=page_size,
            )
