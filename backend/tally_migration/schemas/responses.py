"""Pydantic schemas for migration service results and API endpoints."""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from tally_migration.schemas.tally import ValidationIssue


class HealthResponse(BaseModel):
    status: str
    db: str
    version: str = "1.0.0"
    cached_documents: int = 0


# ── import counts ────────────────────────────────────────────────────────────

class ImportCounts(BaseModel):
    total: int = 0
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    suspense: int = 0


class MasterImportResult(BaseModel):
    units: ImportCounts = Field(default_factory=ImportCounts)
    stock_groups: ImportCounts = Field(default_factory=ImportCounts)
    godowns: ImportCounts = Field(default_factory=ImportCounts)
    cost_centers: ImportCounts = Field(default_factory=ImportCounts)
    ledgers: ImportCounts = Field(default_factory=ImportCounts)
    stock_items: ImportCounts = Field(default_factory=ImportCounts)
    total_imported: int = 0
    total_skipped: int = 0
    total_failed: int = 0
    total_suspense: int = 0


class VoucherImportResult(BaseModel):
    by_voucher_type: dict[str, ImportCounts] = Field(default_factory=dict)
    total_imported: int = 0
    total_skipped: int = 0
    total_failed: int = 0
    total_debit_amount: float = 0.0
    total_credit_amount: float = 0.0
    suspense_lines: int = 0
    suspense_amount: float = 0.0


# ── validation ───────────────────────────────────────────────────────────────

class DuplicateCheckResult(BaseModel):
    duplicate_ledgers: int = 0
    duplicate_stock_items: int = 0
    duplicate_vouchers: int = 0
    duplicate_ledger_names: list[str] = Field(default_factory=list)


class ValidationResult(BaseModel):
    is_valid: bool
    can_proceed: bool
    error_count: int = 0
    warning_count: int = 0
    info_count: int = 0
    issues: list[ValidationIssue] = Field(default_factory=list)
    duplicates: DuplicateCheckResult = Field(default_factory=DuplicateCheckResult)


# ── mapping configuration / import request ───────────────────────────────────

class GroupMappingIn(BaseModel):
    tally_group_name: str
    target_entity: str
    target_account_type: Optional[str] = None
    tag_assignments: list[str] = Field(default_factory=list)


class LedgerMappingIn(BaseModel):
    tally_ledger_name: str
    target_entity: str
    target_account_type: Optional[str] = None
    target_account_id: Optional[int] = None


class CostCategoryMappingIn(BaseModel):
    tally_cost_category: str
    target_tag_group: str


class MappingConfig(BaseModel):
    group_mappings: list[GroupMappingIn] = Field(default_factory=list)
    ledger_mappings: list[LedgerMappingIn] = Field(default_factory=list)
    cost_category_mappings: list[CostCategoryMappingIn] = Field(default_factory=list)


class ImportRequest(BaseModel):
    import_masters: bool = True
    import_vouchers: bool = True
    from_date: Optional[date] = None
    to_date: Optional[date] = None
    # Empty = every voucher type
    voucher_types: list[str] = Field(default_factory=list)
    ignore_validation_errors: bool = False


# ── progress / result ────────────────────────────────────────────────────────

class ImportProgress(BaseModel):
    batch_id: int
    status: str
    current_phase: str
    percent_complete: float = 0.0
    processed_records: int = 0
    total_records: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    suspense: int = 0
    message: Optional[str] = None
    estimated_seconds_remaining: Optional[int] = None


class FailedRecord(BaseModel):
    record_type: str
    tally_guid: Optional[str] = None
    tally_name: Optional[str] = None
    error_message: Optional[str] = None


class ImportResult(BaseModel):
    batch_id: int
    batch_number: str
    status: str
    masters: Optional[MasterImportResult] = None
    vouchers: Optional[VoucherImportResult] = None
    imported_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    suspense_count: int = 0
    suspense_amount: float = 0.0
    errors: list[FailedRecord] = Field(default_factory=list)
    suspense_items: list[FailedRecord] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None


# ── rollback ─────────────────────────────────────────────────────────────────

class RollbackRequest(BaseModel):
    delete_masters: bool = True
    delete_transactions: bool = True
    reason: Optional[str] = None


class RollbackPreview(BaseModel):
    batch_id: int
    can_rollback: bool
    blocking_reason: Optional[str] = None
    counts_by_entity: dict[str, int] = Field(default_factory=dict)
    masters_count: int = 0
    transactions_count: int = 0
    journal_entries_count: int = 0
    dependent_transactions_count: int = 0


class RollbackResult(BaseModel):
    batch_id: int
    success: bool
    masters_deleted: int = 0
    transactions_deleted: int = 0
    journal_entries_deleted: int = 0
    errors: list[str] = Field(default_factory=list)
    rolled_back_at: Optional[datetime] = None


# ── batches / logs ───────────────────────────────────────────────────────────

class UploadResponse(BaseModel):
    batch_id: int
    batch_number: str
    status: str
    source_format: str
    company_name: Optional[str] = None
    total_ledgers: int = 0
    total_stock_items: int = 0
    total_vouchers: int = 0
    can_proceed: bool = False
    validation: Optional[ValidationResult] = None


class BatchRead(BaseModel):
    id: int
    company_id: int
    batch_number: str
    import_type: str
    source_file_name: Optional[str]
    source_file_size: int
    source_format: str
    status: str
    tally_company_name: Optional[str]
    tally_from_date: Optional[date]
    tally_to_date: Optional[date]
    total_ledgers: int
    total_stock_items: int
    total_vouchers: int
    imported_ledgers: int
    imported_stock_items: int
    imported_vouchers: int
    failed_masters: int
    failed_vouchers: int
    suspense_entries_created: int
    can_proceed: bool
    error_message: Optional[str]
    upload_started_at: Optional[datetime]
    parsing_completed_at: Optional[datetime]
    mapping_completed_at: Optional[datetime]
    import_started_at: Optional[datetime]
    import_completed_at: Optional[datetime]
    rolled_back_at: Optional[datetime]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BatchListResponse(BaseModel):
    items: list[BatchRead]
    total: int
    page: int
    page_size: int


class LogRead(BaseModel):
    id: int
    record_type: str
    tally_guid: Optional[str]
    tally_name: Optional[str]
    tally_date: Optional[date]
    tally_amount: Optional[float]
    status: str
    error_message: Optional[str]
    target_id: Optional[int]
    target_entity: Optional[str]
    processing_order: int

    model_config = ConfigDict(from_attributes=True)


class LogListResponse(BaseModel):
    items: list[LogRead]
    total: int
    page: int
    page_size: int
