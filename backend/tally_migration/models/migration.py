"""SQLModel models for migration bookkeeping: batches, per-record logs, field mappings."""
from typing import Optional
from datetime import date, datetime
from sqlmodel import SQLModel, Field


class MigrationBatch(SQLModel, table=True):
    """One upload-to-import run of a Tally export."""

    __tablename__ = "migration_batches"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    batch_number: str = Field(index=True, unique=True)
    import_type: str = Field(default="full")  # full | masters | vouchers
    source_file_name: Optional[str] = None
    source_file_size: int = Field(default=0)
    source_format: str = Field(default="xml")  # xml | json
    # uploading → parsing → preview → mapping → importing → completed
    # plus failed, cancelled, rolled_back
    status: str = Field(default="uploading", index=True)

    tally_company_name: Optional[str] = None
    tally_company_guid: Optional[str] = None
    tally_from_date: Optional[date] = None
    tally_to_date: Optional[date] = None

    total_ledgers: int = Field(default=0)
    total_groups: int = Field(default=0)
    total_stock_items: int = Field(default=0)
    total_stock_groups: int = Field(default=0)
    total_godowns: int = Field(default=0)
    total_units: int = Field(default=0)
    total_cost_centers: int = Field(default=0)
    total_vouchers: int = Field(default=0)

    imported_ledgers: int = Field(default=0)
    imported_stock_items: int = Field(default=0)
    imported_stock_groups: int = Field(default=0)
    imported_godowns: int = Field(default=0)
    imported_units: int = Field(default=0)
    imported_cost_centers: int = Field(default=0)
    imported_vouchers: int = Field(default=0)
    failed_masters: int = Field(default=0)
    failed_vouchers: int = Field(default=0)

    suspense_entries_created: int = Field(default=0)
    suspense_total_amount: float = Field(default=0.0)

    can_proceed: bool = Field(default=False)
    validation_error_count: int = Field(default=0)
    validation_warning_count: int = Field(default=0)

    upload_started_at: Optional[datetime] = None
    parsing_completed_at: Optional[datetime] = None
    mapping_completed_at: Optional[datetime] = None
    import_started_at: Optional[datetime] = None
    import_completed_at: Optional[datetime] = None
    rolled_back_at: Optional[datetime] = None

    error_message: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class MigrationLog(SQLModel, table=True):
    """Outcome of one source record within a batch."""

    __tablename__ = "migration_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    batch_id: int = Field(foreign_key="migration_batches.id", index=True)
    # ledger, stock_item, voucher_sales, voucher_payment, ...
    record_type: str = Field(index=True)
    tally_guid: Optional[str] = Field(default=None, index=True)
    tally_name: Optional[str] = None
    tally_date: Optional[date] = None
    tally_amount: Optional[float] = None
    # success | failed | skipped | mapped_to_suspense
    status: str = Field(index=True)
    error_message: Optional[str] = None
    target_id: Optional[int] = None
    target_entity: Optional[str] = None
    # Creation order within the batch; rollback walks it in reverse
    processing_order: int = Field(default=0, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class FieldMapping(SQLModel, table=True):
    """Company-scoped rule routing a Tally group or ledger to a target entity."""

    __tablename__ = "field_mappings"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    mapping_type: str = Field(default="ledger_group")  # ledger_group | ledger | cost_category
    tally_group_name: Optional[str] = Field(default=None, index=True)
    tally_name: Optional[str] = Field(default=None, index=True)
    # customers | vendors | chart_of_accounts | bank_accounts | tags | suspense
    target_entity: str
    target_account_type: Optional[str] = None
    target_account_id: Optional[int] = None
    target_tag_group: Optional[str] = None
    tag_assignments: Optional[str] = None  # JSON array of "Group:Name"
    priority: int = Field(default=0)
    is_active: bool = Field(default=True)
    is_system_default: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
