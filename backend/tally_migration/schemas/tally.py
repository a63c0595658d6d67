"""
Pydantic models for a parsed Tally export.

These are format-independent: the XML and JSON parsers both produce a
``ParsedDocument``. Amounts are signed (negative = credit), quantities are
non-negative magnitudes, and every optional field is ``None`` when the
export left it blank.
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class ValidationIssue(BaseModel):
    severity: str  # info | warning | error
    code: str
    message: str
    record_type: Optional[str] = None
    record_name: Optional[str] = None
    record_guid: Optional[str] = None
    field: Optional[str] = None
    actual_value: Optional[str] = None


# ── masters ──────────────────────────────────────────────────────────────────

class TallyGroup(BaseModel):
    guid: str = ""
    name: str
    parent: Optional[str] = None
    is_revenue: bool = False
    affects_gross_profit: bool = False


class TallyLedger(BaseModel):
    guid: str = ""
    name: str
    parent: Optional[str] = None
    alias: Optional[str] = None
    is_bill_wise_on: bool = False
    is_revenue: bool = False
    opening_balance: float = 0.0
    closing_balance: float = 0.0
    address: Optional[str] = None
    state_name: Optional[str] = None
    country_name: Optional[str] = None
    pincode: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    mobile_number: Optional[str] = None
    gstin: Optional[str] = None
    gst_registration_type: Optional[str] = None
    state_code: Optional[str] = None
    pan_number: Optional[str] = None
    bank_account_number: Optional[str] = None
    ifsc_code: Optional[str] = None
    bank_branch_name: Optional[str] = None
    credit_limit: Optional[float] = None
    credit_days: Optional[int] = None


class TallyStockGroup(BaseModel):
    guid: str = ""
    name: str
    parent: Optional[str] = None
    alias: Optional[str] = None
    is_addable: bool = True
    base_units: Optional[str] = None


class TallyStockItem(BaseModel):
    guid: str = ""
    name: str
    parent: Optional[str] = None
    alias: Optional[str] = None
    part_number: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    base_units: Optional[str] = None
    additional_units: Optional[str] = None
    conversion: Optional[float] = None
    opening_quantity: float = 0.0
    opening_rate: float = 0.0
    opening_value: float = 0.0
    closing_quantity: float = 0.0
    closing_rate: float = 0.0
    closing_value: float = 0.0
    gst_applicable: bool = False
    hsn_code: Optional[str] = None
    sac_code: Optional[str] = None
    gst_rate: Optional[float] = None
    igst_rate: Optional[float] = None
    cgst_rate: Optional[float] = None
    sgst_rate: Optional[float] = None
    cess_rate: Optional[float] = None
    is_batch_enabled: bool = False
    is_perishable: bool = False
    has_expiry_date: bool = False
    costing_method: Optional[str] = None
    standard_cost: Optional[float] = None
    standard_price: Optional[float] = None
    reorder_level: Optional[float] = None
    minimum_order_quantity: Optional[float] = None


class TallyGodown(BaseModel):
    guid: str = ""
    name: str
    parent: Optional[str] = None
    address: Optional[str] = None
    is_internal: bool = True
    has_no_stock: bool = False


class TallyUnit(BaseModel):
    guid: str = ""
    name: str
    symbol: Optional[str] = None
    formal_name: Optional[str] = None
    is_simple_unit: bool = True
    base_units: Optional[str] = None
    additional_units: Optional[str] = None
    conversion: Optional[float] = None
    decimal_places: int = 0


class TallyCostCategory(BaseModel):
    guid: str = ""
    name: str
    allocate_revenue: bool = True
    allocate_non_revenue: bool = False


class TallyCostCenter(BaseModel):
    guid: str = ""
    name: str
    parent: Optional[str] = None
    category: Optional[str] = None
    is_revenue_item: bool = False
    email: Optional[str] = None


class TallyCurrency(BaseModel):
    guid: str = ""
    name: str
    symbol: Optional[str] = None
    formal_name: Optional[str] = None
    iso_code: Optional[str] = None
    decimal_places: int = 2


class TallyVoucherType(BaseModel):
    guid: str = ""
    name: str
    parent: Optional[str] = None
    numbering_method: Optional[str] = None
    is_active: bool = True


# ── voucher parts ────────────────────────────────────────────────────────────

class BillAllocation(BaseModel):
    name: Optional[str] = None
    bill_type: Optional[str] = None  # New Ref | Agst Ref | Advance | On Account
    amount: float = 0.0
    bill_date: Optional[date] = None
    due_date: Optional[date] = None
    credit_period: Optional[str] = None


class CostAllocation(BaseModel):
    category: Optional[str] = None
    cost_center_name: Optional[str] = None
    cost_center_guid: Optional[str] = None
    amount: float = 0.0


class BatchAllocation(BaseModel):
    batch_name: Optional[str] = None
    godown_name: Optional[str] = None
    quantity: float = 0.0
    rate: float = 0.0
    amount: float = 0.0
    manufacturing_date: Optional[date] = None
    expiry_date: Optional[date] = None


class LedgerEntry(BaseModel):
    ledger_name: str
    ledger_guid: Optional[str] = None
    amount: float = 0.0
    is_party_ledger: bool = False
    cgst_amount: Optional[float] = None
    sgst_amount: Optional[float] = None
    igst_amount: Optional[float] = None
    cess_amount: Optional[float] = None
    tds_amount: Optional[float] = None
    tds_section: Optional[str] = None
    tds_rate: Optional[float] = None
    bill_allocations: list[BillAllocation] = Field(default_factory=list)
    cost_allocations: list[CostAllocation] = Field(default_factory=list)


class InventoryEntry(BaseModel):
    stock_item_name: str
    stock_item_guid: Optional[str] = None
    quantity: float = 0.0
    unit: Optional[str] = None
    rate: float = 0.0
    amount: float = 0.0
    discount: Optional[float] = None
    godown_name: Optional[str] = None
    destination_godown_name: Optional[str] = None
    hsn_code: Optional[str] = None
    gst_rate: Optional[float] = None
    order_number: Optional[str] = None
    order_date: Optional[date] = None
    batch_allocations: list[BatchAllocation] = Field(default_factory=list)


class TallyVoucher(BaseModel):
    guid: str = ""
    voucher_number: str = ""
    voucher_type: str = ""
    voucher_date: date
    reference_number: Optional[str] = None
    reference_date: Optional[date] = None
    narration: Optional[str] = None
    party_ledger_name: Optional[str] = None
    party_ledger_guid: Optional[str] = None
    amount: float = 0.0
    currency: Optional[str] = None
    exchange_rate: Optional[float] = None
    place_of_supply: Optional[str] = None
    is_reverse_charge: bool = False
    party_gstin: Optional[str] = None
    irn: Optional[str] = None
    eway_bill_number: Optional[str] = None
    is_cancelled: bool = False
    is_optional: bool = False
    is_post_dated: bool = False
    ledger_entries: list[LedgerEntry] = Field(default_factory=list)
    inventory_entries: list[InventoryEntry] = Field(default_factory=list)
    bill_allocations: list[BillAllocation] = Field(default_factory=list)
    cost_allocations: list[CostAllocation] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return f"{self.voucher_type}/{self.voucher_number}"


# ── document ─────────────────────────────────────────────────────────────────

class VoucherTypeSummary(BaseModel):
    count: int = 0
    amount: float = 0.0


class ParsedMasters(BaseModel):
    company_name: Optional[str] = None
    company_guid: Optional[str] = None
    books_from: Optional[date] = None
    books_to: Optional[date] = None
    groups: list[TallyGroup] = Field(default_factory=list)
    ledgers: list[TallyLedger] = Field(default_factory=list)
    stock_groups: list[TallyStockGroup] = Field(default_factory=list)
    stock_items: list[TallyStockItem] = Field(default_factory=list)
    godowns: list[TallyGodown] = Field(default_factory=list)
    units: list[TallyUnit] = Field(default_factory=list)
    cost_categories: list[TallyCostCategory] = Field(default_factory=list)
    cost_centers: list[TallyCostCenter] = Field(default_factory=list)
    currencies: list[TallyCurrency] = Field(default_factory=list)
    voucher_types: list[TallyVoucherType] = Field(default_factory=list)
    ledger_counts_by_group: dict[str, int] = Field(default_factory=dict)


class ParsedVouchers(BaseModel):
    vouchers: list[TallyVoucher] = Field(default_factory=list)
    counts_by_type: dict[str, VoucherTypeSummary] = Field(default_factory=dict)
    sales_count: int = 0
    sales_total: float = 0.0
    purchase_count: int = 0
    purchase_total: float = 0.0
    receipt_count: int = 0
    receipt_total: float = 0.0
    payment_count: int = 0
    payment_total: float = 0.0
    journal_count: int = 0
    contra_count: int = 0
    credit_note_count: int = 0
    debit_note_count: int = 0
    stock_journal_count: int = 0
    physical_stock_count: int = 0
    delivery_note_count: int = 0
    receipt_note_count: int = 0
    other_count: int = 0
    min_date: Optional[date] = None
    max_date: Optional[date] = None


class ParsedDocument(BaseModel):
    file_name: str
    # Raw upload size in bytes; not serialized
    file_size: int = Field(default=0, exclude=True)
    source_format: str = "xml"
    masters: ParsedMasters = Field(default_factory=ParsedMasters)
    vouchers: ParsedVouchers = Field(default_factory=ParsedVouchers)
    validation_issues: list[ValidationIssue] = Field(default_factory=list)
