"""SQLModel models for transactional documents created from vouchers."""
from typing import Optional
from datetime import date, datetime
from sqlmodel import SQLModel, Field


class Invoice(SQLModel, table=True):
    """Sales invoice or credit note (negative total)."""

    __tablename__ = "invoices"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    party_id: Optional[int] = Field(default=None, index=True)
    invoice_number: str = Field(index=True)
    invoice_date: date
    due_date: Optional[date] = None
    invoice_type: str = Field(default="tax_invoice")  # tax_invoice | credit_note
    place_of_supply: Optional[str] = None
    is_reverse_charge: bool = Field(default=False)
    subtotal: float = Field(default=0.0)
    tax_amount: float = Field(default=0.0)
    total_amount: float = Field(default=0.0)
    status: str = Field(default="paid")
    irn: Optional[str] = None
    e_way_bill_number: Optional[str] = None
    notes: Optional[str] = None
    journal_entry_id: Optional[int] = None
    tally_voucher_guid: Optional[str] = Field(default=None, index=True)
    tally_voucher_number: Optional[str] = None
    tally_migration_batch_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class VendorInvoice(SQLModel, table=True):
    """Purchase bill or debit note (negative total)."""

    __tablename__ = "vendor_invoices"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    party_id: Optional[int] = Field(default=None, index=True)
    invoice_number: str = Field(index=True)
    vendor_invoice_number: Optional[str] = None
    invoice_date: date
    due_date: Optional[date] = None
    invoice_type: str = Field(default="purchase")  # purchase | debit_note
    subtotal: float = Field(default=0.0)
    tax_amount: float = Field(default=0.0)
    tds_amount: float = Field(default=0.0)
    total_amount: float = Field(default=0.0)
    status: str = Field(default="approved")
    notes: Optional[str] = None
    journal_entry_id: Optional[int] = None
    tally_voucher_guid: Optional[str] = Field(default=None, index=True)
    tally_voucher_number: Optional[str] = None
    tally_migration_batch_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Payment(SQLModel, table=True):
    """Money received from a customer (Receipt voucher)."""

    __tablename__ = "payments"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    party_id: Optional[int] = Field(default=None, index=True)
    payment_number: str
    payment_date: date
    amount: float
    payment_method: str = Field(default="bank_transfer")
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    status: str = Field(default="completed")
    journal_entry_id: Optional[int] = None
    tally_voucher_guid: Optional[str] = Field(default=None, index=True)
    tally_migration_batch_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class VendorPayment(SQLModel, table=True):
    __tablename__ = "vendor_payments"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    party_id: int = Field(index=True)
    payment_number: str
    payment_date: date
    amount: float
    tds_amount: float = Field(default=0.0)
    payment_method: str = Field(default="bank_transfer")
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    status: str = Field(default="processed")
    journal_entry_id: Optional[int] = None
    tally_voucher_guid: Optional[str] = Field(default=None, index=True)
    tally_migration_batch_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ContractorPayment(SQLModel, table=True):
    """Payment to a contractor or professional with TDS withheld."""

    __tablename__ = "contractor_payments"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    party_id: int = Field(index=True)
    payment_date: date
    payment_month: int
    payment_year: int
    gross_amount: float
    tds_section: str
    tds_rate: float
    tds_amount: float
    net_payable: float
    contractor_type: str = Field(default="individual")
    payment_mode: str = Field(default="bank_transfer")
    reference_number: Optional[str] = None
    narration: Optional[str] = None
    status: str = Field(default="paid")
    journal_entry_id: Optional[int] = None
    tally_voucher_guid: Optional[str] = Field(default=None, index=True)
    tally_voucher_number: Optional[str] = None
    tally_migration_batch_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class StatutoryPayment(SQLModel, table=True):
    """Remittance of TDS, PF, ESI or professional tax to the government."""

    __tablename__ = "statutory_payments"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    payment_type: str  # TDS_192 | TDS_194C | TDS_194J | PF | ESI | PT
    payment_category: str = Field(default="regular")
    period_month: int
    period_year: int
    quarter: str
    financial_year: str
    principal_amount: float
    interest_amount: float = Field(default=0.0)
    penalty_amount: float = Field(default=0.0)
    total_amount: float
    payment_date: date
    due_date: date
    payment_mode: str = Field(default="online")
    bank_account_id: Optional[int] = None
    reference_number: Optional[str] = None
    bank_reference: Optional[str] = None
    trrn: Optional[str] = None
    challan_number: Optional[str] = None
    narration: Optional[str] = None
    status: str = Field(default="paid")
    journal_entry_id: Optional[int] = None
    tally_voucher_guid: Optional[str] = Field(default=None, index=True)
    tally_voucher_number: Optional[str] = None
    tally_migration_batch_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class PaymentAllocation(SQLModel, table=True):
    """Link between a receipt/payment and the bill it settles (Agst Ref)."""

    __tablename__ = "payment_allocations"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    payment_entity: str  # payments | vendor_payments
    payment_id: int = Field(index=True)
    invoice_entity: str  # invoices | vendor_invoices
    invoice_id: int = Field(index=True)
    bill_reference: Optional[str] = None
    amount: float = Field(default=0.0)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class StockMovement(SQLModel, table=True):
    """Quantity movement from a sales/purchase/stock voucher inventory line."""

    __tablename__ = "stock_movements"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    stock_item_id: int = Field(index=True)
    warehouse_id: Optional[int] = None
    movement_date: date
    movement_type: str  # in | out
    quantity: float
    rate: float = Field(default=0.0)
    value: float = Field(default=0.0)
    source_entity: Optional[str] = None
    source_id: Optional[int] = None
    tally_voucher_guid: Optional[str] = Field(default=None, index=True)
    tally_migration_batch_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
