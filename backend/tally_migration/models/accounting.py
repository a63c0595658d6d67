"""SQLModel models for the general ledger: accounts, journals, bank transactions."""
from typing import Optional
from datetime import date, datetime
from sqlmodel import SQLModel, Field


class ChartOfAccount(SQLModel, table=True):
    """General-ledger account."""

    __tablename__ = "chart_of_accounts"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    account_code: str = Field(index=True)
    account_name: str = Field(index=True)
    # asset | liability | equity | income | expense
    account_type: str
    account_sub_type: Optional[str] = None
    normal_balance: str = Field(default="debit")  # debit | credit
    description: Optional[str] = None
    opening_balance: float = Field(default=0.0)
    current_balance: float = Field(default=0.0)
    is_system_account: bool = Field(default=False)
    is_active: bool = Field(default=True)
    linked_party_id: Optional[int] = None
    linked_bank_account_id: Optional[int] = None
    tally_guid: Optional[str] = Field(default=None, index=True)
    tally_ledger_name: Optional[str] = Field(default=None, index=True)
    tally_group_name: Optional[str] = None
    tally_migration_batch_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class BankAccount(SQLModel, table=True):
    __tablename__ = "bank_accounts"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    account_name: str = Field(index=True)
    bank_name: Optional[str] = None
    account_number: Optional[str] = Field(default=None, index=True)
    ifsc_code: Optional[str] = None
    branch_name: Optional[str] = None
    account_type: str = Field(default="current")  # current | savings | od | cc
    opening_balance: float = Field(default=0.0)
    current_balance: float = Field(default=0.0)
    ledger_account_id: Optional[int] = None
    is_active: bool = Field(default=True)
    tally_guid: Optional[str] = Field(default=None, index=True)
    tally_ledger_name: Optional[str] = None
    tally_migration_batch_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class JournalEntry(SQLModel, table=True):
    """Double-entry journal header; lines must balance."""

    __tablename__ = "journal_entries"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    journal_number: str = Field(index=True)
    journal_date: date = Field(index=True)
    period_month: str  # YYYY-MM
    description: Optional[str] = None
    # journal | sales | purchase | receipt | payment | stock_journal | ...
    source_type: str = Field(default="journal")
    source_id: Optional[int] = None
    source_number: Optional[str] = None
    total_debit: float = Field(default=0.0)
    total_credit: float = Field(default=0.0)
    status: str = Field(default="posted")  # posted | cancelled
    tally_voucher_guid: Optional[str] = Field(default=None, index=True)
    tally_voucher_number: Optional[str] = None
    tally_voucher_type: Optional[str] = None
    tally_migration_batch_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class JournalEntryLine(SQLModel, table=True):
    __tablename__ = "journal_entry_lines"

    id: Optional[int] = Field(default=None, primary_key=True)
    journal_entry_id: int = Field(foreign_key="journal_entries.id", index=True)
    account_id: int = Field(index=True)
    line_number: int = Field(default=1)
    description: Optional[str] = None
    debit_amount: float = Field(default=0.0)
    credit_amount: float = Field(default=0.0)
    is_suspense: bool = Field(default=False)
    tally_ledger_name: Optional[str] = None


class BankTransaction(SQLModel, table=True):
    """One movement on a bank account, keyed by voucher GUID (or GUID_index)."""

    __tablename__ = "bank_transactions"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    bank_account_id: int = Field(index=True)
    transaction_date: date
    value_date: Optional[date] = None
    transaction_type: str  # debit | credit
    amount: float
    reference_number: Optional[str] = None
    cheque_number: Optional[str] = None
    description: Optional[str] = None
    category: str = Field(default="other")
    is_reconciled: bool = Field(default=False)
    import_source: str = Field(default="tally_import")
    matched_entity_type: Optional[str] = None
    matched_entity_id: Optional[int] = None
    tally_voucher_guid: Optional[str] = Field(default=None, index=True)
    tally_voucher_number: Optional[str] = None
    tally_migration_batch_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class TransactionTag(SQLModel, table=True):
    """Cost-centre allocation of a transaction to a tag."""

    __tablename__ = "transaction_tags"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    transaction_type: str = Field(index=True)  # invoices | vendor_invoices | journal_entries ...
    transaction_id: int = Field(index=True)
    tag_id: int = Field(index=True)
    allocated_amount: float = Field(default=0.0)
    allocation_percentage: Optional[float] = None
    allocation_method: str = Field(default="amount")
    source: str = Field(default="imported")
    created_at: datetime = Field(default_factory=datetime.utcnow)
