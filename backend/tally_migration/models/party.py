"""SQLModel models for counterparties (customers, vendors, contractors) and tags."""
from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field


class Party(SQLModel, table=True):
    """A customer and/or vendor. A party may play both roles."""

    __tablename__ = "parties"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    name: str = Field(index=True)
    display_name: Optional[str] = None
    # individual | company | firm | llp | trust | government | aop
    party_type: str = Field(default="company")
    is_customer: bool = Field(default=False)
    is_vendor: bool = Field(default=False)
    is_employee: bool = Field(default=False)
    gstin: Optional[str] = Field(default=None, index=True)
    gst_registration_type: Optional[str] = None
    gst_state_code: Optional[str] = None
    pan_number: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address_line1: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    pincode: Optional[str] = None
    credit_limit: Optional[float] = None
    credit_days: Optional[int] = None
    opening_balance: float = Field(default=0.0)
    is_active: bool = Field(default=True)
    tally_guid: Optional[str] = Field(default=None, index=True)
    tally_ledger_name: Optional[str] = None
    tally_group_name: Optional[str] = None
    tally_migration_batch_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class VendorProfile(SQLModel, table=True):
    """Vendor-side terms: TDS defaults, payment terms and bank details."""

    __tablename__ = "vendor_profiles"

    id: Optional[int] = Field(default=None, primary_key=True)
    party_id: int = Field(foreign_key="parties.id", index=True)
    company_id: int = Field(index=True)
    vendor_type: str = Field(default="b2b")
    tds_applicable: bool = Field(default=False)
    default_tds_section: Optional[str] = None
    default_tds_rate: Optional[float] = None
    payment_terms_days: Optional[int] = None
    credit_limit: Optional[float] = None
    bank_account_number: Optional[str] = None
    bank_ifsc_code: Optional[str] = None
    bank_branch_name: Optional[str] = None
    payable_account_id: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class CustomerProfile(SQLModel, table=True):
    """Customer-side terms and the receivable control account."""

    __tablename__ = "customer_profiles"

    id: Optional[int] = Field(default=None, primary_key=True)
    party_id: int = Field(foreign_key="parties.id", index=True)
    company_id: int = Field(index=True)
    customer_type: str = Field(default="b2b")
    payment_terms_days: Optional[int] = None
    credit_limit: Optional[float] = None
    receivable_account_id: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Tag(SQLModel, table=True):
    """Hierarchical label; cost centres and auto-assigned party tags."""

    __tablename__ = "tags"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    name: str = Field(index=True)
    # cost_center | tds_section | party_type | compliance | ...
    tag_group: str = Field(default="cost_center", index=True)
    parent_tag_id: Optional[int] = None
    is_system: bool = Field(default=False)
    tally_cost_center_guid: Optional[str] = Field(default=None, index=True)
    tally_migration_batch_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class PartyTag(SQLModel, table=True):
    __tablename__ = "party_tags"

    id: Optional[int] = Field(default=None, primary_key=True)
    party_id: int = Field(foreign_key="parties.id", index=True)
    tag_id: int = Field(foreign_key="tags.id", index=True)
    source: str = Field(default="imported")
