"""SQLModel models for inventory masters."""
from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field


class Unit(SQLModel, table=True):
    """Unit of measure (UNIT node)."""

    __tablename__ = "units"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    name: str = Field(index=True)
    symbol: str
    decimal_places: int = Field(default=0)
    is_compound: bool = Field(default=False)
    base_unit_id: Optional[int] = None
    conversion_factor: Optional[float] = None
    tally_guid: Optional[str] = Field(default=None, index=True)
    tally_migration_batch_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class StockGroup(SQLModel, table=True):
    __tablename__ = "stock_groups"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    name: str = Field(index=True)
    parent_group_id: Optional[int] = None
    is_addable: bool = Field(default=True)
    tally_guid: Optional[str] = Field(default=None, index=True)
    tally_migration_batch_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Warehouse(SQLModel, table=True):
    """Godown."""

    __tablename__ = "warehouses"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    name: str = Field(index=True)
    code: str
    address: Optional[str] = None
    parent_warehouse_id: Optional[int] = None
    is_active: bool = Field(default=True)
    tally_guid: Optional[str] = Field(default=None, index=True)
    tally_migration_batch_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class StockItem(SQLModel, table=True):
    __tablename__ = "stock_items"

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: int = Field(index=True)
    name: str = Field(index=True)
    sku: str = Field(index=True)
    description: Optional[str] = None
    stock_group_id: Optional[int] = None
    base_unit_id: Optional[int] = None
    hsn_sac_code: Optional[str] = None
    gst_rate: float = Field(default=18.0)
    opening_quantity: float = Field(default=0.0)
    opening_rate: float = Field(default=0.0)
    opening_value: float = Field(default=0.0)
    current_quantity: float = Field(default=0.0)
    purchase_price: float = Field(default=0.0)
    selling_price: float = Field(default=0.0)
    reorder_level: float = Field(default=0.0)
    valuation_method: str = Field(default="weighted_average")  # fifo | lifo | weighted_average | standard
    is_batch_enabled: bool = Field(default=False)
    has_expiry: bool = Field(default=False)
    is_active: bool = Field(default=True)
    tally_guid: Optional[str] = Field(default=None, index=True)
    tally_migration_batch_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
