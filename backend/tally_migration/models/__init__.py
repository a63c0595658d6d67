from tally_migration.models.migration import MigrationBatch, MigrationLog, FieldMapping
from tally_migration.models.party import Party, VendorProfile, CustomerProfile, Tag, PartyTag
from tally_migration.models.accounting import (
    ChartOfAccount,
    BankAccount,
    JournalEntry,
    JournalEntryLine,
    BankTransaction,
    TransactionTag,
)
from tally_migration.models.inventory import Unit, StockGroup, Warehouse, StockItem
from tally_migration.models.documents import (
    Invoice,
    VendorInvoice,
    Payment,
    VendorPayment,
    ContractorPayment,
    StatutoryPayment,
    PaymentAllocation,
    StockMovement,
)

__all__ = [
    "MigrationBatch",
    "MigrationLog",
    "FieldMapping",
    "Party",
    "VendorProfile",
    "CustomerProfile",
    "Tag",
    "PartyTag",
    "ChartOfAccount",
    "BankAccount",
    "JournalEntry",
    "JournalEntryLine",
    "BankTransaction",
    "TransactionTag",
    "Unit",
    "StockGroup",
    "Warehouse",
    "StockItem",
    "Invoice",
    "VendorInvoice",
    "Payment",
    "VendorPayment",
    "ContractorPayment",
    "StatutoryPayment",
    "PaymentAllocation",
    "StockMovement",
]
