"""
Repository layer over the SQLModel session.

Each repository wraps one table and exposes the lookups the migration
services need: by id, by Tally GUID, by case-insensitive name, plus a few
specialised finders. Writes only flush; callers decide when to commit.
"""
from __future__ import annotations

from typing import Generic, Optional, Type, TypeVar

from sqlalchemy import func
from sqlmodel import SQLModel, Session, select

from tally_migration.models import (
    BankAccount,
    BankTransaction,
    ChartOfAccount,
    ContractorPayment,
    CustomerProfile,
    FieldMapping,
    Invoice,
    JournalEntry,
    JournalEntryLine,
    MigrationBatch,
    MigrationLog,
    Party,
    PartyTag,
    Payment,
    PaymentAllocation,
    StatutoryPayment,
    StockGroup,
    StockItem,
    StockMovement,
    Tag,
    TransactionTag,
    Unit,
    VendorInvoice,
    VendorPayment,
    VendorProfile,
    Warehouse,
)

ModelT = TypeVar("ModelT", bound=SQLModel)


class Repository(Generic[ModelT]):
    model: Type[ModelT]
    name_field: str = "name"
    guid_field: str = "tally_guid"

    def __init__(self, session: Session):
        self.session = session

    def get(self, entity_id: int) -> Optional[ModelT]:
        return self.session.get(self.model, entity_id)

    def get_by_tally_guid(self, company_id: int, guid: Optional[str]) -> Optional[ModelT]:
        # An empty GUID never identifies anything
        if not guid:
            return None
        column = getattr(self.model, self.guid_field)
        stmt = select(self.model).where(
            self.model.company_id == company_id, column == guid
        )
        return self.session.exec(stmt).first()

    def get_by_name(self, company_id: int, name: Optional[str]) -> Optional[ModelT]:
        if not name:
            return None
        column = getattr(self.model, self.name_field)
        stmt = select(self.model).where(
            self.model.company_id == company_id,
            func.lower(column) == name.strip().lower(),
        )
        return self.session.exec(stmt).first()

    def list_for_company(self, company_id: int) -> list[ModelT]:
        stmt = select(self.model).where(self.model.company_id == company_id)
        return list(self.session.exec(stmt).all())

    def list_for_batch(self, batch_id: int) -> list[ModelT]:
        stmt = select(self.model).where(self.model.tally_migration_batch_id == batch_id)
        return list(self.session.exec(stmt).all())

    def add(self, obj: ModelT) -> ModelT:
        self.session.add(obj)
        self.session.flush()
        return obj

    def update(self, obj: ModelT) -> ModelT:
        self.session.add(obj)
        self.session.flush()
        return obj

    def delete(self, entity_id: int) -> bool:
        obj = self.get(entity_id)
        if obj is None:
            return False
        self.session.delete(obj)
        self.session.flush()
        return True


# ── masters ──────────────────────────────────────────────────────────────────

class PartyRepository(Repository[Party]):
    model = Party

    def get_vendor_profile(self, party_id: int) -> Optional[VendorProfile]:
        stmt = select(VendorProfile).where(VendorProfile.party_id == party_id)
        return self.session.exec(stmt).first()

    def get_customer_profile(self, party_id: int) -> Optional[CustomerProfile]:
        stmt = select(CustomerProfile).where(CustomerProfile.party_id == party_id)
        return self.session.exec(stmt).first()

    def add_vendor_profile(self, profile: VendorProfile) -> VendorProfile:
        self.session.add(profile)
        self.session.flush()
        return profile

    def add_customer_profile(self, profile: CustomerProfile) -> CustomerProfile:
        self.session.add(profile)
        self.session.flush()
        return profile

    def add_tag(self, party_id: int, tag_id: int) -> None:
        stmt = select(PartyTag).where(PartyTag.party_id == party_id, PartyTag.tag_id == tag_id)
        if self.session.exec(stmt).first() is None:
            self.session.add(PartyTag(party_id=party_id, tag_id=tag_id))
            self.session.flush()

    def tags_for(self, party_id: int) -> list[Tag]:
        stmt = (
            select(Tag)
            .join(PartyTag, PartyTag.tag_id == Tag.id)
            .where(PartyTag.party_id == party_id)
        )
        return list(self.session.exec(stmt).all())

    def delete(self, entity_id: int) -> bool:
        for model in (VendorProfile, CustomerProfile, PartyTag):
            for row in self.session.exec(select(model).where(model.party_id == entity_id)).all():
                self.session.delete(row)
        return super().delete(entity_id)


class ChartOfAccountRepository(Repository[ChartOfAccount]):
    model = ChartOfAccount
    name_field = "account_name"

    SUSPENSE_CODE = "SUSPENSE-IMPORT"

    def get_by_code(self, company_id: int, code: str) -> Optional[ChartOfAccount]:
        stmt = select(ChartOfAccount).where(
            ChartOfAccount.company_id == company_id, ChartOfAccount.account_code == code
        )
        return self.session.exec(stmt).first()

    def get_by_tally_ledger_name(self, company_id: int, name: Optional[str]) -> Optional[ChartOfAccount]:
        if not name:
            return None
        stmt = select(ChartOfAccount).where(
            ChartOfAccount.company_id == company_id,
            func.lower(ChartOfAccount.tally_ledger_name) == name.strip().lower(),
        )
        return self.session.exec(stmt).first()

    def get_suspense_account(self, company_id: int) -> Optional[ChartOfAccount]:
        return self.get_by_code(company_id, self.SUSPENSE_CODE)


class BankAccountRepository(Repository[BankAccount]):
    model = BankAccount
    name_field = "account_name"

    def get_by_account_number(self, company_id: int, number: Optional[str]) -> Optional[BankAccount]:
        if not number:
            return None
        stmt = select(BankAccount).where(
            BankAccount.company_id == company_id, BankAccount.account_number == number
        )
        return self.session.exec(stmt).first()

    def get_by_tally_ledger_name(self, company_id: int, name: Optional[str]) -> Optional[BankAccount]:
        if not name:
            return None
        stmt = select(BankAccount).where(
            BankAccount.company_id == company_id,
            func.lower(BankAccount.tally_ledger_name) == name.strip().lower(),
        )
        return self.session.exec(stmt).first()


class UnitRepository(Repository[Unit]):
    model = Unit

    def get_by_name(self, company_id: int, name: Optional[str]) -> Optional[Unit]:
        # Tally refers to units by symbol ("Nos") as often as by name
        if not name:
            return None
        key = name.strip().lower()
        stmt = select(Unit).where(
            Unit.company_id == company_id,
            (func.lower(Unit.name) == key) | (func.lower(Unit.symbol) == key),
        )
        return self.session.exec(stmt).first()


class StockGroupRepository(Repository[StockGroup]):
    model = StockGroup


class StockItemRepository(Repository[StockItem]):
    model = StockItem


class WarehouseRepository(Repository[Warehouse]):
    model = Warehouse


class TagRepository(Repository[Tag]):
    model = Tag
    guid_field = "tally_cost_center_guid"

    def get_by_name_and_group(self, company_id: int, name: str, tag_group: str) -> Optional[Tag]:
        stmt = select(Tag).where(
            Tag.company_id == company_id,
            func.lower(Tag.name) == name.strip().lower(),
            Tag.tag_group == tag_group,
        )
        return self.session.exec(stmt).first()

    def delete(self, entity_id: int) -> bool:
        for row in self.session.exec(select(PartyTag).where(PartyTag.tag_id == entity_id)).all():
            self.session.delete(row)
        return super().delete(entity_id)


# ── transactions ─────────────────────────────────────────────────────────────

class _VoucherDocumentRepository(Repository[ModelT]):
    guid_field = "tally_voucher_guid"


class InvoiceRepository(_VoucherDocumentRepository[Invoice]):
    model = Invoice
    name_field = "invoice_number"

    def get_by_number(self, company_id: int, number: Optional[str]) -> Optional[Invoice]:
        return self.get_by_name(company_id, number)


class VendorInvoiceRepository(_VoucherDocumentRepository[VendorInvoice]):
    model = VendorInvoice
    name_field = "invoice_number"

    def get_by_number(self, company_id: int, number: Optional[str]) -> Optional[VendorInvoice]:
        if not number:
            return None
        key = number.strip().lower()
        stmt = select(VendorInvoice).where(
            VendorInvoice.company_id == company_id,
            (func.lower(VendorInvoice.invoice_number) == key)
            | (func.lower(VendorInvoice.vendor_invoice_number) == key),
        )
        return self.session.exec(stmt).first()


class PaymentRepository(_VoucherDocumentRepository[Payment]):
    model = Payment
    name_field = "payment_number"


class VendorPaymentRepository(_VoucherDocumentRepository[VendorPayment]):
    model = VendorPayment
    name_field = "payment_number"


class ContractorPaymentRepository(_VoucherDocumentRepository[ContractorPayment]):
    model = ContractorPayment
    name_field = "tally_voucher_number"


class StatutoryPaymentRepository(_VoucherDocumentRepository[StatutoryPayment]):
    model = StatutoryPayment
    name_field = "tally_voucher_number"


class StockMovementRepository(_VoucherDocumentRepository[StockMovement]):
    model = StockMovement


class JournalEntryRepository(_VoucherDocumentRepository[JournalEntry]):
    model = JournalEntry
    name_field = "journal_number"

    def add_line(self, line: JournalEntryLine) -> JournalEntryLine:
        self.session.add(line)
        self.session.flush()
        return line

    def lines_for(self, journal_entry_id: int) -> list[JournalEntryLine]:
        stmt = (
            select(JournalEntryLine)
            .where(JournalEntryLine.journal_entry_id == journal_entry_id)
            .order_by(JournalEntryLine.line_number)
        )
        return list(self.session.exec(stmt).all())

    def get_by_source(self, source_type: str, source_id: int) -> list[JournalEntry]:
        stmt = select(JournalEntry).where(
            JournalEntry.source_type == source_type, JournalEntry.source_id == source_id
        )
        return list(self.session.exec(stmt).all())

    def delete(self, entity_id: int) -> bool:
        for line in self.lines_for(entity_id):
            self.session.delete(line)
        return super().delete(entity_id)


class BankTransactionRepository(_VoucherDocumentRepository[BankTransaction]):
    model = BankTransaction
    name_field = "reference_number"

    def get_by_matched_entity(self, entity_type: str, entity_id: int) -> list[BankTransaction]:
        stmt = select(BankTransaction).where(
            BankTransaction.matched_entity_type == entity_type,
            BankTransaction.matched_entity_id == entity_id,
        )
        return list(self.session.exec(stmt).all())


class TransactionTagRepository(Repository[TransactionTag]):
    model = TransactionTag

    def for_transaction(self, transaction_type: str, transaction_id: int) -> list[TransactionTag]:
        stmt = select(TransactionTag).where(
            TransactionTag.transaction_type == transaction_type,
            TransactionTag.transaction_id == transaction_id,
        )
        return list(self.session.exec(stmt).all())


class PaymentAllocationRepository(Repository[PaymentAllocation]):
    model = PaymentAllocation

    def for_payment(self, payment_entity: str, payment_id: int) -> list[PaymentAllocation]:
        stmt = select(PaymentAllocation).where(
            PaymentAllocation.payment_entity == payment_entity,
            PaymentAllocation.payment_id == payment_id,
        )
        return list(self.session.exec(stmt).all())

    def for_invoice(self, invoice_entity: str, invoice_id: int) -> list[PaymentAllocation]:
        stmt = select(PaymentAllocation).where(
            PaymentAllocation.invoice_entity == invoice_entity,
            PaymentAllocation.invoice_id == invoice_id,
        )
        return list(self.session.exec(stmt).all())


# ── migration bookkeeping ────────────────────────────────────────────────────

class MigrationBatchRepository(Repository[MigrationBatch]):
    model = MigrationBatch
    name_field = "batch_number"

    def page(
        self,
        company_id: int,
        page: int,
        page_size: int,
        status: Optional[str] = None,
    ) -> tuple[list[MigrationBatch], int]:
        stmt = select(MigrationBatch).where(MigrationBatch.company_id == company_id)
        count_stmt = select(func.count()).select_from(MigrationBatch).where(
            MigrationBatch.company_id == company_id
        )
        if status:
            stmt = stmt.where(MigrationBatch.status == status)
            count_stmt = count_stmt.where(MigrationBatch.status == status)
        total = self.session.exec(count_stmt).one()
        rows = self.session.exec(
            stmt.order_by(MigrationBatch.created_at.desc(), MigrationBatch.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return list(rows), total


class MigrationLogRepository(Repository[MigrationLog]):
    model = MigrationLog
    name_field = "tally_name"

    def for_batch(
        self,
        batch_id: int,
        status: Optional[str] = None,
        record_type: Optional[str] = None,
        newest_first: bool = False,
    ) -> list[MigrationLog]:
        stmt = select(MigrationLog).where(MigrationLog.batch_id == batch_id)
        if status:
            stmt = stmt.where(MigrationLog.status == status)
        if record_type:
            stmt = stmt.where(MigrationLog.record_type == record_type)
        order = MigrationLog.processing_order.desc() if newest_first else MigrationLog.processing_order
        return list(self.session.exec(stmt.order_by(order, MigrationLog.id)).all())

    def page(
        self,
        batch_id: int,
        page: int,
        page_size: int,
        status: Optional[str] = None,
        record_type: Optional[str] = None,
    ) -> tuple[list[MigrationLog], int]:
        stmt = select(MigrationLog).where(MigrationLog.batch_id == batch_id)
        count_stmt = select(func.count()).select_from(MigrationLog).where(
            MigrationLog.batch_id == batch_id
        )
        if status:
            stmt = stmt.where(MigrationLog.status == status)
            count_stmt = count_stmt.where(MigrationLog.status == status)
        if record_type:
            stmt = stmt.where(MigrationLog.record_type == record_type)
            count_stmt = count_stmt.where(MigrationLog.record_type == record_type)
        total = self.session.exec(count_stmt).one()
        rows = self.session.exec(
            stmt.order_by(MigrationLog.processing_order)
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return list(rows), total

    def count_by_status(self, batch_id: int) -> dict[str, int]:
        stmt = (
            select(MigrationLog.status, func.count())
            .where(MigrationLog.batch_id == batch_id)
            .group_by(MigrationLog.status)
        )
        return {status: count for status, count in self.session.exec(stmt).all()}

    def max_processing_order(self, batch_id: int) -> int:
        stmt = select(func.max(MigrationLog.processing_order)).where(
            MigrationLog.batch_id == batch_id
        )
        return self.session.exec(stmt).one() or 0

    def delete_for_batch(self, batch_id: int) -> int:
        rows = self.for_batch(batch_id)
        for row in rows:
            self.session.delete(row)
        self.session.flush()
        return len(rows)


class FieldMappingRepository(Repository[FieldMapping]):
    model = FieldMapping
    name_field = "tally_group_name"

    def active_for_company(self, company_id: int) -> list[FieldMapping]:
        stmt = (
            select(FieldMapping)
            .where(FieldMapping.company_id == company_id, FieldMapping.is_active == True)  # noqa: E712
            .order_by(FieldMapping.priority.desc(), FieldMapping.id)
        )
        return list(self.session.exec(stmt).all())

    def has_system_defaults(self, company_id: int) -> bool:
        stmt = select(FieldMapping.id).where(
            FieldMapping.company_id == company_id, FieldMapping.is_system_default == True  # noqa: E712
        )
        return self.session.exec(stmt).first() is not None


class Repositories:
    """All repositories bound to one session."""

    def __init__(self, session: Session):
        self.session = session
        self.parties = PartyRepository(session)
        self.accounts = ChartOfAccountRepository(session)
        self.bank_accounts = BankAccountRepository(session)
        self.units = UnitRepository(session)
        self.stock_groups = StockGroupRepository(session)
        self.stock_items = StockItemRepository(session)
        self.warehouses = WarehouseRepository(session)
        self.tags = TagRepository(session)
        self.invoices = InvoiceRepository(session)
        self.vendor_invoices = VendorInvoiceRepository(session)
        self.payments = PaymentRepository(session)
        self.vendor_payments = VendorPaymentRepository(session)
        self.contractor_payments = ContractorPaymentRepository(session)
        self.statutory_payments = StatutoryPaymentRepository(session)
        self.stock_movements = StockMovementRepository(session)
        self.journals = JournalEntryRepository(session)
        self.bank_transactions = BankTransactionRepository(session)
        self.transaction_tags = TransactionTagRepository(session)
        self.allocations = PaymentAllocationRepository(session)
        self.batches = MigrationBatchRepository(session)
        self.logs = MigrationLogRepository(session)
        self.field_mappings = FieldMappingRepository(session)

    def for_entity(self, target_entity: str) -> Optional[Repository]:
        """Repository that owns rows logged under ``target_entity``."""
        return {
            "parties": self.parties,
            "customers": self.parties,
            "vendors": self.parties,
            "chart_of_accounts": self.accounts,
            "bank_accounts": self.bank_accounts,
            "units": self.units,
            "stock_groups": self.stock_groups,
            "stock_items": self.stock_items,
            "warehouses": self.warehouses,
            "tags": self.tags,
            "invoices": self.invoices,
            "vendor_invoices": self.vendor_invoices,
            "payments": self.payments,
            "vendor_payments": self.vendor_payments,
            "contractor_payments": self.contractor_payments,
            "statutory_payments": self.statutory_payments,
            "stock_movements": self.stock_movements,
            "journal_entries": self.journals,
            "bank_transactions": self.bank_transactions,
        }.get(target_entity)
