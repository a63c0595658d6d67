"""
Batch rollback.

Replays the batch's successful migration-log rows newest first, deleting
transactions before masters so nothing is removed while something else
still points at it. A record that fails to delete is reported and left in
place, as is any master that a remaining row still references; the
batch is only marked ``rolled_back`` when every delete worked.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from loguru import logger
from sqlalchemy import true
from sqlmodel import select

from tally_migration.core.errors import NotFoundError, ValidationError
from tally_migration.models import (
    BankTransaction,
    ChartOfAccount,
    ContractorPayment,
    Invoice,
    JournalEntry,
    JournalEntryLine,
    MigrationBatch,
    MigrationLog,
    Payment,
    StatutoryPayment,
    StockGroup,
    StockItem,
    StockMovement,
    Tag,
    TransactionTag,
    VendorInvoice,
    VendorPayment,
    Warehouse,
)
from tally_migration.repositories import Repositories
from tally_migration.schemas.responses import RollbackPreview, RollbackRequest, RollbackResult

TRANSACTION_ENTITIES = {
    "invoices",
    "vendor_invoices",
    "payments",
    "vendor_payments",
    "contractor_payments",
    "statutory_payments",
    "journal_entries",
    "bank_transactions",
    "stock_movements",
}
MASTER_ENTITIES = {
    "parties",
    "chart_of_accounts",
    "bank_accounts",
    "units",
    "stock_groups",
    "stock_items",
    "warehouses",
    "tags",
}
ROLLBACK_FROM = {"completed", "failed", "cancelled"}

# Master entity -> (model, column) pairs that point at it. Links that are
# created after their target within a batch (bank -> GL account, vendor
# profile -> payable account) are left out: those rows are deleted first.
_REFERENCES = {
    "parties": [
        (Invoice, "party_id"),
        (VendorInvoice, "party_id"),
        (Payment, "party_id"),
        (VendorPayment, "party_id"),
        (ContractorPayment, "party_id"),
        (ChartOfAccount, "linked_party_id"),
    ],
    "bank_accounts": [
        (BankTransaction, "bank_account_id"),
        (StatutoryPayment, "bank_account_id"),
        (ChartOfAccount, "linked_bank_account_id"),
    ],
    "stock_items": [(StockMovement, "stock_item_id")],
    "units": [(StockItem, "base_unit_id"), (StockGroup, "base_unit_id")],
    "stock_groups": [(StockItem, "stock_group_id"), (StockGroup, "parent_group_id")],
    "warehouses": [(StockMovement, "warehouse_id"), (Warehouse, "parent_warehouse_id")],
    "tags": [(TransactionTag, "tag_id"), (Tag, "parent_tag_id")],
}


def _outside(model, batch_id: int):
    if not hasattr(model, "tally_migration_batch_id"):
        return true()
    return (model.tally_migration_batch_id != batch_id) | (model.tally_migration_batch_id == None)  # noqa: E711


def blocking_reason(batch: MigrationBatch) -> Optional[str]:
    if batch.status == "rolled_back":
        return "Batch has already been rolled back"
    if batch.status == "importing":
        return "Batch import is still in progress"
    if batch.status not in ROLLBACK_FROM:
        return f"Batch has not been imported (status: {batch.status})"
    return None


class RollbackService:
    def __init__(self, repos: Repositories):
        self.repos = repos
        self.session = repos.session

    def _batch(self, batch_id: int) -> MigrationBatch:
        batch = self.repos.batches.get(batch_id)
        if batch is None:
            raise NotFoundError(f"Batch {batch_id} not found")
        return batch

    def _dependents(self, entity: str, target_id: int, batch_id: Optional[int] = None) -> int:
        """Rows still pointing at a master; with ``batch_id``, only those from other batches."""
        def scope(model):
            return true() if batch_id is None else _outside(model, batch_id)

        if entity == "chart_of_accounts":
            stmt = (
                select(JournalEntryLine.id)
                .join(JournalEntry, JournalEntryLine.journal_entry_id == JournalEntry.id)
                .where(JournalEntryLine.account_id == target_id, scope(JournalEntry))
            )
            return len(self.session.exec(stmt).all())
        count = 0
        for model, column in _REFERENCES.get(entity, ()):
            stmt = select(model.id).where(getattr(model, column) == target_id, scope(model))
            count += len(self.session.exec(stmt).all())
        return count

    def preview_rollback(self, batch_id: int) -> RollbackPreview:
        batch = self._batch(batch_id)
        preview = RollbackPreview(batch_id=batch_id, can_rollback=True)
        reason = blocking_reason(batch)
        if reason:
            preview.can_rollback = False
            preview.blocking_reason = reason

        for log in self.repos.logs.for_batch(batch_id, status="success"):
            entity = log.target_entity or "unknown"
            preview.counts_by_entity[entity] = preview.counts_by_entity.get(entity, 0) + 1
            if entity in MASTER_ENTITIES:
                preview.masters_count += 1
                if log.target_id:
                    preview.dependent_transactions_count += self._dependents(entity, log.target_id, batch_id)
            elif entity in TRANSACTION_ENTITIES:
                preview.transactions_count += 1
                if entity == "journal_entries":
                    preview.journal_entries_count += 1
        return preview

    def rollback(self, batch_id: int, request: Optional[RollbackRequest] = None) -> RollbackResult:
        request = request or RollbackRequest()
        batch = self._batch(batch_id)
        reason = blocking_reason(batch)
        if reason:
            raise ValidationError(reason)

        logger.info(f"Rolling back batch {batch.batch_number}: {request.reason or 'no reason given'}")
        result = RollbackResult(batch_id=batch_id, success=False)
        logs = self.repos.logs.for_batch(batch_id, status="success", newest_first=True)

        if request.delete_transactions:
            for log in logs:
                if log.target_entity in TRANSACTION_ENTITIES and self._delete(log, result):
                    result.transactions_deleted += 1
                    if log.target_entity == "journal_entries":
                        result.journal_entries_deleted += 1
        if request.delete_masters:
            for log in logs:
                if log.target_entity in MASTER_ENTITIES and self._delete(log, result):
                    result.masters_deleted += 1

        result.success = not result.errors
        if result.success:
            batch.status = "rolled_back"
            batch.rolled_back_at = datetime.utcnow()
            batch.updated_at = batch.rolled_back_at
            if request.reason:
                batch.error_message = f"Rolled back: {request.reason}"
            self.repos.batches.update(batch)
            self.repos.logs.delete_for_batch(batch_id)
            self.session.commit()
            result.rolled_back_at = batch.rolled_back_at
            logger.info(
                f"Rolled back batch {batch.batch_number}: {result.transactions_deleted} transaction(s), "
                f"{result.masters_deleted} master(s)"
            )
        else:
            logger.warning(
                f"Rollback of batch {batch.batch_number} left {len(result.errors)} record(s) in place"
            )
        return result

    def _delete(self, log: MigrationLog, result: RollbackResult) -> bool:
        repo = self.repos.for_entity(log.target_entity or "")
        if repo is None or log.target_id is None:
            return False
        label = f"{log.target_entity}#{log.target_id} ({log.tally_name or log.record_type})"
        try:
            if log.target_entity in MASTER_ENTITIES:
                dependents = self._dependents(log.target_entity, log.target_id)
                if dependents:
                    result.errors.append(
                        f"{label} is still referenced by {dependents} record(s)"
                    )
                    return False
            if log.target_entity in TRANSACTION_ENTITIES:
                self._delete_links(log.target_entity, log.target_id)
            deleted = repo.delete(log.target_id)
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            logger.warning(f"Could not delete {label}: {exc}")
            result.errors.append(f"Could not delete {label}: {exc}")
            return False
        return deleted

    def _delete_links(self, entity: str, entity_id: int) -> None:
        for tag in self.repos.transaction_tags.for_transaction(entity, entity_id):
            self.session.delete(tag)
        for alloc in self.repos.allocations.for_payment(entity, entity_id):
            self.session.delete(alloc)
        for alloc in self.repos.allocations.for_invoice(entity, entity_id):
            self.session.delete(alloc)
