"""
Voucher import.

Vouchers are filtered by date range and type, grouped by normalised
voucher type, and dispatched to a per-type importer:

  sales / credit note      -> Invoice (credit notes negated)
  purchase / debit note    -> VendorInvoice (debit notes negated)
  receipt                  -> Payment + bank credit
  payment                  -> classified, then vendor / contractor /
                              statutory payment + bank debit, or a plain
                              journal for everything else
  journal / contra         -> JournalEntry + one bank leg per bank entry
  stock vouchers           -> JournalEntry + stock movements
  anything else            -> JournalEntry

Each voucher also gets a balanced journal entry (see ``journal.py``).
A voucher whose journal already exists (same Tally GUID) is skipped, which
makes re-importing a file a no-op.
"""
from __future__ import annotations

import re
from collections import OrderedDict
from datetime import date, timedelta
from typing import Callable, Optional

from loguru import logger

from tally_migration.core.config import settings
from tally_migration.core.errors import ImportCancelled
from tally_migration.etl.values import normalize_voucher_type
from tally_migration.migration.bank_mapper import BankTransactionMapper
from tally_migration.migration.classifier import PaymentClassifier, PaymentType, is_bank_ledger
from tally_migration.migration.contractor_mapper import ContractorPaymentMapper, withheld_tds
from tally_migration.migration.control import (
    CancellationToken,
    MigrationLogWriter,
    ProgressCallback,
    report_progress,
)
from tally_migration.migration.journal import JournalPosting, JournalWriter
from tally_migration.migration.statutory_mapper import StatutoryPaymentMapper
from tally_migration.models import (
    Invoice,
    Party,
    Payment,
    PaymentAllocation,
    StockMovement,
    TransactionTag,
    VendorInvoice,
    VendorPayment,
)
from tally_migration.repositories import Repositories
from tally_migration.schemas.responses import ImportCounts, ImportProgress, ImportRequest, VoucherImportResult
from tally_migration.schemas.tally import CostAllocation, TallyVoucher

UNKNOWN_VENDOR_NAME = "UNKNOWN-TALLY-VENDOR"

_STOCK_TYPES = {"stock_journal", "physical_stock", "delivery_note", "receipt_note"}
_TAX_LEDGER_RE = re.compile(r"\b(c|s|i|ut)?gst\b|\bcess\b|\bvat\b|output\s+tax|input\s+tax", re.IGNORECASE)
_CREDIT_PERIOD_RE = re.compile(r"(\d+)\s*days?", re.IGNORECASE)

GST_STATE_CODES: dict[str, str] = {
    "jammu and kashmir": "01", "himachal pradesh": "02", "punjab": "03",
    "chandigarh": "04", "uttarakhand": "05", "haryana": "06", "delhi": "07",
    "rajasthan": "08", "uttar pradesh": "09", "bihar": "10", "sikkim": "11",
    "arunachal pradesh": "12", "nagaland": "13", "manipur": "14", "mizoram": "15",
    "tripura": "16", "meghalaya": "17", "assam": "18", "west bengal": "19",
    "jharkhand": "20", "odisha": "21", "chhattisgarh": "22", "madhya pradesh": "23",
    "gujarat": "24", "dadra and nagar haveli and daman and diu": "26",
    "maharashtra": "27", "karnataka": "29", "goa": "30", "lakshadweep": "31",
    "kerala": "32", "tamil nadu": "33", "puducherry": "34",
    "andaman and nicobar islands": "35", "telangana": "36", "andhra pradesh": "37",
    "ladakh": "38",
}


# ── helpers ──────────────────────────────────────────────────────────────────


def filter_vouchers(vouchers: list[TallyVoucher], request: ImportRequest) -> list[TallyVoucher]:
    allowed = {normalize_voucher_type(t) for t in request.voucher_types}
    selected = []
    for v in vouchers:
        if request.from_date and v.voucher_date < request.from_date:
            continue
        if request.to_date and v.voucher_date > request.to_date:
            continue
        if allowed and normalize_voucher_type(v.voucher_type) not in allowed:
            continue
        selected.append(v)
    return selected


def group_by_type(vouchers: list[TallyVoucher]) -> "OrderedDict[str, list[TallyVoucher]]":
    groups: OrderedDict[str, list[TallyVoucher]] = OrderedDict()
    for v in vouchers:
        groups.setdefault(normalize_voucher_type(v.voucher_type) or "unknown", []).append(v)
    return groups


def tax_amount(voucher: TallyVoucher) -> float:
    return round(sum(abs(e.amount) for e in voucher.ledger_entries if _TAX_LEDGER_RE.search(e.ledger_name)), 2)


def due_date_for(voucher: TallyVoucher) -> date:
    """From a 'New Ref' bill allocation's due date or credit period, else default terms."""
    bills = [b for e in voucher.ledger_entries for b in e.bill_allocations] + voucher.bill_allocations
    for bill in bills:
        if (bill.bill_type or "").lower() != "new ref":
            continue
        if bill.due_date:
            return bill.due_date
        m = _CREDIT_PERIOD_RE.search(bill.credit_period or "")
        if m:
            return voucher.voucher_date + timedelta(days=int(m.group(1)))
    return voucher.voucher_date + timedelta(days=settings.DEFAULT_CREDIT_DAYS)


def payment_method(voucher: TallyVoucher) -> str:
    text = (voucher.narration or "").lower()
    if "cheque" in text or "chq" in text:
        return "cheque"
    if "upi" in text:
        return "upi"
    names = [e.ledger_name.lower() for e in voucher.ledger_entries]
    if any("cash" in n for n in names) and not any(is_bank_ledger(n) for n in names):
        return "cash"
    return "bank_transfer"


def state_code(place_of_supply: Optional[str]) -> Optional[str]:
    if not place_of_supply:
        return None
    text = place_of_supply.strip()
    if text[:2].isdigit():
        return text[:2]
    return GST_STATE_CODES.get(text.lower(), text)


# ── service ──────────────────────────────────────────────────────────────────


class VoucherMappingService:
    def __init__(self, repos: Repositories):
        self.repos = repos
        self.session = repos.session
        self.journals = JournalWriter(repos)
        self.classifier = PaymentClassifier(repos)
        self.bank = BankTransactionMapper(repos)
        self.statutory = StatutoryPaymentMapper(repos)
        self.contractor = ContractorPaymentMapper(repos)
        self.log: Optional[MigrationLogWriter] = None
        self.result = VoucherImportResult()
        self._record_type = "voucher"
        self._batch_id = 0

    def import_vouchers(
        self,
        batch_id: int,
        company_id: int,
        vouchers: list[TallyVoucher],
        request: Optional[ImportRequest] = None,
        progress: Optional[ProgressCallback] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> VoucherImportResult:
        request = request or ImportRequest()
        selected = filter_vouchers(vouchers, request)
        if len(selected) != len(vouchers):
            logger.info(f"Batch {batch_id}: {len(selected)} of {len(vouchers)} vouchers match the filters")

        self.log = MigrationLogWriter(self.repos.logs, batch_id)
        self.result = VoucherImportResult()
        self._batch_id = batch_id
        total = len(selected)
        done = 0

        for kind, items in group_by_type(selected).items():
            counts = self.result.by_voucher_type.setdefault(kind, ImportCounts())
            importer = self._importer(kind)
            self._record_type = f"voucher_{kind}"
            for voucher in items:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                counts.total += 1
                try:
                    outcome = importer(company_id, voucher)
                    self.session.commit()
                except ImportCancelled:
                    raise
                except Exception as exc:
                    self.session.rollback()
                    counts.failed += 1
                    logger.warning(f"Failed to import voucher {voucher.display_name}: {exc}")
                    self.log.write(
                        self._record_type, "failed",
                        tally_guid=voucher.guid, tally_name=voucher.voucher_number,
                        tally_date=voucher.voucher_date, tally_amount=voucher.amount,
                        error_message=str(exc),
                    )
                    self.session.commit()
                    continue
                if outcome is None:
                    counts.skipped += 1
                    continue
                counts.imported += 1
                if outcome.suspense_lines:
                    counts.suspense += 1
                    self.result.suspense_lines += outcome.suspense_lines
                    self.result.suspense_amount += outcome.suspense_amount
                self.result.total_debit_amount += outcome.total_debit
                self.result.total_credit_amount += outcome.total_credit

            done += len(items)
            report_progress(progress, ImportProgress(
                batch_id=batch_id,
                status="importing",
                current_phase="vouchers",
                percent_complete=round(30.0 + 70.0 * done / total, 1) if total else 100.0,
                processed_records=done,
                total_records=total,
                succeeded=sum(c.imported for c in self.result.by_voucher_type.values()),
                failed=sum(c.failed for c in self.result.by_voucher_type.values()),
                skipped=sum(c.skipped for c in self.result.by_voucher_type.values()),
                suspense=sum(c.suspense for c in self.result.by_voucher_type.values()),
                message=f"Imported {kind} vouchers",
            ))

        r = self.result
        for counts in r.by_voucher_type.values():
            r.total_imported += counts.imported
            r.total_skipped += counts.skipped
            r.total_failed += counts.failed
        r.total_debit_amount = round(r.total_debit_amount, 2)
        r.total_credit_amount = round(r.total_credit_amount, 2)
        r.suspense_amount = round(r.suspense_amount, 2)
        logger.info(
            f"Batch {batch_id}: vouchers imported={r.total_imported} skipped={r.total_skipped} "
            f"failed={r.total_failed} suspense_lines={r.suspense_lines}"
        )
        return r

    def _importer(self, kind: str) -> Callable[[int, TallyVoucher], Optional[JournalPosting]]:
        if kind in _STOCK_TYPES:
            return self._import_stock_voucher
        return {
            "sales": self._import_sales,
            "credit_note": self._import_credit_note,
            "purchase": self._import_purchase,
            "debit_note": self._import_debit_note,
            "receipt": self._import_receipt,
            "payment": self._import_payment,
            "journal": self._import_journal,
            "contra": self._import_journal,
        }.get(kind, self._import_journal)

    # ── logging ──────────────────────────────────────────────────────────────

    def _logged(self, voucher: TallyVoucher, target_id: int, entity: str,
                record_type: Optional[str] = None, message: Optional[str] = None,
                amount: Optional[float] = None) -> None:
        self.log.write(
            record_type or self._record_type, "success",
            tally_guid=voucher.guid, tally_name=voucher.voucher_number,
            tally_date=voucher.voucher_date,
            tally_amount=voucher.amount if amount is None else amount,
            error_message=message,
            target_id=target_id, target_entity=entity,
        )

    def _already_imported(self, company_id: int, voucher: TallyVoucher) -> bool:
        existing = self.repos.journals.get_by_tally_guid(company_id, voucher.guid)
        if existing is None:
            return False
        self.log.write(
            self._record_type, "skipped",
            tally_guid=voucher.guid, tally_name=voucher.voucher_number,
            tally_date=voucher.voucher_date, tally_amount=voucher.amount,
            error_message="Already imported (by GUID)",
            target_id=existing.id, target_entity="journal_entries",
        )
        return True

    def _post_journal(self, company_id: int, voucher: TallyVoucher, source_type: str,
                      source_id: Optional[int] = None, primary: bool = False) -> JournalPosting:
        posting = self.journals.post_voucher(self._batch_id, company_id, voucher, source_type, source_id)
        if posting.created:
            message = None
            if posting.suspense_lines:
                message = f"{posting.suspense_lines} line(s) posted to suspense ({posting.suspense_amount:,.2f})"
            self._logged(
                voucher, posting.entry.id, "journal_entries",
                record_type=None if primary else "journal_entry", message=message,
            )
        return posting

    # ── party resolution ─────────────────────────────────────────────────────

    def _resolve_party(self, company_id: int, voucher: TallyVoucher) -> Optional[Party]:
        parties = self.repos.parties
        party = (
            parties.get_by_tally_guid(company_id, voucher.party_ledger_guid)
            or parties.get_by_name(company_id, voucher.party_ledger_name)
        )
        if party is not None:
            return party
        for entry in sorted(voucher.ledger_entries, key=lambda e: not e.is_party_ledger):
            party = parties.get_by_tally_guid(company_id, entry.ledger_guid) or parties.get_by_name(company_id, entry.ledger_name)
            if party is not None:
                return party
        return None

    def _unknown_vendor(self, company_id: int) -> Party:
        party = self.repos.parties.get_by_name(company_id, UNKNOWN_VENDOR_NAME)
        if party is None:
            party = self.repos.parties.add(Party(
                company_id=company_id,
                name=UNKNOWN_VENDOR_NAME,
                display_name="Unknown Tally Vendor",
                party_type="company",
                is_vendor=True,
            ))
            logger.info(f"Created unknown vendor placeholder for company {company_id}")
        return party

    # ── sales / purchase ─────────────────────────────────────────────────────

    def _import_credit_note(self, company_id: int, voucher: TallyVoucher) -> Optional[JournalPosting]:
        return self._import_sales(company_id, voucher, credit_note=True)

    def _import_sales(self, company_id: int, voucher: TallyVoucher,
                      credit_note: bool = False) -> Optional[JournalPosting]:
        if self._already_imported(company_id, voucher):
            return None
        party = self._resolve_party(company_id, voucher)
        total = round(abs(voucher.amount), 2)
        tax = min(tax_amount(voucher), total)
        sign = -1 if credit_note else 1

        invoice = self.repos.invoices.add(Invoice(
            company_id=company_id,
            party_id=party.id if party else None,
            invoice_number=voucher.voucher_number or voucher.guid[:8],
            invoice_date=voucher.voucher_date,
            due_date=due_date_for(voucher),
            invoice_type="credit_note" if credit_note else "tax_invoice",
            place_of_supply=state_code(voucher.place_of_supply),
            is_reverse_charge=voucher.is_reverse_charge,
            subtotal=sign * round(total - tax, 2),
            tax_amount=sign * tax,
            total_amount=sign * total,
            status="cancelled" if voucher.is_cancelled else "paid",
            irn=voucher.irn,
            e_way_bill_number=voucher.eway_bill_number,
            notes=voucher.narration,
            tally_voucher_guid=voucher.guid or None,
            tally_voucher_number=voucher.voucher_number,
            tally_migration_batch_id=self._batch_id,
        ))
        self._logged(voucher, invoice.id, "invoices")

        posting = self._post_journal(company_id, voucher, "credit_note" if credit_note else "invoice", invoice.id)
        invoice.journal_entry_id = posting.entry.id
        self.repos.invoices.update(invoice)
        self._tag_transaction(company_id, "invoices", invoice.id, voucher)
        self._stock_movements(company_id, voucher, "in" if credit_note else "out", "invoices", invoice.id)
        return posting

    def _import_debit_note(self, company_id: int, voucher: TallyVoucher) -> Optional[JournalPosting]:
        return self._import_purchase(company_id, voucher, debit_note=True)

    def _import_purchase(self, company_id: int, voucher: TallyVoucher,
                         debit_note: bool = False) -> Optional[JournalPosting]:
        if self._already_imported(company_id, voucher):
            return None
        party = self._resolve_party(company_id, voucher) or self._unknown_vendor(company_id)
        total = round(abs(voucher.amount), 2)
        tax = min(tax_amount(voucher), total)
        sign = -1 if debit_note else 1

        bill = self.repos.vendor_invoices.add(VendorInvoice(
            company_id=company_id,
            party_id=party.id,
            invoice_number=voucher.voucher_number or voucher.guid[:8],
            vendor_invoice_number=voucher.reference_number,
            invoice_date=voucher.voucher_date,
            due_date=due_date_for(voucher),
            invoice_type="debit_note" if debit_note else "purchase",
            subtotal=sign * round(total - tax, 2),
            tax_amount=sign * tax,
            tds_amount=withheld_tds(voucher),
            total_amount=sign * total,
            status="cancelled" if voucher.is_cancelled else "approved",
            notes=voucher.narration,
            tally_voucher_guid=voucher.guid or None,
            tally_voucher_number=voucher.voucher_number,
            tally_migration_batch_id=self._batch_id,
        ))
        self._logged(voucher, bill.id, "vendor_invoices")

        posting = self._post_journal(company_id, voucher, "debit_note" if debit_note else "vendor_invoice", bill.id)
        bill.journal_entry_id = posting.entry.id
        self.repos.vendor_invoices.update(bill)
        self._tag_transaction(company_id, "vendor_invoices", bill.id, voucher)
        self._stock_movements(company_id, voucher, "out" if debit_note else "in", "vendor_invoices", bill.id)
        return posting

    # ── receipts / payments ──────────────────────────────────────────────────

    def _import_receipt(self, company_id: int, voucher: TallyVoucher) -> Optional[JournalPosting]:
        if self._already_imported(company_id, voucher):
            return None
        party = self._resolve_party(company_id, voucher)
        payment = self.repos.payments.add(Payment(
            company_id=company_id,
            party_id=party.id if party else None,
            payment_number=voucher.voucher_number or voucher.guid[:8],
            payment_date=voucher.voucher_date,
            amount=round(abs(voucher.amount), 2),
            payment_method=payment_method(voucher),
            reference_number=voucher.reference_number,
            notes=voucher.narration,
            status="cancelled" if voucher.is_cancelled else "completed",
            tally_voucher_guid=voucher.guid or None,
            tally_migration_batch_id=self._batch_id,
        ))
        self._logged(voucher, payment.id, "payments")

        posting = self._post_journal(company_id, voucher, "payment", payment.id)
        payment.journal_entry_id = posting.entry.id
        self.repos.payments.update(payment)
        self._bank_leg(company_id, voucher, "credit", "payments", payment.id)
        self._tag_transaction(company_id, "payments", payment.id, voucher)
        self._allocate_bills(company_id, voucher, "payments", payment.id, "invoices")
        return posting

    def _import_payment(self, company_id: int, voucher: TallyVoucher) -> Optional[JournalPosting]:
        if self._already_imported(company_id, voucher):
            return None
        classification = self.classifier.classify(company_id, voucher)
        kind = classification.payment_type

        if kind == PaymentType.STATUTORY:
            record = self.statutory.map_and_save(self._batch_id, company_id, voucher, classification)
            entity, source_type = "statutory_payments", "statutory_payment"
        elif kind == PaymentType.CONTRACTOR:
            record = self.contractor.map_and_save(self._batch_id, company_id, voucher, classification)
            entity, source_type = "contractor_payments", "contractor_payment"
        elif kind == PaymentType.VENDOR:
            record = self._vendor_payment(company_id, voucher, classification.party_id, classification.amount)
            entity, source_type = "vendor_payments", "vendor_payment"
        else:
            # Salary, EMI, bank charges, transfers and the rest are plain journals
            return self._import_journal(company_id, voucher, source_type=f"payment_{kind.value}",
                                        message=classification.reason)

        self._logged(voucher, record.id, entity, message=classification.reason,
                     amount=classification.amount or voucher.amount)
        posting = self._post_journal(company_id, voucher, source_type, record.id)
        record.journal_entry_id = posting.entry.id
        self.session.add(record)
        self.session.flush()
        self._bank_leg(company_id, voucher, "debit", entity, record.id)
        self._tag_transaction(company_id, entity, record.id, voucher)
        if entity == "vendor_payments":
            self._allocate_bills(company_id, voucher, entity, record.id, "vendor_invoices")
        return posting

    def _vendor_payment(self, company_id: int, voucher: TallyVoucher,
                        party_id: Optional[int], amount: float) -> VendorPayment:
        if party_id is None:
            party_id = self._unknown_vendor(company_id).id
        return self.repos.vendor_payments.add(VendorPayment(
            company_id=company_id,
            party_id=party_id,
            payment_number=voucher.voucher_number or voucher.guid[:8],
            payment_date=voucher.voucher_date,
            amount=round(amount or abs(voucher.amount), 2),
            tds_amount=withheld_tds(voucher),
            payment_method=payment_method(voucher),
            reference_number=voucher.reference_number,
            notes=voucher.narration,
            status="cancelled" if voucher.is_cancelled else "processed",
            tally_voucher_guid=voucher.guid or None,
            tally_migration_batch_id=self._batch_id,
        ))

    def _bank_leg(self, company_id: int, voucher: TallyVoucher, transaction_type: str,
                  entity: str, entity_id: int) -> None:
        """Voucher-level bank transaction; cash vouchers have none."""
        if self.bank.resolve_bank_account(company_id, voucher) is None:
            logger.debug(f"No bank account for {voucher.display_name}; no bank transaction")
            return
        txn = self.bank.create_bank_transaction(
            self._batch_id, company_id, voucher, transaction_type, entity, entity_id
        )
        self._logged(voucher, txn.id, "bank_transactions", record_type="bank_transaction", amount=txn.amount)

    # ── journals / stock ─────────────────────────────────────────────────────

    def _import_journal(self, company_id: int, voucher: TallyVoucher,
                        source_type: Optional[str] = None,
                        message: Optional[str] = None) -> Optional[JournalPosting]:
        if source_type is None and self._already_imported(company_id, voucher):
            return None
        kind = normalize_voucher_type(voucher.voucher_type)
        source_type = source_type or (kind if kind in ("journal", "contra") else "journal")
        posting = self.journals.post_voucher(self._batch_id, company_id, voucher, source_type)
        note = message
        if posting.suspense_lines:
            suspense_note = f"{posting.suspense_lines} line(s) posted to suspense ({posting.suspense_amount:,.2f})"
            note = f"{note}; {suspense_note}" if note else suspense_note
        self._logged(voucher, posting.entry.id, "journal_entries", message=note)

        for index in self.bank.bank_entry_indexes(company_id, voucher):
            txn = self.bank.create_bank_transaction_from_entry(
                self._batch_id, company_id, voucher, index, "journal_entries", posting.entry.id
            )
            self._logged(voucher, txn.id, "bank_transactions", record_type="bank_transaction", amount=txn.amount)
        self._tag_transaction(company_id, "journal_entries", posting.entry.id, voucher)
        return posting

    def _import_stock_voucher(self, company_id: int, voucher: TallyVoucher) -> Optional[JournalPosting]:
        if self._already_imported(company_id, voucher):
            return None
        posting = self.journals.post_voucher(self._batch_id, company_id, voucher, "stock_journal")
        self._logged(voucher, posting.entry.id, "journal_entries")
        kind = normalize_voucher_type(voucher.voucher_type)
        direction = {"delivery_note": "out", "receipt_note": "in"}.get(kind)
        self._stock_movements(company_id, voucher, direction, "journal_entries", posting.entry.id)
        return posting

    def _stock_movements(self, company_id: int, voucher: TallyVoucher, direction: Optional[str],
                         source_entity: str, source_id: int) -> int:
        """One movement per inventory line whose stock item exists; direction None means by amount sign."""
        created = 0
        for line in voucher.inventory_entries:
            item = (
                self.repos.stock_items.get_by_tally_guid(company_id, line.stock_item_guid)
                or self.repos.stock_items.get_by_name(company_id, line.stock_item_name)
            )
            if item is None:
                logger.debug(f"Stock item {line.stock_item_name!r} not found; no movement for {voucher.display_name}")
                continue
            godown = line.godown_name or next(
                (b.godown_name for b in line.batch_allocations if b.godown_name), None
            )
            warehouse = self.repos.warehouses.get_by_name(company_id, godown)
            movement = self.repos.stock_movements.add(StockMovement(
                company_id=company_id,
                stock_item_id=item.id,
                warehouse_id=warehouse.id if warehouse else None,
                movement_date=voucher.voucher_date,
                movement_type=direction or ("out" if line.amount < 0 else "in"),
                quantity=abs(line.quantity),
                rate=line.rate,
                value=round(abs(line.amount), 2),
                source_entity=source_entity,
                source_id=source_id,
                tally_voucher_guid=voucher.guid or None,
                tally_migration_batch_id=self._batch_id,
            ))
            self._logged(voucher, movement.id, "stock_movements", record_type="stock_movement",
                         amount=movement.value)
            created += 1
        return created

    # ── tags / allocations ───────────────────────────────────────────────────

    def _tag_transaction(self, company_id: int, transaction_type: str, transaction_id: int,
                         voucher: TallyVoucher) -> int:
        """Cost-centre allocations -> TransactionTag rows, proportional to amount."""
        allocations: list[CostAllocation] = list(voucher.cost_allocations)
        for entry in voucher.ledger_entries:
            allocations.extend(entry.cost_allocations)
        allocations = [a for a in allocations if a.cost_center_name or a.cost_center_guid]
        if not allocations:
            return 0

        total = sum(abs(a.amount) for a in allocations)
        created = 0
        for alloc in allocations:
            tags = self.repos.tags
            tag = tags.get_by_tally_guid(company_id, alloc.cost_center_guid) or tags.get_by_name(company_id, alloc.cost_center_name)
            if tag is None:
                logger.debug(f"Cost centre {alloc.cost_center_name!r} not found for {voucher.display_name}")
                continue
            amount = round(abs(alloc.amount), 2)
            self.repos.transaction_tags.add(TransactionTag(
                company_id=company_id,
                transaction_type=transaction_type,
                transaction_id=transaction_id,
                tag_id=tag.id,
                allocated_amount=amount,
                allocation_percentage=round(amount / total * 100, 2) if total else None,
            ))
            created += 1
        return created

    def _allocate_bills(self, company_id: int, voucher: TallyVoucher, payment_entity: str,
                        payment_id: int, invoice_entity: str) -> int:
        """Link 'Agst Ref' bill allocations to earlier invoices when they can be found."""
        repo = self.repos.invoices if invoice_entity == "invoices" else self.repos.vendor_invoices
        bills = [b for e in voucher.ledger_entries for b in e.bill_allocations] + voucher.bill_allocations
        linked = 0
        for bill in bills:
            if (bill.bill_type or "").lower() != "agst ref" or not bill.name:
                continue
            invoice = repo.get_by_number(company_id, bill.name)
            if invoice is None:
                logger.debug(f"Bill {bill.name!r} referenced by {voucher.display_name} not found")
                continue
            self.repos.allocations.add(PaymentAllocation(
                company_id=company_id,
                payment_entity=payment_entity,
                payment_id=payment_id,
                invoice_entity=invoice_entity,
                invoice_id=invoice.id,
                bill_reference=bill.name,
                amount=round(abs(bill.amount), 2),
            ))
            linked += 1
        return linked
