"""
Bank transaction mapper.

Creates BankTransaction rows for vouchers that move money through one of
the company's bank accounts. A transaction is keyed by the voucher GUID,
or by ``{guid}_{entry_index}`` when one voucher produces several legs
(contra transfers, journals touching two banks).
"""
from __future__ import annotations

import re
from typing import Optional

from loguru import logger

from tally_migration.core.errors import ValidationError
from tally_migration.migration.classifier import is_bank_ledger
from tally_migration.models import BankAccount, BankTransaction
from tally_migration.repositories import Repositories
from tally_migration.schemas.tally import LedgerEntry, TallyVoucher

# Most specific first
_REFERENCE_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("INB", re.compile(r"INB[\\/\s]*(?:NEFT|RTGS|IMPS)?[\\/\s]*([A-Z0-9]{10,20})", re.IGNORECASE)),
    ("NEFT/RTGS", re.compile(r"(?:NEFT|RTGS)[/\s-]*([A-Z0-9]{12,22})", re.IGNORECASE)),
    ("IMPS", re.compile(r"IMPS[- ]?(\d{12,15})", re.IGNORECASE)),
    ("UPI", re.compile(r"UPI[- ]?(\d{12,15})", re.IGNORECASE)),
]
_CHEQUE_RE = re.compile(r"(?:CHQ|CHEQUE|CHK)[\\/\s#.:-]*(?:NO\.?)?[\s#.:-]*(\d{6,10})", re.IGNORECASE)
_EMI_RE = re.compile(r"(PCR\d+)_EMI", re.IGNORECASE)

_CATEGORIES = {
    "vendor_payments": "vendor_payment",
    "contractor_payments": "contractor",
    "statutory_payments": "tax",
    "journal_entries": "transfer",
    "payments": "customer_receipt",
}


def parse_narration(narration: Optional[str]) -> tuple[Optional[str], Optional[str], str]:
    """
    Extract (reference, cheque_number, transfer_mode) from a bank narration.
    Transfer mode is one of NEFT, RTGS, IMPS, UPI, Cheque, Auto-Debit, Online.
    """
    text = narration or ""
    reference = None
    for _, pattern in _REFERENCE_PATTERNS:
        m = pattern.search(text)
        if m:
            reference = m.group(1).upper()
            break

    cheque = None
    m = _CHEQUE_RE.search(text)
    if m:
        cheque = m.group(1)

    mode = "Online"
    m = _EMI_RE.search(text)
    if m:
        reference = reference or m.group(1).upper()
        mode = "Auto-Debit"
    else:
        lowered = text.lower()
        for keyword, label in (("neft", "NEFT"), ("rtgs", "RTGS"), ("imps", "IMPS"), ("upi", "UPI")):
            if keyword in lowered:
                mode = label
                break
        else:
            if cheque:
                mode = "Cheque"
    return reference, cheque, mode


def describe(voucher: TallyVoucher, mode: str) -> str:
    """'[Payment] | To: ACME Ltd | NEFT to ACME for invoice 12...'"""
    parts = [f"[{voucher.voucher_type or 'Voucher'}]"]
    payee = next((e.ledger_name for e in voucher.ledger_entries if e.amount < 0 and not is_bank_ledger(e.ledger_name)), None)
    payee = payee or next((e.ledger_name for e in voucher.ledger_entries if e.amount > 0 and not is_bank_ledger(e.ledger_name)), None)
    if payee:
        parts.append(f"To: {payee[:50]}")
    if mode != "Online":
        parts.append(mode)
    if voucher.narration:
        narration = voucher.narration.strip()
        if len(narration) > 100:
            narration = narration[:100] + "..."
        parts.append(narration)
    return " | ".join(parts)


def category_for(entity_type: Optional[str]) -> str:
    return _CATEGORIES.get(entity_type or "", "other")


class BankTransactionMapper:
    def __init__(self, repos: Repositories):
        self.repos = repos

    # ── bank account resolution ──────────────────────────────────────────────

    def _by_ledger(self, company_id: int, name: Optional[str], guid: Optional[str]) -> Optional[BankAccount]:
        banks = self.repos.bank_accounts
        return (
            banks.get_by_tally_ledger_name(company_id, name)
            or banks.get_by_name(company_id, name)
            or banks.get_by_tally_guid(company_id, guid)
        )

    def resolve_bank_account(self, company_id: int, voucher: TallyVoucher) -> Optional[BankAccount]:
        """Party ledger, then bank-looking entries, then fuzzy name match."""
        account = self._by_ledger(company_id, voucher.party_ledger_name, voucher.party_ledger_guid)
        if account is not None:
            return account

        for entry in voucher.ledger_entries:
            if is_bank_ledger(entry.ledger_name):
                account = self._by_ledger(company_id, entry.ledger_name, entry.ledger_guid)
                if account is not None:
                    return account

        all_accounts = self.repos.bank_accounts.list_for_company(company_id)
        for entry in voucher.ledger_entries:
            name = entry.ledger_name.strip().lower()
            if not name:
                continue
            for acc in all_accounts:
                candidate = (acc.tally_ledger_name or acc.account_name).strip().lower()
                if candidate and (candidate in name or name in candidate):
                    return acc
        return None

    def resolve_entry_account(self, company_id: int, entry: LedgerEntry) -> Optional[BankAccount]:
        return self._by_ledger(company_id, entry.ledger_name, entry.ledger_guid)

    # ── creation ─────────────────────────────────────────────────────────────

    def create_bank_transaction(
        self,
        batch_id: int,
        company_id: int,
        voucher: TallyVoucher,
        transaction_type: str,
        matched_entity_type: Optional[str] = None,
        matched_entity_id: Optional[int] = None,
    ) -> BankTransaction:
        """One transaction for the whole voucher, keyed by its GUID."""
        existing = self.repos.bank_transactions.get_by_tally_guid(company_id, voucher.guid)
        if existing is not None:
            return existing

        account = self.resolve_bank_account(company_id, voucher)
        if account is None:
            raise ValidationError(
                f"Could not resolve bank account for voucher {voucher.voucher_number}"
            )
        return self._add(
            batch_id, company_id, voucher, account, transaction_type,
            self._bank_amount(company_id, voucher, account), voucher.guid,
            matched_entity_type, matched_entity_id,
        )

    def create_bank_transaction_from_entry(
        self,
        batch_id: int,
        company_id: int,
        voucher: TallyVoucher,
        entry_index: int,
        matched_entity_type: Optional[str] = None,
        matched_entity_id: Optional[int] = None,
    ) -> BankTransaction:
        """One leg per bank-affecting ledger entry, keyed by ``{guid}_{index}``."""
        entry = voucher.ledger_entries[entry_index]
        key = f"{voucher.guid}_{entry_index}" if voucher.guid else ""
        existing = self.repos.bank_transactions.get_by_tally_guid(company_id, key)
        if existing is not None:
            return existing

        account = self.resolve_entry_account(company_id, entry)
        if account is None:
            raise ValidationError(
                f"Could not resolve bank account '{entry.ledger_name}' "
                f"for voucher {voucher.voucher_number}"
            )
        transaction_type = "debit" if entry.amount > 0 else "credit"
        return self._add(
            batch_id, company_id, voucher, account, transaction_type, abs(entry.amount),
            key, matched_entity_type, matched_entity_id,
        )

    def _bank_amount(self, company_id: int, voucher: TallyVoucher, account: BankAccount) -> float:
        """The bank ledger's own line when the voucher has one; the voucher amount otherwise."""
        for entry in voucher.ledger_entries:
            if entry.amount == 0:
                continue
            match = self.resolve_entry_account(company_id, entry)
            if match is not None and match.id == account.id:
                return abs(entry.amount)
        return abs(voucher.amount)

    def bank_entry_indexes(self, company_id: int, voucher: TallyVoucher) -> list[int]:
        """Indexes of ledger entries that hit one of the company's bank accounts."""
        return [
            i for i, entry in enumerate(voucher.ledger_entries)
            if entry.amount != 0 and self.resolve_entry_account(company_id, entry) is not None
        ]

    def map_and_save(
        self,
        batch_id: int,
        company_id: int,
        voucher: TallyVoucher,
        transaction_type: str,
        matched_entity_type: Optional[str] = None,
        matched_entity_id: Optional[int] = None,
    ) -> BankTransaction:
        return self.create_bank_transaction(
            batch_id, company_id, voucher, transaction_type, matched_entity_type, matched_entity_id
        )

    def _add(
        self,
        batch_id: int,
        company_id: int,
        voucher: TallyVoucher,
        account: BankAccount,
        transaction_type: str,
        amount: float,
        key: str,
        matched_entity_type: Optional[str],
        matched_entity_id: Optional[int],
    ) -> BankTransaction:
        reference, cheque, mode = parse_narration(voucher.narration)
        txn = self.repos.bank_transactions.add(BankTransaction(
            company_id=company_id,
            bank_account_id=account.id,
            transaction_date=voucher.voucher_date,
            value_date=voucher.voucher_date,
            transaction_type=transaction_type,
            amount=round(amount, 2),
            reference_number=reference or voucher.reference_number or voucher.voucher_number,
            cheque_number=cheque,
            description=describe(voucher, mode),
            category=category_for(matched_entity_type),
            is_reconciled=False,
            import_source="tally_import",
            matched_entity_type=matched_entity_type,
            matched_entity_id=matched_entity_id,
            tally_voucher_guid=key or None,
            tally_voucher_number=voucher.voucher_number,
            tally_migration_batch_id=batch_id,
        ))
        logger.debug(
            f"Bank {transaction_type} {txn.amount:.2f} on {account.account_name} "
            f"for {voucher.display_name} ({mode})"
        )
        return txn
