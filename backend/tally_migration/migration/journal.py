"""
Double-entry journal posting for imported vouchers.

Every ledger entry becomes one journal line (positive amount -> debit,
negative -> credit). A ledger that resolves to no GL account is posted to
the company's suspense account, and any residual difference is closed with
a balancing suspense line, so every journal balances regardless of how
complete the mapping configuration is.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Optional

from loguru import logger

from tally_migration.models import ChartOfAccount, JournalEntry, JournalEntryLine
from tally_migration.repositories import ChartOfAccountRepository, Repositories
from tally_migration.schemas.tally import TallyVoucher

SUSPENSE_ACCOUNT_CODE = ChartOfAccountRepository.SUSPENSE_CODE
SUSPENSE_ACCOUNT_NAME = "Tally Import Suspense Account"

# Smallest difference worth a balancing line
_BALANCE_EPSILON = 0.005


class ResolvedAccount(NamedTuple):
    account: ChartOfAccount
    via_suspense: bool


@dataclass
class JournalPosting:
    entry: JournalEntry
    total_debit: float = 0.0
    total_credit: float = 0.0
    suspense_lines: int = 0
    suspense_amount: float = 0.0
    created: bool = True


def ensure_suspense_account(repos: Repositories, company_id: int) -> ChartOfAccount:
    """The per-company suspense account, created on first use."""
    account = repos.accounts.get_suspense_account(company_id)
    if account is None:
        account = repos.accounts.add(ChartOfAccount(
            company_id=company_id,
            account_code=SUSPENSE_ACCOUNT_CODE,
            account_name=SUSPENSE_ACCOUNT_NAME,
            account_type="liability",
            account_sub_type="current_liability",
            normal_balance="credit",
            description="Holds amounts from Tally ledgers that could not be mapped",
            is_system_account=True,
        ))
        logger.info(f"Created suspense account for company {company_id}")
    return account


def journal_number(voucher: TallyVoucher) -> str:
    prefix = (voucher.voucher_type or "JV")[:3].upper()
    return f"TLY-{prefix}-{voucher.voucher_number or voucher.guid[:8] or 'NA'}"


class JournalWriter:
    def __init__(self, repos: Repositories):
        self.repos = repos

    def resolve_account(self, company_id: int, ledger_name: str,
                        ledger_guid: Optional[str] = None) -> ResolvedAccount:
        """Account by name, Tally GUID or shadowed ledger name; else suspense."""
        accounts = self.repos.accounts
        account = (
            accounts.get_by_name(company_id, ledger_name)
            or accounts.get_by_tally_guid(company_id, ledger_guid)
            or accounts.get_by_tally_ledger_name(company_id, ledger_name)
        )
        if account is not None:
            return ResolvedAccount(account, False)
        return ResolvedAccount(ensure_suspense_account(self.repos, company_id), True)

    def post_voucher(
        self,
        batch_id: int,
        company_id: int,
        voucher: TallyVoucher,
        source_type: str,
        source_id: Optional[int] = None,
        source_number: Optional[str] = None,
    ) -> JournalPosting:
        journals = self.repos.journals
        existing = journals.get_by_tally_guid(company_id, voucher.guid)
        if existing is not None:
            return JournalPosting(
                entry=existing,
                total_debit=existing.total_debit,
                total_credit=existing.total_credit,
                created=False,
            )

        entry = journals.add(JournalEntry(
            company_id=company_id,
            journal_number=journal_number(voucher),
            journal_date=voucher.voucher_date,
            period_month=voucher.voucher_date.strftime("%Y-%m"),
            description=voucher.narration or f"Tally {voucher.voucher_type} {voucher.voucher_number}",
            source_type=source_type,
            source_id=source_id,
            source_number=source_number or voucher.voucher_number,
            status="cancelled" if voucher.is_cancelled else "posted",
            tally_voucher_guid=voucher.guid or None,
            tally_voucher_number=voucher.voucher_number,
            tally_voucher_type=voucher.voucher_type,
            tally_migration_batch_id=batch_id,
        ))
        posting = JournalPosting(entry=entry)

        line_number = 0
        for ledger_entry in voucher.ledger_entries:
            if ledger_entry.amount == 0:
                continue
            resolved = self.resolve_account(company_id, ledger_entry.ledger_name, ledger_entry.ledger_guid)
            amount = round(abs(ledger_entry.amount), 2)
            is_debit = ledger_entry.amount > 0
            line_number += 1
            journals.add_line(JournalEntryLine(
                journal_entry_id=entry.id,
                account_id=resolved.account.id,
                line_number=line_number,
                description=ledger_entry.ledger_name,
                debit_amount=amount if is_debit else 0.0,
                credit_amount=0.0 if is_debit else amount,
                is_suspense=resolved.via_suspense,
                tally_ledger_name=ledger_entry.ledger_name,
            ))
            if is_debit:
                posting.total_debit += amount
            else:
                posting.total_credit += amount
            if resolved.via_suspense:
                posting.suspense_lines += 1
                posting.suspense_amount += amount

        diff = round(posting.total_debit - posting.total_credit, 2)
        if abs(diff) > _BALANCE_EPSILON:
            suspense = ensure_suspense_account(self.repos, company_id)
            line_number += 1
            journals.add_line(JournalEntryLine(
                journal_entry_id=entry.id,
                account_id=suspense.id,
                line_number=line_number,
                description=f"Balancing entry for {voucher.display_name}",
                debit_amount=abs(diff) if diff < 0 else 0.0,
                credit_amount=diff if diff > 0 else 0.0,
                is_suspense=True,
            ))
            if diff > 0:
                posting.total_credit += diff
            else:
                posting.total_debit += -diff
            posting.suspense_lines += 1
            posting.suspense_amount += abs(diff)
            logger.warning(f"Voucher {voucher.display_name} off by {diff:.2f}; balanced to suspense")

        posting.total_debit = round(posting.total_debit, 2)
        posting.total_credit = round(posting.total_credit, 2)
        posting.suspense_amount = round(posting.suspense_amount, 2)
        entry.total_debit = posting.total_debit
        entry.total_credit = posting.total_credit
        journals.update(entry)
        return posting
