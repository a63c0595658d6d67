"""
Post-parse summaries and structural checks shared by the XML and JSON parsers.
"""
from __future__ import annotations

from collections import Counter
from typing import Iterable

from tally_migration.core.config import settings
from tally_migration.etl.values import normalize_voucher_type
from tally_migration.schemas.tally import (
    ParsedMasters,
    ParsedVouchers,
    TallyLedger,
    TallyVoucher,
    ValidationIssue,
    VoucherTypeSummary,
)

# Normalised type -> ParsedVouchers count attribute
_COUNT_FIELDS: dict[str, str] = {
    "sales": "sales_count",
    "purchase": "purchase_count",
    "receipt": "receipt_count",
    "payment": "payment_count",
    "journal": "journal_count",
    "contra": "contra_count",
    "credit_note": "credit_note_count",
    "debit_note": "debit_note_count",
    "stock_journal": "stock_journal_count",
    "physical_stock": "physical_stock_count",
    "delivery_note": "delivery_note_count",
    "receipt_note": "receipt_note_count",
}

_TOTAL_FIELDS: dict[str, str] = {
    "sales": "sales_total",
    "purchase": "purchase_total",
    "receipt": "receipt_total",
    "payment": "payment_total",
}


def count_ledgers_by_group(ledgers: Iterable[TallyLedger]) -> dict[str, int]:
    counts = Counter(ledger.parent or "(none)" for ledger in ledgers)
    return dict(sorted(counts.items()))


def summarize_vouchers(vouchers: list[TallyVoucher]) -> ParsedVouchers:
    """Build per-type counts, headline totals and the date range."""
    summary = ParsedVouchers(vouchers=vouchers)
    for voucher in vouchers:
        key = voucher.voucher_type.strip().lower() or "(blank)"
        bucket = summary.counts_by_type.setdefault(key, VoucherTypeSummary())
        bucket.count += 1
        bucket.amount += voucher.amount

        kind = normalize_voucher_type(voucher.voucher_type)
        count_field = _COUNT_FIELDS.get(kind)
        if count_field:
            setattr(summary, count_field, getattr(summary, count_field) + 1)
        else:
            summary.other_count += 1
        total_field = _TOTAL_FIELDS.get(kind)
        if total_field:
            setattr(summary, total_field, getattr(summary, total_field) + voucher.amount)

    if vouchers:
        dates = [v.voucher_date for v in vouchers]
        summary.min_date = min(dates)
        summary.max_date = max(dates)
    return summary


def voucher_imbalance(voucher: TallyVoucher) -> float:
    return round(sum(entry.amount for entry in voucher.ledger_entries), 2)


def structural_issues(masters: ParsedMasters, vouchers: ParsedVouchers) -> list[ValidationIssue]:
    """Checks that only need the parsed document itself."""
    issues: list[ValidationIssue] = []

    if not (masters.ledgers or masters.stock_items or masters.groups or vouchers.vouchers):
        issues.append(ValidationIssue(
            severity="error",
            code="EMPTY_FILE",
            message="No masters or vouchers found in the file",
        ))
        return issues

    missing_guid = [ledger.name for ledger in masters.ledgers if not ledger.guid]
    if missing_guid:
        issues.append(ValidationIssue(
            severity="warning",
            code="MISSING_GUID",
            message=(
                f"{len(missing_guid)} ledger(s) have no GUID; re-imports will "
                f"match them by name only"
            ),
            record_type="ledger",
            record_name=", ".join(missing_guid[:10]),
        ))

    vouchers_missing_guid = [v for v in vouchers.vouchers if not v.guid]
    if vouchers_missing_guid:
        issues.append(ValidationIssue(
            severity="warning",
            code="MISSING_GUID",
            message=(
                f"{len(vouchers_missing_guid)} voucher(s) have no GUID and "
                f"cannot be de-duplicated on re-import"
            ),
            record_type="voucher",
        ))

    empty = [v for v in vouchers.vouchers if not v.ledger_entries]
    if empty:
        issues.append(ValidationIssue(
            severity="warning",
            code="EMPTY_VOUCHERS",
            message=f"{len(empty)} voucher(s) have no ledger entries",
            record_type="voucher",
            record_name=", ".join(v.display_name for v in empty[:10]),
        ))

    for voucher in vouchers.vouchers:
        if not voucher.ledger_entries:
            continue
        diff = voucher_imbalance(voucher)
        if abs(diff) > settings.UNBALANCED_TOLERANCE:
            issues.append(unbalanced_issue(voucher, diff))

    return issues


def unbalanced_issue(voucher: TallyVoucher, diff: float) -> ValidationIssue:
    return ValidationIssue(
        severity="error",
        code="UNBALANCED_VOUCHER",
        message=f"Voucher is unbalanced by {diff:,.2f}",
        record_type="voucher",
        record_name=voucher.display_name,
        record_guid=voucher.guid or None,
        field="ledger_entries",
        actual_value=f"{diff:.2f}",
    )
