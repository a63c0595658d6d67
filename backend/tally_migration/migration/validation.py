"""
Pre-import validation of a parsed Tally document.

Adds data-quality checks on top of the parser's structural issues and a
duplicate pass against records already in the target database. Only
error-severity issues block the import; warnings and info never do.
"""
from __future__ import annotations

import re
from datetime import date
from typing import Optional

from dateutil.relativedelta import relativedelta
from loguru import logger

from tally_migration.core.config import settings
from tally_migration.etl.summary import unbalanced_issue, voucher_imbalance
from tally_migration.etl.values import normalize_voucher_type
from tally_migration.repositories import Repositories
from tally_migration.schemas.responses import DuplicateCheckResult, ValidationResult
from tally_migration.schemas.tally import ParsedDocument, ValidationIssue

GSTIN_RE = re.compile(r"^\d{2}[A-Z]{5}\d{4}[A-Z][1-9A-Z]Z[0-9A-Z]$")
PAN_RE = re.compile(r"^[A-Z]{5}\d{4}[A-Z]$")
HSN_RE = re.compile(r"^(\d{4}|\d{6}|\d{8})$")


def _key(issue: ValidationIssue) -> tuple:
    return issue.code, issue.record_guid or issue.record_name, issue.field


class ValidationService:
    def __init__(self, repos: Repositories):
        self.repos = repos

    def validate(self, company_id: int, document: ParsedDocument,
                 today: Optional[date] = None) -> ValidationResult:
        today = today or date.today()
        issues: list[ValidationIssue] = []
        seen: set[tuple] = set()

        def add(issue: ValidationIssue) -> None:
            k = _key(issue)
            if k not in seen:
                seen.add(k)
                issues.append(issue)

        for issue in document.validation_issues:
            add(issue)
        self._check_ledgers(document, add)
        self._check_stock_items(document, add)
        self._check_vouchers(document, add, today)
        duplicates = self._check_duplicates(company_id, document, add)

        errors = sum(1 for i in issues if i.severity == "error")
        warnings = sum(1 for i in issues if i.severity == "warning")
        infos = sum(1 for i in issues if i.severity == "info")
        logger.info(
            f"Validated {document.file_name}: {errors} error(s), {warnings} warning(s), "
            f"{infos} info; duplicates={duplicates.duplicate_ledgers + duplicates.duplicate_stock_items + duplicates.duplicate_vouchers}"
        )
        return ValidationResult(
            is_valid=errors == 0,
            can_proceed=errors == 0,
            error_count=errors,
            warning_count=warnings,
            info_count=infos,
            issues=issues,
            duplicates=duplicates,
        )

    @staticmethod
    def _check_ledgers(document: ParsedDocument, add) -> None:
        for ledger in document.masters.ledgers:
            if ledger.gstin and not GSTIN_RE.match(ledger.gstin.strip().upper()):
                add(ValidationIssue(
                    severity="warning",
                    code="INVALID_GSTIN",
                    message=f"GSTIN '{ledger.gstin}' is not in the 15-character GSTIN format",
                    record_type="ledger",
                    record_name=ledger.name,
                    record_guid=ledger.guid or None,
                    field="gstin",
                    actual_value=ledger.gstin,
                ))
            if ledger.pan_number and not PAN_RE.match(ledger.pan_number.strip().upper()):
                add(ValidationIssue(
                    severity="warning",
                    code="INVALID_PAN",
                    message=f"PAN '{ledger.pan_number}' is not in the AAAAA9999A format",
                    record_type="ledger",
                    record_name=ledger.name,
                    record_guid=ledger.guid or None,
                    field="pan_number",
                    actual_value=ledger.pan_number,
                ))

    @staticmethod
    def _check_stock_items(document: ParsedDocument, add) -> None:
        for item in document.masters.stock_items:
            if item.hsn_code and not HSN_RE.match(item.hsn_code.strip()):
                add(ValidationIssue(
                    severity="warning",
                    code="INVALID_HSN",
                    message=f"HSN code '{item.hsn_code}' should have 4, 6 or 8 digits",
                    record_type="stock_item",
                    record_name=item.name,
                    record_guid=item.guid or None,
                    field="hsn_code",
                    actual_value=item.hsn_code,
                ))
            if item.opening_quantity < 0:
                add(ValidationIssue(
                    severity="warning",
                    code="NEGATIVE_OPENING_QTY",
                    message="Opening quantity is negative",
                    record_type="stock_item",
                    record_name=item.name,
                    record_guid=item.guid or None,
                    field="opening_quantity",
                    actual_value=str(item.opening_quantity),
                ))

    @staticmethod
    def _check_vouchers(document: ParsedDocument, add, today: date) -> None:
        stale_before = today - relativedelta(years=settings.STALE_VOUCHER_YEARS)
        for voucher in document.vouchers.vouchers:
            if voucher.ledger_entries:
                diff = voucher_imbalance(voucher)
                if abs(diff) > settings.UNBALANCED_TOLERANCE:
                    add(unbalanced_issue(voucher, diff))

            if voucher.voucher_date > today:
                add(ValidationIssue(
                    severity="warning",
                    code="FUTURE_DATE",
                    message=f"Voucher is dated in the future ({voucher.voucher_date.isoformat()})",
                    record_type="voucher",
                    record_name=voucher.display_name,
                    record_guid=voucher.guid or None,
                    field="voucher_date",
                    actual_value=voucher.voucher_date.isoformat(),
                ))
            elif voucher.voucher_date < stale_before:
                add(ValidationIssue(
                    severity="warning",
                    code="OLD_VOUCHER",
                    message=f"Voucher is more than {settings.STALE_VOUCHER_YEARS} years old",
                    record_type="voucher",
                    record_name=voucher.display_name,
                    record_guid=voucher.guid or None,
                    field="voucher_date",
                    actual_value=voucher.voucher_date.isoformat(),
                ))

            kind = normalize_voucher_type(voucher.voucher_type)
            if kind in ("sales", "purchase") and not (
                voucher.party_ledger_name or any(e.is_party_ledger for e in voucher.ledger_entries)
            ):
                add(ValidationIssue(
                    severity="warning",
                    code="MISSING_PARTY",
                    message=f"{voucher.voucher_type} voucher has no party ledger",
                    record_type="voucher",
                    record_name=voucher.display_name,
                    record_guid=voucher.guid or None,
                    field="party_ledger_name",
                ))

    def _check_duplicates(self, company_id: int, document: ParsedDocument, add) -> DuplicateCheckResult:
        result = DuplicateCheckResult()
        repos = self.repos
        ledger_repos = (repos.parties, repos.accounts, repos.bank_accounts)

        for ledger in document.masters.ledgers:
            if ledger.guid and any(r.get_by_tally_guid(company_id, ledger.guid) for r in ledger_repos):
                result.duplicate_ledgers += 1
                if len(result.duplicate_ledger_names) < 50:
                    result.duplicate_ledger_names.append(ledger.name)
        for item in document.masters.stock_items:
            if item.guid and repos.stock_items.get_by_tally_guid(company_id, item.guid):
                result.duplicate_stock_items += 1
        for voucher in document.vouchers.vouchers:
            if voucher.guid and repos.journals.get_by_tally_guid(company_id, voucher.guid):
                result.duplicate_vouchers += 1

        total = result.duplicate_ledgers + result.duplicate_stock_items + result.duplicate_vouchers
        if total:
            add(ValidationIssue(
                severity="info",
                code="DUPLICATES_FOUND",
                message=(
                    f"{result.duplicate_ledgers} ledger(s), {result.duplicate_stock_items} stock item(s) "
                    f"and {result.duplicate_vouchers} voucher(s) already exist and will be skipped"
                ),
            ))
        return result
