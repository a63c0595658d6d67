"""
Statutory payment mapper: TDS, PF, ESI and professional tax remittances.

Statutory dues are paid in arrears, so the reporting period is the month
before the payment date. Due dates follow the fixed day-of-month rules
(PF/ESI by the 15th, TDS by the 7th, PT by the 20th).
"""
from __future__ import annotations

import re
from datetime import date
from typing import Optional

from dateutil.relativedelta import relativedelta
from loguru import logger

from tally_migration.migration.classifier import PaymentClassification, is_bank_ledger
from tally_migration.models import StatutoryPayment
from tally_migration.repositories import Repositories
from tally_migration.schemas.tally import TallyVoucher

_DUE_DAY = {"PF": 15, "ESI": 15, "PT": 20}
_TDS_DUE_DAY = 7

_BANK_REF_RE = re.compile(r"INB[\/\s]*(\d{9,12})", re.IGNORECASE)
_TRRN_RE = re.compile(r"\/\/(\d{16,20})")
_TRRN_LABELLED_RE = re.compile(r"TRRN[\s:#-]*(\d{10,20})", re.IGNORECASE)
_CHALLAN_RE = re.compile(r"TIN 2\.0[\/\s]*(\d+)", re.IGNORECASE)


def determine_payment_type(voucher: TallyVoucher) -> str:
    """Ledger-entry names first (most reliable), then narration keywords."""
    for entry in voucher.ledger_entries:
        name = entry.ledger_name.lower()
        if "tds" in name:
            if "salary" in name or "192" in name:
                return "TDS_192"
            if "consult" in name or "professional" in name or "194j" in name:
                return "TDS_194J"
            if "194c" in name or "contract" in name:
                return "TDS_194C"
        elif "professional tax" in name:
            return "PT"

    text = " ".join(
        filter(None, [voucher.narration, *(e.ledger_name for e in voucher.ledger_entries)])
    ).lower()
    if "epf" in text or "provident fund" in text or re.search(r"\bpf\b", text):
        return "PF"
    if re.search(r"\besic?\b", text) or "employee state insurance" in text:
        return "ESI"
    if "tds" in text and "salary" in text:
        return "TDS_192"
    if "professional tax" in text or re.search(r"\bpt\b", text) or "khajane" in text:
        return "PT"
    if "tds" in text or "cbdt" in text or "tin 2.0" in text:
        if "consult" in text or "professional" in text or "194j" in text:
            return "TDS_194J"
        return "TDS_194C"
    return "TDS_194C"


def determine_category(narration: Optional[str]) -> str:
    text = (narration or "").lower()
    if "annual" in text or "yearly" in text:
        return "annual"
    if "arrear" in text or "previous" in text or "prior" in text:
        return "arrear"
    if "penalty" in text or "fine" in text:
        return "penalty"
    if "interest" in text and ("delay" in text or "late" in text):
        return "interest"
    if "revision" in text or "correction" in text or "additional" in text:
        return "revision"
    return "regular"


def extract_references(narration: Optional[str]) -> dict[str, Optional[str]]:
    text = narration or ""
    bank_ref = _BANK_REF_RE.search(text)
    trrn = _TRRN_RE.search(text) or _TRRN_LABELLED_RE.search(text)
    challan = _CHALLAN_RE.search(text)
    return {
        "bank_reference": bank_ref.group(1) if bank_ref else None,
        "trrn": trrn.group(1) if trrn else None,
        "challan_number": challan.group(1) if challan else None,
    }


def reporting_period(payment_date: date) -> tuple[int, int]:
    """(month, year) of the month preceding the payment."""
    period = payment_date - relativedelta(months=1)
    return period.month, period.year


def fiscal_quarter(month: int) -> str:
    if 4 <= month <= 6:
        return "Q1"
    if 7 <= month <= 9:
        return "Q2"
    if 10 <= month <= 12:
        return "Q3"
    return "Q4"


def financial_year(d: date) -> str:
    """Indian fiscal year label, April to March: 2024-05-10 -> '2024-25'."""
    start = d.year if d.month >= 4 else d.year - 1
    return f"{start}-{(start + 1) % 100:02d}"


def due_date_for(payment_type: str, payment_date: date) -> date:
    day = _TDS_DUE_DAY if payment_type.startswith("TDS") else _DUE_DAY.get(payment_type, _TDS_DUE_DAY)
    return payment_date.replace(day=day)


def payment_mode(narration: Optional[str]) -> str:
    text = (narration or "").lower()
    if "neft" in text:
        return "neft"
    if "rtgs" in text:
        return "rtgs"
    return "online"


class StatutoryPaymentMapper:
    def __init__(self, repos: Repositories):
        self.repos = repos

    def map_and_save(
        self,
        batch_id: int,
        company_id: int,
        voucher: TallyVoucher,
        classification: PaymentClassification,
    ) -> StatutoryPayment:
        existing = self.repos.statutory_payments.get_by_tally_guid(company_id, voucher.guid)
        if existing is not None:
            return existing

        payment_type = determine_payment_type(voucher)
        month, year = reporting_period(voucher.voucher_date)
        refs = extract_references(voucher.narration)

        bank_account_id = None
        for entry in voucher.ledger_entries:
            if is_bank_ledger(entry.ledger_name):
                account = (
                    self.repos.bank_accounts.get_by_tally_ledger_name(company_id, entry.ledger_name)
                    or self.repos.bank_accounts.get_by_name(company_id, entry.ledger_name)
                )
                if account is not None:
                    bank_account_id = account.id
                    break

        amount = round(classification.amount or voucher.amount, 2)
        payment = self.repos.statutory_payments.add(StatutoryPayment(
            company_id=company_id,
            payment_type=payment_type,
            payment_category=determine_category(voucher.narration),
            period_month=month,
            period_year=year,
            quarter=fiscal_quarter(month),
            financial_year=financial_year(voucher.voucher_date),
            principal_amount=amount,
            total_amount=amount,
            payment_date=voucher.voucher_date,
            due_date=due_date_for(payment_type, voucher.voucher_date),
            payment_mode=payment_mode(voucher.narration),
            bank_account_id=bank_account_id,
            reference_number=refs["bank_reference"] or refs["trrn"] or refs["challan_number"],
            bank_reference=refs["bank_reference"],
            trrn=refs["trrn"],
            challan_number=refs["challan_number"],
            narration=voucher.narration,
            status="cancelled" if voucher.is_cancelled else "paid",
            tally_voucher_guid=voucher.guid or None,
            tally_voucher_number=voucher.voucher_number,
            tally_migration_batch_id=batch_id,
        ))
        logger.debug(
            f"Statutory {payment_type} {amount:.2f} for {month:02d}/{year} "
            f"from {voucher.display_name}"
        )
        return payment
