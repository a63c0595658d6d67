"""
Payment voucher classifier.

Decides what kind of business payment a Tally "Payment" voucher
represents. The rules are an ordered chain, first match wins, and every
outcome carries a human-readable reason for the audit trail:

  1. no credit-side entry                      -> Other
  2. government remittance in narration        -> Statutory
  3. payee party in a contractor/vendor group  -> Contractor / Vendor
  4. salary, loan/EMI, bank charge, transfer   -> matching type
  5. payee party flagged as vendor             -> Vendor
  6. otherwise                                 -> Other

Rule 2 runs before the party lookup so that a TDS challan paid to a
ledger that happens to sit under a contractor group is still treated as
a government remittance.
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Optional

from loguru import logger
from pydantic import BaseModel

from tally_migration.repositories import Repositories
from tally_migration.schemas.tally import LedgerEntry, TallyVoucher


class PaymentType(str, Enum):
    VENDOR = "vendor"
    CONTRACTOR = "contractor"
    STATUTORY = "statutory"
    SALARY = "salary"
    LOAN_EMI = "loan_emi"
    BANK_CHARGE = "bank_charge"
    INTERNAL_TRANSFER = "internal_transfer"
    OTHER = "other"


class PaymentClassification(BaseModel):
    payment_type: PaymentType
    target_ledger_name: Optional[str] = None
    party_id: Optional[int] = None
    amount: float = 0.0
    reason: str


# ── patterns ─────────────────────────────────────────────────────────────────

_STATUTORY_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\bcbdt\b", re.IGNORECASE), "CBDT e-payment"),
    (re.compile(r"\btin\s*2\.0\b", re.IGNORECASE), "TIN 2.0 tax payment"),
    (re.compile(r"\boltas\b", re.IGNORECASE), "OLTAS challan"),
    (re.compile(r"\bitns\s*-?\s*281\b", re.IGNORECASE), "ITNS 281 TDS challan"),
    (re.compile(r"\bepfo\b|\bepf\b|\btrrn\b", re.IGNORECASE), "EPFO remittance"),
    (re.compile(r"\besic\b", re.IGNORECASE), "ESIC remittance"),
    (re.compile(r"professional\s*tax|e-?khajane|\bptax\b", re.IGNORECASE), "professional tax remittance"),
]

_SALARY_RE = re.compile(r"\bsalar(y|ies)\b|\bwages?\b|\bpayroll\b|\bstipend\b", re.IGNORECASE)
_LOAN_RE = re.compile(r"\bemi\b|\bloan\b|_emi\b|\bpcr\d+", re.IGNORECASE)
_BANK_CHARGE_RE = re.compile(
    r"bank\s*charges?|\bcharges?\b.*\bgst\b|\bsms\s*charges?|\bprocessing\s*fee|\bamc\b|\bcommission\b",
    re.IGNORECASE,
)
_TRANSFER_RE = re.compile(
    r"\bself\b|\bown\s*account\b|\binter\s*-?bank\b|\bfund\s*transfer\b|\bsweep\b|\bfd\b",
    re.IGNORECASE,
)

CONTRACTOR_GROUPS = {
    "contractors",
    "consultants",
    "professional fees",
    "freelancers",
    "sub-contractors",
    "sub contractors",
}

VENDOR_GROUPS = {
    "sundry creditors",
    "rent payable",
    "commission payable",
    "brokerage payable",
    "interest payable",
    "creditors",
    "suppliers",
}

BANK_KEYWORDS = (
    "bank", "axis", "hdfc", "icici", "sbi", "kotak", "yes bank", "idfc",
    "canara", "union", "pnb", "bob", "indusind",
)


def is_bank_ledger(name: Optional[str]) -> bool:
    n = (name or "").lower()
    return any(k in n for k in BANK_KEYWORDS)


def payee_entry(voucher: TallyVoucher) -> Optional[LedgerEntry]:
    """Most negative ledger entry, the credit side of the payment."""
    credits = [e for e in voucher.ledger_entries if e.amount < 0]
    if not credits:
        return None
    return min(credits, key=lambda e: e.amount)


def beneficiary_entry(voucher: TallyVoucher) -> Optional[LedgerEntry]:
    """Largest debit-side non-bank entry: who actually received the money."""
    debits = [e for e in voucher.ledger_entries if e.amount > 0 and not is_bank_ledger(e.ledger_name)]
    if not debits:
        debits = [e for e in voucher.ledger_entries if e.amount > 0]
    if not debits:
        return None
    return max(debits, key=lambda e: e.amount)


class PaymentClassifier:
    """Pure classification over a voucher plus read-only party lookups."""

    def __init__(self, repos: Repositories):
        self.repos = repos

    def classify(self, company_id: int, voucher: TallyVoucher) -> PaymentClassification:
        result = self._classify(company_id, voucher)
        logger.debug(
            f"Classified {voucher.display_name} as {result.payment_type.value}: {result.reason}"
        )
        return result

    def _classify(self, company_id: int, voucher: TallyVoucher) -> PaymentClassification:
        payee = payee_entry(voucher)
        if payee is None:
            return PaymentClassification(
                payment_type=PaymentType.OTHER,
                amount=voucher.amount,
                reason="No credit-side ledger entry",
            )

        # The credit side is normally the bank; the counterparty is on the debit side
        counterparty = beneficiary_entry(voucher) if is_bank_ledger(payee.ledger_name) else payee
        target = counterparty or payee
        amount = abs(payee.amount)
        text = " ".join(
            filter(None, [voucher.narration, *(e.ledger_name for e in voucher.ledger_entries)])
        )

        for pattern, label in _STATUTORY_PATTERNS:
            if pattern.search(text):
                return PaymentClassification(
                    payment_type=PaymentType.STATUTORY,
                    target_ledger_name=target.ledger_name,
                    amount=amount,
                    reason=f"Narration/ledger matches {label}",
                )

        party = None
        for name in filter(None, (target.ledger_name, voucher.party_ledger_name)):
            party = self.repos.parties.get_by_name(company_id, name)
            if party is not None:
                break
        group = (party.tally_group_name or "").strip().lower() if party else ""

        if party is not None and group in CONTRACTOR_GROUPS:
            return PaymentClassification(
                payment_type=PaymentType.CONTRACTOR,
                target_ledger_name=party.name,
                party_id=party.id,
                amount=amount,
                reason=f"Party '{party.name}' is in contractor group '{party.tally_group_name}'",
            )
        if party is not None and group in VENDOR_GROUPS:
            return PaymentClassification(
                payment_type=PaymentType.VENDOR,
                target_ledger_name=party.name,
                party_id=party.id,
                amount=amount,
                reason=f"Party '{party.name}' is in vendor group '{party.tally_group_name}'",
            )

        keyword_text = f"{voucher.narration or ''} {target.ledger_name}"
        if _SALARY_RE.search(keyword_text):
            return self._keyword(PaymentType.SALARY, target, party, amount, "salary keyword")
        if _LOAN_RE.search(keyword_text):
            return self._keyword(PaymentType.LOAN_EMI, target, party, amount, "loan/EMI keyword")
        if _BANK_CHARGE_RE.search(keyword_text):
            return self._keyword(PaymentType.BANK_CHARGE, target, party, amount, "bank charge keyword")
        if _TRANSFER_RE.search(keyword_text):
            return self._keyword(PaymentType.INTERNAL_TRANSFER, target, party, amount, "internal transfer keyword")
        if counterparty is not None and is_bank_ledger(counterparty.ledger_name):
            return self._keyword(
                PaymentType.INTERNAL_TRANSFER, target, party, amount, "both sides are bank ledgers"
            )

        if party is not None and party.is_vendor:
            return PaymentClassification(
                payment_type=PaymentType.VENDOR,
                target_ledger_name=party.name,
                party_id=party.id,
                amount=amount,
                reason=f"Party '{party.name}' is flagged as a vendor",
            )

        return PaymentClassification(
            payment_type=PaymentType.OTHER,
            target_ledger_name=target.ledger_name,
            party_id=party.id if party else None,
            amount=amount,
            reason="No classification rule matched",
        )

    @staticmethod
    def _keyword(payment_type, target, party, amount, label) -> PaymentClassification:
        return PaymentClassification(
            payment_type=payment_type,
            target_ledger_name=target.ledger_name,
            party_id=party.id if party else None,
            amount=amount,
            reason=f"Narration or payee matches {label}",
        )
