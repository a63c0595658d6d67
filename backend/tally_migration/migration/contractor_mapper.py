"""
Contractor payment mapper.

Derives the TDS section and rate for a payment to a contractor or
professional. The effective withholding rate on the voucher picks a band
(>=9% -> 194J professional, >=1.5% -> 194C individual, >0% -> 194C other);
a TDS section stored on the vendor profile overrides the band's label,
while the amount actually withheld on the voucher overrides the profile's
default rate.
"""
from __future__ import annotations

from typing import Optional

from loguru import logger

from tally_migration.core.errors import ValidationError
from tally_migration.migration.classifier import PaymentClassification, is_bank_ledger
from tally_migration.migration.mappings import TDS_RULES
from tally_migration.models import ContractorPayment
from tally_migration.repositories import Repositories
from tally_migration.schemas.tally import TallyVoucher


def withheld_tds(voucher: TallyVoucher) -> float:
    """TDS withheld on the voucher: explicit breakdown, else TDS-named entries."""
    explicit = sum(abs(e.tds_amount) for e in voucher.ledger_entries if e.tds_amount)
    if explicit:
        return round(explicit, 2)
    return round(
        sum(abs(e.amount) for e in voucher.ledger_entries if "tds" in e.ledger_name.lower()),
        2,
    )


def section_for_rate(rate: float) -> tuple[Optional[str], Optional[str]]:
    """Rate band -> (section, contractor_type)."""
    if rate >= 9:
        return "194J", "professional"
    if rate >= 1.5:
        return "194C", "individual"
    if rate > 0:
        return "194C", "other"
    return None, None


def payment_mode_for(voucher: TallyVoucher) -> str:
    text = (voucher.narration or "").lower()
    if "cheque" in text or "chq" in text:
        return "cheque"
    if "upi" in text:
        return "upi"
    if "cash" in text or not any(is_bank_ledger(e.ledger_name) for e in voucher.ledger_entries):
        return "cash"
    return "bank_transfer"


class ContractorPaymentMapper:
    def __init__(self, repos: Repositories):
        self.repos = repos

    def map_and_save(
        self,
        batch_id: int,
        company_id: int,
        voucher: TallyVoucher,
        classification: PaymentClassification,
    ) -> ContractorPayment:
        if classification.party_id is None:
            raise ValidationError(
                f"Contractor payment {voucher.voucher_number} has no resolved party"
            )
        existing = self.repos.contractor_payments.get_by_tally_guid(company_id, voucher.guid)
        if existing is not None:
            return existing

        tds_amount = withheld_tds(voucher)
        net_paid = round(classification.amount or voucher.amount, 2)
        gross = round(net_paid + tds_amount, 2)
        rate = round(tds_amount / gross * 100, 2) if gross and tds_amount else 0.0
        section, contractor_type = section_for_rate(rate)

        profile = self.repos.parties.get_vendor_profile(classification.party_id)
        if profile is not None and profile.default_tds_section:
            section = profile.default_tds_section
            if contractor_type is None:
                nature = TDS_RULES.get(section, ("other",))[0]
                contractor_type = "professional" if nature == "professional" else "individual"
        if tds_amount == 0 and profile is not None and profile.default_tds_rate:
            rate = profile.default_tds_rate
            tds_amount = round(gross * rate / 100, 2)

        payment = self.repos.contractor_payments.add(ContractorPayment(
            company_id=company_id,
            party_id=classification.party_id,
            payment_date=voucher.voucher_date,
            payment_month=voucher.voucher_date.month,
            payment_year=voucher.voucher_date.year,
            gross_amount=gross,
            tds_section=section or "194C",
            tds_rate=rate,
            tds_amount=tds_amount,
            net_payable=round(gross - tds_amount, 2),
            contractor_type=contractor_type or "individual",
            payment_mode=payment_mode_for(voucher),
            reference_number=voucher.reference_number or voucher.voucher_number,
            narration=voucher.narration,
            status="cancelled" if voucher.is_cancelled else "paid",
            tally_voucher_guid=voucher.guid or None,
            tally_voucher_number=voucher.voucher_number,
            tally_migration_batch_id=batch_id,
        ))
        logger.debug(
            f"Contractor payment {gross:.2f} ({payment.tds_section} @ {rate}%) "
            f"from {voucher.display_name}"
        )
        return payment
