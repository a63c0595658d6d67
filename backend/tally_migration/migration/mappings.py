"""
Ledger routing rules.

A company's FieldMapping rows decide what each Tally ledger becomes:
a customer or vendor party, a bank account, a general-ledger account, or
(when nothing matches) a suspense placeholder. Default rows are seeded the
first time a company imports. Resolution order:

  1. ledger-specific mapping (by exact ledger name)
  2. group mapping, walking up the ledger's group chain
  3. built-in keyword table on the group names
  4. suspense
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Optional

from loguru import logger

from tally_migration.models import FieldMapping
from tally_migration.repositories import Repositories
from tally_migration.schemas.responses import MappingConfig

# ── defaults ─────────────────────────────────────────────────────────────────

# (group, target_entity, account_type, tag_assignments)
_DEFAULT_GROUPS: list[tuple[str, str, Optional[str], list[str]]] = [
    ("Sundry Creditors", "vendors", None, ["Vendor:Supplier"]),
    ("Sundry Debtors", "customers", None, ["Customer:B2B"]),
    ("Bank Accounts", "bank_accounts", "asset", []),
    ("Bank OD A/c", "bank_accounts", "liability", []),
    ("Bank OCC A/c", "bank_accounts", "liability", []),
    ("CONSULTANTS", "vendors", None, ["TDS:194J-Professional", "Vendor:Consultant"]),
    ("PROFESSIONAL FEES", "vendors", None, ["TDS:194J-Professional", "Vendor:Consultant"]),
    ("CONTRACTORS", "vendors", None, ["TDS:194C-Contractor", "Vendor:Contractor"]),
    ("RENT PAYABLE", "vendors", None, ["TDS:194I-Rent-Land", "Vendor:Landlord"]),
    ("COMMISSION PAYABLE", "vendors", None, ["TDS:194H-Commission", "Vendor:Service"]),
    ("INTEREST PAYABLE", "vendors", None, ["TDS:194A-Interest"]),
    ("BROKERAGE PAYABLE", "vendors", None, ["Vendor:Service"]),
    ("EXPORT DEBTORS", "customers", None, ["Customer:Export"]),
    ("GOVERNMENT", "customers", None, ["Customer:Government", "TDS:Exempt"]),
    ("Duties & Taxes", "chart_of_accounts", "liability", []),
    ("CGST", "chart_of_accounts", "liability", []),
    ("SGST", "chart_of_accounts", "liability", []),
    ("IGST", "chart_of_accounts", "liability", []),
    ("UTGST", "chart_of_accounts", "liability", []),
    ("Output CGST", "chart_of_accounts", "liability", []),
    ("Output SGST", "chart_of_accounts", "liability", []),
    ("Output IGST", "chart_of_accounts", "liability", []),
    ("TDS Payable", "chart_of_accounts", "liability", []),
    ("TDS on Contract", "chart_of_accounts", "liability", []),
    ("TDS on Professional", "chart_of_accounts", "liability", []),
    ("TDS on Salary", "chart_of_accounts", "liability", []),
    ("Input CGST", "chart_of_accounts", "asset", []),
    ("Input SGST", "chart_of_accounts", "asset", []),
    ("Input IGST", "chart_of_accounts", "asset", []),
    ("Salary", "chart_of_accounts", "expense", []),
    ("Salaries", "chart_of_accounts", "expense", []),
    ("Bonus", "chart_of_accounts", "expense", []),
    ("Stipend", "chart_of_accounts", "expense", []),
    ("PF Employer Contribution", "chart_of_accounts", "expense", []),
    ("Salary Payable", "chart_of_accounts", "liability", []),
    ("PF Payable", "chart_of_accounts", "liability", []),
    ("ESI Payable", "chart_of_accounts", "liability", []),
    ("Capital Account", "chart_of_accounts", "equity", []),
    ("Reserves & Surplus", "chart_of_accounts", "equity", []),
    ("Share Capital", "chart_of_accounts", "equity", []),
    ("Partners Capital", "chart_of_accounts", "equity", []),
    ("Cash-in-hand", "chart_of_accounts", "asset", []),
    ("Purchase Accounts", "chart_of_accounts", "expense", []),
    ("Sales Accounts", "chart_of_accounts", "income", []),
]

# Keyword fallback when no mapping row matches: (substring, target_entity)
_KEYWORD_TARGETS: list[tuple[str, str]] = [
    ("sundry creditor", "vendors"),
    ("sundry debtor", "customers"),
    ("bank", "bank_accounts"),
    ("consultant", "vendors"),
    ("contractor", "vendors"),
    ("freelancer", "vendors"),
    ("gst", "chart_of_accounts"),
    ("tax", "chart_of_accounts"),
    ("expense", "chart_of_accounts"),
    ("income", "chart_of_accounts"),
    ("asset", "chart_of_accounts"),
    ("liabilit", "chart_of_accounts"),
    ("capital", "chart_of_accounts"),
    ("reserve", "chart_of_accounts"),
    ("loan", "chart_of_accounts"),
    ("provision", "chart_of_accounts"),
    ("stock", "chart_of_accounts"),
    ("investment", "chart_of_accounts"),
    ("current", "chart_of_accounts"),
    ("sales", "chart_of_accounts"),
    ("purchase", "chart_of_accounts"),
    ("cash", "chart_of_accounts"),
    ("deposit", "chart_of_accounts"),
]

# Tag prefix -> tag group
_TAG_GROUPS: dict[str, str] = {
    "TDS": "tds_section",
    "Vendor": "party_type",
    "Customer": "party_type",
    "MSME": "compliance",
    "GST": "compliance",
    "PAN": "compliance",
}

# TDS section -> (nature, rate for individuals/HUF, rate for others)
TDS_RULES: dict[str, tuple[str, float, float]] = {
    "194J": ("professional", 10.0, 10.0),
    "194C": ("contractor", 1.0, 2.0),
    "194I": ("rent", 10.0, 10.0),
    "194H": ("commission", 5.0, 5.0),
    "194A": ("interest", 10.0, 10.0),
}


@dataclass
class LedgerRoute:
    target_entity: str
    account_type: Optional[str] = None
    target_account_id: Optional[int] = None
    tag_assignments: list[str] = field(default_factory=list)
    matched_on: str = "default"


def tag_group_for(tag: str) -> str:
    """'TDS:194J-Professional' -> 'tds_section'."""
    prefix = tag.split(":", 1)[0].strip()
    return _TAG_GROUPS.get(prefix, "party_type")


def tds_section_from_tags(tags: list[str]) -> Optional[str]:
    for tag in tags:
        if tag.upper().startswith("TDS:"):
            section = tag.split(":", 1)[1].split("-", 1)[0].strip().upper()
            if section in TDS_RULES:
                return section
    return None


def tds_rate_for(section: Optional[str], party_type: str = "company") -> Optional[float]:
    rule = TDS_RULES.get(section or "")
    if rule is None:
        return None
    _, individual_rate, other_rate = rule
    return individual_rate if party_type in ("individual", "huf") else other_rate


def infer_account_type(group_names: list[str]) -> str:
    """Best-effort account type from the group chain, nearest group first."""
    for raw in group_names:
        g = raw.lower()
        if "asset" in g or "deposit" in g or "cash" in g or "investment" in g:
            return "asset"
        if "income" in g or "sales" in g or "revenue" in g:
            return "income"
        if "expense" in g or "purchase" in g or "salar" in g or "wage" in g:
            return "expense"
        if "capital" in g or "reserve" in g or "surplus" in g:
            return "equity"
        if any(k in g for k in ("liabilit", "duties", "tax", "payable", "provision", "loan", "creditor")):
            return "liability"
    return "asset"


class FieldMappingService:
    """Company-scoped mapping table: seeding, configuration and lookup."""

    def __init__(self, repos: Repositories):
        self.repos = repos
        self._cache: dict[int, list[FieldMapping]] = {}

    def ensure_defaults(self, company_id: int) -> int:
        """Seed the default group mappings once per company. Returns rows added."""
        if self.repos.field_mappings.has_system_defaults(company_id):
            return 0
        for group, target, account_type, tags in _DEFAULT_GROUPS:
            self.repos.field_mappings.add(FieldMapping(
                company_id=company_id,
                mapping_type="ledger_group",
                tally_group_name=group,
                target_entity=target,
                target_account_type=account_type,
                tag_assignments=json.dumps(tags) if tags else None,
                priority=0,
                is_system_default=True,
            ))
        self._cache.pop(company_id, None)
        logger.info(f"Seeded {len(_DEFAULT_GROUPS)} default field mappings for company {company_id}")
        return len(_DEFAULT_GROUPS)

    def save_config(self, company_id: int, config: MappingConfig) -> int:
        """Persist user-supplied mappings. Group rows outrank ledger defaults."""
        saved = 0
        for m in config.group_mappings:
            self.repos.field_mappings.add(FieldMapping(
                company_id=company_id,
                mapping_type="ledger_group",
                tally_group_name=m.tally_group_name,
                target_entity=m.target_entity,
                target_account_type=m.target_account_type,
                tag_assignments=json.dumps(m.tag_assignments) if m.tag_assignments else None,
                priority=10,
            ))
            saved += 1
        for m in config.ledger_mappings:
            self.repos.field_mappings.add(FieldMapping(
                company_id=company_id,
                mapping_type="ledger",
                tally_name=m.tally_ledger_name,
                target_entity=m.target_entity,
                target_account_type=m.target_account_type,
                target_account_id=m.target_account_id,
                priority=5,
            ))
            saved += 1
        for m in config.cost_category_mappings:
            self.repos.field_mappings.add(FieldMapping(
                company_id=company_id,
                mapping_type="cost_category",
                tally_name=m.tally_cost_category,
                target_entity="tags",
                target_tag_group=m.target_tag_group,
                priority=5,
            ))
            saved += 1
        self._cache.pop(company_id, None)
        return saved

    def _mappings(self, company_id: int) -> list[FieldMapping]:
        if company_id not in self._cache:
            self._cache[company_id] = self.repos.field_mappings.active_for_company(company_id)
        return self._cache[company_id]

    def resolve_ledger(
        self,
        company_id: int,
        ledger_name: str,
        group_chain: list[str],
    ) -> LedgerRoute:
        """Route a ledger given its own name and its group chain (nearest first)."""
        mappings = self._mappings(company_id)
        key = ledger_name.strip().lower()

        for m in mappings:
            if m.mapping_type == "ledger" and (m.tally_name or "").strip().lower() == key:
                return LedgerRoute(
                    target_entity=m.target_entity,
                    account_type=m.target_account_type,
                    target_account_id=m.target_account_id,
                    matched_on=f"ledger:{m.tally_name}",
                )

        for group in group_chain:
            gkey = group.strip().lower()
            for m in mappings:
                if m.mapping_type == "ledger_group" and (m.tally_group_name or "").strip().lower() == gkey:
                    return LedgerRoute(
                        target_entity=m.target_entity,
                        account_type=m.target_account_type,
                        tag_assignments=json.loads(m.tag_assignments) if m.tag_assignments else [],
                        matched_on=f"group:{m.tally_group_name}",
                    )

        for group in group_chain:
            gkey = group.strip().lower()
            for keyword, target in _KEYWORD_TARGETS:
                if keyword in gkey:
                    return LedgerRoute(target_entity=target, matched_on=f"keyword:{keyword}")

        return LedgerRoute(target_entity="suspense", matched_on="none")

    def tag_group_for_category(self, company_id: int, category: Optional[str]) -> str:
        if category:
            key = category.strip().lower()
            for m in self._mappings(company_id):
                if m.mapping_type == "cost_category" and (m.tally_name or "").strip().lower() == key:
                    return m.target_tag_group or "cost_center"
        return "cost_center"
