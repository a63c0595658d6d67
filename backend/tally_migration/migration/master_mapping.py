"""
Master data import.

Creates reference entities in strict dependency order:

  Units -> Stock Groups -> Godowns -> Cost Centres (as tags)
        -> Ledgers (parties / GL accounts / bank accounts / suspense)
        -> Stock Items

Deduplication is two-tiered: a record whose Tally GUID already exists is
skipped; a record whose name matches an existing row links that row to
the GUID instead of creating a duplicate. Every outcome is written to the
migration log so the batch can be rolled back.
"""
from __future__ import annotations

import hashlib
import re
from typing import Callable, Optional, Sequence, TypeVar

from loguru import logger
from sqlmodel import Session

from tally_migration.core.errors import ImportCancelled
from tally_migration.migration.control import (
    CancellationToken,
    MigrationLogWriter,
    ProgressCallback,
    report_progress,
)
from tally_migration.migration.mappings import (
    FieldMappingService,
    LedgerRoute,
    infer_account_type,
    tag_group_for,
    tds_rate_for,
    tds_section_from_tags,
)
from tally_migration.models import (
    BankAccount,
    ChartOfAccount,
    CustomerProfile,
    Party,
    StockGroup,
    StockItem,
    Tag,
    Unit,
    VendorProfile,
    Warehouse,
)
from tally_migration.repositories import Repositories
from tally_migration.schemas.responses import ImportCounts, ImportProgress, MasterImportResult
from tally_migration.schemas.tally import (
    ParsedMasters,
    TallyCostCenter,
    TallyGodown,
    TallyLedger,
    TallyStockGroup,
    TallyStockItem,
    TallyUnit,
)

T = TypeVar("T")

_ACCOUNT_PREFIX = {
    "asset": "A",
    "liability": "L",
    "equity": "E",
    "income": "I",
    "expense": "X",
}

_BANK_NAMES = {
    "hdfc": "HDFC Bank",
    "icici": "ICICI Bank",
    "sbi": "State Bank of India",
    "state bank": "State Bank of India",
    "axis": "Axis Bank",
    "kotak": "Kotak Mahindra Bank",
    "yes bank": "Yes Bank",
    "idfc": "IDFC First Bank",
    "canara": "Canara Bank",
    "union": "Union Bank of India",
    "pnb": "Punjab National Bank",
    "bob": "Bank of Baroda",
    "indusind": "IndusInd Bank",
}

# ── helpers ──────────────────────────────────────────────────────────────────


def sort_by_hierarchy(
    items: Sequence[T],
    name: Callable[[T], str],
    parent: Callable[[T], Optional[str]],
) -> list[T]:
    """
    Order records so every parent precedes its children.

    Roots (no parent, or a parent outside the input) go first, then any
    record whose parent has been placed. Whatever is left after a pass
    that places nothing (cycles) is appended in input order.
    """
    names = {name(i).strip().lower() for i in items}
    placed: set[str] = set()
    ordered: list[T] = []
    remaining = list(items)

    for _ in range(len(items) + 1):
        if not remaining:
            break
        progressed = False
        still: list[T] = []
        for item in remaining:
            p = (parent(item) or "").strip().lower()
            if not p or p not in names or p in placed or p == name(item).strip().lower():
                ordered.append(item)
                placed.add(name(item).strip().lower())
                progressed = True
            else:
                still.append(item)
        remaining = still
        if not progressed:
            break

    if remaining:
        logger.warning(
            f"Hierarchy has {len(remaining)} record(s) with cyclic parents; importing them last"
        )
        ordered.extend(remaining)
    return ordered


def generate_account_code(account_type: str, key: str) -> str:
    """Deterministic code from a hash of the Tally GUID (or name): 'TL-1A2B3C4D'."""
    prefix = _ACCOUNT_PREFIX.get(account_type, "O")
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:8].upper()
    return f"T{prefix}-{digest}"


def generate_sku(name: str, key: str) -> str:
    initials = "".join(w[0] for w in re.findall(r"[A-Za-z0-9]+", name))[:4].upper() or "ITEM"
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:6].upper()
    return f"SKU-{initials}-{digest}"


def warehouse_code(name: str) -> str:
    alnum = re.sub(r"[^A-Za-z0-9]", "", name)[:6].upper()
    return f"WH-{alnum or 'MAIN'}"


def valuation_method(costing_method: Optional[str]) -> str:
    m = (costing_method or "").lower()
    if "fifo" in m:
        return "fifo"
    if "lifo" in m:
        return "lifo"
    if "std" in m or "standard" in m:
        return "standard"
    return "weighted_average"


def determine_party_type(name: str, gstin: Optional[str] = None) -> str:
    """From name keywords, then the 6th character of the GSTIN (PAN holder type)."""
    n = name.lower()
    if re.search(r"\b(pvt\.?|private)\s+(ltd\.?|limited)\b|\blimited\b|\bltd\.?$", n):
        return "company"
    if re.search(r"\bllp\b", n):
        return "llp"
    if re.search(r"\b(trust|foundation|society)\b", n):
        return "trust"
    if re.search(r"\b(govt|government|municipal|corporation of)\b", n):
        return "government"
    if re.search(r"&\s*co\b|\bassociates\b|\bpartners\b|\bfirm\b", n):
        return "firm"
    if gstin and len(gstin) >= 6:
        return {
            "C": "company",
            "F": "firm",
            "A": "aop",
            "T": "trust",
            "G": "government",
            "H": "huf",
            "P": "individual",
        }.get(gstin[5].upper(), "individual")
    return "individual"


def normal_balance(account_type: str) -> str:
    return "debit" if account_type in ("asset", "expense") else "credit"


def bank_name_for(ledger_name: str) -> str:
    n = ledger_name.lower()
    for keyword, bank in _BANK_NAMES.items():
        if keyword in n:
            return bank
    return ledger_name


# ── service ──────────────────────────────────────────────────────────────────


class MasterMappingService:
    def __init__(self, repos: Repositories, field_mappings: Optional[FieldMappingService] = None):
        self.repos = repos
        self.session: Session = repos.session
        self.field_mappings = field_mappings or FieldMappingService(repos)
        self.log: Optional[MigrationLogWriter] = None

    def import_masters(
        self,
        batch_id: int,
        company_id: int,
        masters: ParsedMasters,
        progress: Optional[ProgressCallback] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> MasterImportResult:
        self.field_mappings.ensure_defaults(company_id)
        self.session.commit()
        self.log = MigrationLogWriter(self.repos.logs, batch_id)
        result = MasterImportResult()
        total = (
            len(masters.units) + len(masters.stock_groups) + len(masters.godowns)
            + len(masters.cost_centers) + len(masters.ledgers) + len(masters.stock_items)
        )
        done = 0

        def step(label: str, counts: ImportCounts) -> None:
            nonlocal done
            done += counts.total
            report_progress(progress, ImportProgress(
                batch_id=batch_id,
                status="importing",
                current_phase="masters",
                percent_complete=round(30.0 * done / total, 1) if total else 30.0,
                processed_records=done,
                total_records=total,
                message=f"Imported {label}",
            ))

        units = sorted(masters.units, key=lambda u: not u.is_simple_unit)
        self._run("unit", units, lambda u: u.name, lambda u: self._import_unit(batch_id, company_id, u), result.units, cancel)
        step("units", result.units)

        group_ids: dict[str, int] = {}
        groups = sort_by_hierarchy(masters.stock_groups, lambda g: g.name, lambda g: g.parent)
        self._run(
            "stock_group", groups, lambda g: g.name,
            lambda g: self._import_stock_group(batch_id, company_id, g, group_ids),
            result.stock_groups, cancel,
        )
        step("stock groups", result.stock_groups)

        godown_ids: dict[str, int] = {}
        godowns = sort_by_hierarchy(masters.godowns, lambda g: g.name, lambda g: g.parent)
        self._run(
            "godown", godowns, lambda g: g.name,
            lambda g: self._import_godown(batch_id, company_id, g, godown_ids),
            result.godowns, cancel,
        )
        step("godowns", result.godowns)

        tag_ids: dict[str, int] = {}
        centers = sort_by_hierarchy(masters.cost_centers, lambda c: c.name, lambda c: c.parent)
        self._run(
            "cost_center", centers, lambda c: c.name,
            lambda c: self._import_cost_center(batch_id, company_id, c, tag_ids),
            result.cost_centers, cancel,
        )
        step("cost centres", result.cost_centers)

        group_parents = {g.name.strip().lower(): g.parent for g in masters.groups if g.name}
        self._run(
            "ledger", masters.ledgers, lambda l: l.name,
            lambda l: self._import_ledger(batch_id, company_id, l, group_parents),
            result.ledgers, cancel,
        )
        step("ledgers", result.ledgers)

        self._run(
            "stock_item", masters.stock_items, lambda s: s.name,
            lambda s: self._import_stock_item(batch_id, company_id, s),
            result.stock_items, cancel,
        )
        step("stock items", result.stock_items)

        for counts in (result.units, result.stock_groups, result.godowns,
                       result.cost_centers, result.ledgers, result.stock_items):
            result.total_imported += counts.imported
            result.total_skipped += counts.skipped
            result.total_failed += counts.failed
        result.total_suspense = result.ledgers.suspense
        logger.info(
            f"Batch {batch_id}: masters imported={result.total_imported} "
            f"skipped={result.total_skipped} failed={result.total_failed} "
            f"suspense={result.total_suspense}"
        )
        return result

    def _run(
        self,
        record_type: str,
        items: Sequence[T],
        label: Callable[[T], str],
        handler: Callable[[T], str],
        counts: ImportCounts,
        cancel: Optional[CancellationToken],
    ) -> None:
        """Import records one at a time; a failing record is logged and skipped."""
        for item in items:
            if cancel is not None:
                cancel.raise_if_cancelled()
            counts.total += 1
            try:
                outcome = handler(item)
                self.session.commit()
            except ImportCancelled:
                raise
            except Exception as exc:
                self.session.rollback()
                counts.failed += 1
                logger.warning(f"Failed to import {record_type} {label(item)}: {exc}")
                self.log.write(
                    record_type, "failed",
                    tally_guid=getattr(item, "guid", None),
                    tally_name=label(item),
                    error_message=str(exc),
                )
                self.session.commit()
                continue
            if outcome == "imported":
                counts.imported += 1
            elif outcome == "suspense":
                counts.suspense += 1
            else:
                counts.skipped += 1

    def _skip(self, record_type: str, guid: str, name: str, message: str, target_id: int, entity: str) -> str:
        self.log.write(
            record_type, "skipped",
            tally_guid=guid, tally_name=name, error_message=message,
            target_id=target_id, target_entity=entity,
        )
        return "skipped"

    def _success(self, record_type: str, guid: Optional[str], name: str, target_id: int, entity: str,
                 amount: Optional[float] = None) -> str:
        self.log.write(
            record_type, "success",
            tally_guid=guid, tally_name=name, tally_amount=amount,
            target_id=target_id, target_entity=entity,
        )
        return "imported"

    # ── inventory masters ────────────────────────────────────────────────────

    def _import_unit(self, batch_id: int, company_id: int, unit: TallyUnit) -> str:
        units = self.repos.units
        existing = units.get_by_tally_guid(company_id, unit.guid)
        if existing is not None:
            return self._skip("unit", unit.guid, unit.name, "Already exists (by GUID)", existing.id, "units")
        existing = units.get_by_name(company_id, unit.name)
        if existing is not None:
            if not existing.tally_guid and unit.guid:
                existing.tally_guid = unit.guid
                units.update(existing)
            return self._skip("unit", unit.guid, unit.name, "Linked to existing unit (by name)", existing.id, "units")

        base = units.get_by_name(company_id, unit.base_units) if not unit.is_simple_unit else None
        created = units.add(Unit(
            company_id=company_id,
            name=unit.formal_name or unit.name,
            symbol=unit.symbol or unit.name,
            decimal_places=unit.decimal_places,
            is_compound=not unit.is_simple_unit,
            base_unit_id=base.id if base else None,
            conversion_factor=unit.conversion,
            tally_guid=unit.guid or None,
            tally_migration_batch_id=batch_id,
        ))
        return self._success("unit", unit.guid, unit.name, created.id, "units")

    def _import_stock_group(self, batch_id: int, company_id: int, group: TallyStockGroup,
                            ids: dict[str, int]) -> str:
        repo = self.repos.stock_groups
        key = group.name.strip().lower()
        existing = repo.get_by_tally_guid(company_id, group.guid)
        if existing is not None:
            ids[key] = existing.id
            return self._skip("stock_group", group.guid, group.name, "Already exists (by GUID)", existing.id, "stock_groups")
        existing = repo.get_by_name(company_id, group.name)
        if existing is not None:
            ids[key] = existing.id
            if not existing.tally_guid and group.guid:
                existing.tally_guid = group.guid
                repo.update(existing)
            return self._skip("stock_group", group.guid, group.name, "Linked to existing stock group (by name)", existing.id, "stock_groups")

        created = repo.add(StockGroup(
            company_id=company_id,
            name=group.name,
            parent_group_id=self._parent_id(ids, group.parent, repo, company_id),
            is_addable=group.is_addable,
            tally_guid=group.guid or None,
            tally_migration_batch_id=batch_id,
        ))
        ids[key] = created.id
        return self._success("stock_group", group.guid, group.name, created.id, "stock_groups")

    def _import_godown(self, batch_id: int, company_id: int, godown: TallyGodown,
                       ids: dict[str, int]) -> str:
        repo = self.repos.warehouses
        key = godown.name.strip().lower()
        existing = repo.get_by_tally_guid(company_id, godown.guid) or repo.get_by_name(company_id, godown.name)
        if existing is not None:
            ids[key] = existing.id
            if not existing.tally_guid and godown.guid:
                existing.tally_guid = godown.guid
                repo.update(existing)
            return self._skip("godown", godown.guid, godown.name, "Warehouse already exists", existing.id, "warehouses")

        created = repo.add(Warehouse(
            company_id=company_id,
            name=godown.name,
            code=warehouse_code(godown.name),
            address=godown.address,
            parent_warehouse_id=self._parent_id(ids, godown.parent, repo, company_id),
            tally_guid=godown.guid or None,
            tally_migration_batch_id=batch_id,
        ))
        ids[key] = created.id
        return self._success("godown", godown.guid, godown.name, created.id, "warehouses")

    def _import_cost_center(self, batch_id: int, company_id: int, center: TallyCostCenter,
                            ids: dict[str, int]) -> str:
        repo = self.repos.tags
        key = center.name.strip().lower()
        tag_group = self.field_mappings.tag_group_for_category(company_id, center.category)
        existing = (
            repo.get_by_tally_guid(company_id, center.guid)
            or repo.get_by_name_and_group(company_id, center.name, tag_group)
        )
        if existing is not None:
            ids[key] = existing.id
            if not existing.tally_cost_center_guid and center.guid:
                existing.tally_cost_center_guid = center.guid
                repo.update(existing)
            return self._skip("cost_center", center.guid, center.name, "Tag already exists", existing.id, "tags")

        parent_id = ids.get((center.parent or "").strip().lower())
        created = repo.add(Tag(
            company_id=company_id,
            name=center.name,
            tag_group=tag_group,
            parent_tag_id=parent_id,
            tally_cost_center_guid=center.guid or None,
            tally_migration_batch_id=batch_id,
        ))
        ids[key] = created.id
        return self._success("cost_center", center.guid, center.name, created.id, "tags")

    @staticmethod
    def _parent_id(ids: dict[str, int], parent: Optional[str], repo, company_id: int) -> Optional[int]:
        if not parent:
            return None
        key = parent.strip().lower()
        if key in ids:
            return ids[key]
        row = repo.get_by_name(company_id, parent)
        return row.id if row else None

    def _import_stock_item(self, batch_id: int, company_id: int, item: TallyStockItem) -> str:
        repo = self.repos.stock_items
        existing = repo.get_by_tally_guid(company_id, item.guid)
        if existing is not None:
            return self._skip("stock_item", item.guid, item.name, "Already exists (by GUID)", existing.id, "stock_items")
        existing = repo.get_by_name(company_id, item.name)
        if existing is not None:
            if not existing.tally_guid and item.guid:
                existing.tally_guid = item.guid
                repo.update(existing)
            return self._skip("stock_item", item.guid, item.name, "Linked to existing stock item (by name)", existing.id, "stock_items")

        group = self.repos.stock_groups.get_by_name(company_id, item.parent)
        unit = self.repos.units.get_by_name(company_id, item.base_units)
        opening_value = item.opening_value or round(item.opening_quantity * item.opening_rate, 2)
        created = repo.add(StockItem(
            company_id=company_id,
            name=item.name,
            sku=item.part_number or generate_sku(item.name, item.guid or item.name),
            description=item.description,
            stock_group_id=group.id if group else None,
            base_unit_id=unit.id if unit else None,
            hsn_sac_code=item.hsn_code or item.sac_code,
            gst_rate=item.gst_rate if item.gst_rate is not None else 18.0,
            opening_quantity=item.opening_quantity,
            opening_rate=item.opening_rate,
            opening_value=opening_value,
            current_quantity=item.closing_quantity or item.opening_quantity,
            purchase_price=item.opening_rate or (item.standard_cost or 0.0),
            selling_price=item.standard_price or 0.0,
            reorder_level=item.reorder_level or 0.0,
            valuation_method=valuation_method(item.costing_method),
            is_batch_enabled=item.is_batch_enabled,
            has_expiry=item.has_expiry_date,
            tally_guid=item.guid or None,
            tally_migration_batch_id=batch_id,
        ))
        return self._success("stock_item", item.guid, item.name, created.id, "stock_items", opening_value)

    # ── ledgers ──────────────────────────────────────────────────────────────

    @staticmethod
    def _group_chain(parent: Optional[str], group_parents: dict[str, Optional[str]]) -> list[str]:
        """Ledger's group followed by its ancestors, nearest first."""
        chain: list[str] = []
        seen: set[str] = set()
        current = parent
        while current and current.strip().lower() not in seen:
            chain.append(current)
            seen.add(current.strip().lower())
            current = group_parents.get(current.strip().lower())
        return chain

    def _import_ledger(self, batch_id: int, company_id: int, ledger: TallyLedger,
                       group_parents: dict[str, Optional[str]]) -> str:
        chain = self._group_chain(ledger.parent, group_parents)
        route = self.field_mappings.resolve_ledger(company_id, ledger.name, chain)
        logger.debug(f"Ledger {ledger.name} -> {route.target_entity} ({route.matched_on})")

        if route.target_entity in ("customers", "vendors"):
            return self._import_party(batch_id, company_id, ledger, route)
        if route.target_entity == "bank_accounts":
            return self._import_bank_account(batch_id, company_id, ledger, route, chain)
        if route.target_entity == "chart_of_accounts":
            return self._import_account(batch_id, company_id, ledger, route, chain)

        logger.warning(f"Ledger {ledger.name} routed to suspense (group {ledger.parent!r})")
        self.log.write(
            "ledger", "mapped_to_suspense",
            tally_guid=ledger.guid, tally_name=ledger.name,
            tally_amount=ledger.opening_balance,
            error_message=f"Unmapped ledger group: {ledger.parent or '(none)'}",
            target_entity="suspense",
        )
        return "suspense"

    def _import_party(self, batch_id: int, company_id: int, ledger: TallyLedger, route: LedgerRoute) -> str:
        parties = self.repos.parties
        is_vendor = route.target_entity == "vendors"

        existing = parties.get_by_tally_guid(company_id, ledger.guid)
        if existing is not None:
            self._enable_role(existing, is_vendor)
            return self._skip("ledger", ledger.guid, ledger.name, "Already exists as party (by GUID)", existing.id, "parties")
        existing = parties.get_by_name(company_id, ledger.name)
        if existing is not None:
            if not existing.tally_guid and ledger.guid:
                existing.tally_guid = ledger.guid
            existing.tally_group_name = existing.tally_group_name or ledger.parent
            self._enable_role(existing, is_vendor)
            return self._skip("ledger", ledger.guid, ledger.name, "Linked to existing party (by name)", existing.id, "parties")

        party_type = determine_party_type(ledger.name, ledger.gstin)
        party = parties.add(Party(
            company_id=company_id,
            name=ledger.name,
            display_name=ledger.alias or ledger.name,
            party_type=party_type,
            is_customer=not is_vendor,
            is_vendor=is_vendor,
            gstin=(ledger.gstin or "").upper() or None,
            gst_registration_type=ledger.gst_registration_type,
            gst_state_code=ledger.state_code or ((ledger.gstin or "")[:2] or None),
            pan_number=(ledger.pan_number or "").upper() or None,
            email=ledger.email,
            phone=ledger.mobile_number or ledger.phone_number,
            address_line1=ledger.address,
            state=ledger.state_name,
            country=ledger.country_name or "India",
            pincode=ledger.pincode,
            credit_limit=ledger.credit_limit,
            credit_days=ledger.credit_days,
            opening_balance=ledger.opening_balance,
            tally_guid=ledger.guid or None,
            tally_ledger_name=ledger.name,
            tally_group_name=ledger.parent,
            tally_migration_batch_id=batch_id,
        ))
        self._success("ledger", ledger.guid, ledger.name, party.id, "parties", ledger.opening_balance)

        for tag_name in route.tag_assignments:
            tag = self._system_tag(company_id, tag_name)
            parties.add_tag(party.id, tag.id)

        if is_vendor:
            account = self._control_account(
                batch_id, company_id, ledger, f"Trade Payable - {ledger.name}", "liability", "AP", party.id
            )
            section = tds_section_from_tags(route.tag_assignments)
            parties.add_vendor_profile(VendorProfile(
                party_id=party.id,
                company_id=company_id,
                vendor_type="b2b" if ledger.gstin else "b2c",
                tds_applicable=section is not None,
                default_tds_section=section,
                default_tds_rate=tds_rate_for(section, party_type),
                payment_terms_days=ledger.credit_days,
                credit_limit=ledger.credit_limit,
                bank_account_number=ledger.bank_account_number,
                bank_ifsc_code=ledger.ifsc_code,
                bank_branch_name=ledger.bank_branch_name,
                payable_account_id=account.id,
            ))
        else:
            account = self._control_account(
                batch_id, company_id, ledger, f"Trade Receivable - {ledger.name}", "asset", "AR", party.id
            )
            parties.add_customer_profile(CustomerProfile(
                party_id=party.id,
                company_id=company_id,
                customer_type="b2b" if ledger.gstin else "b2c",
                payment_terms_days=ledger.credit_days,
                credit_limit=ledger.credit_limit,
                receivable_account_id=account.id,
            ))
        return "imported"

    @staticmethod
    def _enable_role(party: Party, is_vendor: bool) -> None:
        if is_vendor:
            party.is_vendor = True
        else:
            party.is_customer = True

    def _system_tag(self, company_id: int, tag_name: str) -> Tag:
        """Get or create a shared auto-assignment tag like 'TDS:194J-Professional'."""
        group = tag_group_for(tag_name)
        name = tag_name.split(":", 1)[1] if ":" in tag_name else tag_name
        tag = self.repos.tags.get_by_name_and_group(company_id, name, group)
        if tag is None:
            tag = self.repos.tags.add(Tag(company_id=company_id, name=name, tag_group=group, is_system=True))
        return tag

    def _control_account(self, batch_id: int, company_id: int, ledger: TallyLedger, name: str,
                         account_type: str, suffix: str, party_id: Optional[int] = None,
                         bank_account_id: Optional[int] = None) -> ChartOfAccount:
        """Receivable/payable/bank GL account that shadows a party or bank ledger."""
        account = self.repos.accounts.add(ChartOfAccount(
            company_id=company_id,
            account_code=generate_account_code(account_type, f"{ledger.guid or ledger.name}:{suffix}"),
            account_name=name,
            account_type=account_type,
            account_sub_type={"AR": "accounts_receivable", "AP": "accounts_payable", "BANK": "bank"}.get(suffix),
            normal_balance=normal_balance(account_type),
            opening_balance=ledger.opening_balance,
            current_balance=ledger.closing_balance or ledger.opening_balance,
            linked_party_id=party_id,
            linked_bank_account_id=bank_account_id,
            tally_ledger_name=ledger.name,
            tally_group_name=ledger.parent,
            tally_migration_batch_id=batch_id,
        ))
        self._success("ledger_account", None, name, account.id, "chart_of_accounts")
        return account

    def _import_account(self, batch_id: int, company_id: int, ledger: TallyLedger,
                        route: LedgerRoute, chain: list[str]) -> str:
        accounts = self.repos.accounts
        existing = accounts.get_by_tally_guid(company_id, ledger.guid)
        if existing is not None:
            return self._skip("ledger", ledger.guid, ledger.name, "Already exists as GL account (by GUID)", existing.id, "chart_of_accounts")
        existing = accounts.get_by_name(company_id, ledger.name)
        if existing is not None:
            if not existing.tally_guid and ledger.guid:
                existing.tally_guid = ledger.guid
            existing.tally_ledger_name = existing.tally_ledger_name or ledger.name
            accounts.update(existing)
            return self._skip("ledger", ledger.guid, ledger.name, "Linked to existing GL account (by name)", existing.id, "chart_of_accounts")

        account_type = route.account_type or infer_account_type(chain)
        account = accounts.add(ChartOfAccount(
            company_id=company_id,
            account_code=generate_account_code(account_type, ledger.guid or ledger.name),
            account_name=ledger.name,
            account_type=account_type,
            normal_balance=normal_balance(account_type),
            description=f"Imported from Tally group {ledger.parent}" if ledger.parent else None,
            opening_balance=ledger.opening_balance,
            current_balance=ledger.closing_balance or ledger.opening_balance,
            tally_guid=ledger.guid or None,
            tally_ledger_name=ledger.name,
            tally_group_name=ledger.parent,
            tally_migration_batch_id=batch_id,
        ))
        return self._success("ledger", ledger.guid, ledger.name, account.id, "chart_of_accounts", ledger.opening_balance)

    def _import_bank_account(self, batch_id: int, company_id: int, ledger: TallyLedger,
                             route: LedgerRoute, chain: list[str]) -> str:
        banks = self.repos.bank_accounts
        existing = banks.get_by_tally_guid(company_id, ledger.guid)
        if existing is not None:
            return self._skip("ledger", ledger.guid, ledger.name, "Already exists as bank account (by GUID)", existing.id, "bank_accounts")
        existing = (
            banks.get_by_account_number(company_id, ledger.bank_account_number)
            or banks.get_by_name(company_id, ledger.name)
        )
        if existing is not None:
            if not existing.tally_guid and ledger.guid:
                existing.tally_guid = ledger.guid
            existing.tally_ledger_name = existing.tally_ledger_name or ledger.name
            banks.update(existing)
            return self._skip("ledger", ledger.guid, ledger.name, "Linked to existing bank account", existing.id, "bank_accounts")

        group = " ".join(chain).lower()
        if "od" in group.split() or "overdraft" in group:
            account_type = "od"
        elif "occ" in group or "cash credit" in group:
            account_type = "cc"
        else:
            account_type = "current"
        bank = banks.add(BankAccount(
            company_id=company_id,
            account_name=ledger.name,
            bank_name=bank_name_for(ledger.name),
            account_number=ledger.bank_account_number,
            ifsc_code=ledger.ifsc_code,
            branch_name=ledger.bank_branch_name,
            account_type=account_type,
            opening_balance=ledger.opening_balance,
            current_balance=ledger.closing_balance or ledger.opening_balance,
            tally_guid=ledger.guid or None,
            tally_ledger_name=ledger.name,
            tally_migration_batch_id=batch_id,
        ))
        self._success("ledger", ledger.guid, ledger.name, bank.id, "bank_accounts", ledger.opening_balance)

        gl_type = route.account_type or ("liability" if account_type in ("od", "cc") else "asset")
        gl = self._control_account(
            batch_id, company_id, ledger, f"Bank - {ledger.name}", gl_type, "BANK", bank_account_id=bank.id
        )
        bank.ledger_account_id = gl.id
        banks.update(bank)
        return "imported"
