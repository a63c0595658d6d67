"""Ledger routing: default mappings, user overrides and keyword fallback."""
import pytest

from tally_migration.migration.mappings import (
    FieldMappingService,
    infer_account_type,
    tag_group_for,
    tds_rate_for,
    tds_section_from_tags,
)
from tally_migration.schemas.responses import (
    CostCategoryMappingIn,
    GroupMappingIn,
    LedgerMappingIn,
    MappingConfig,
)

from conftest import COMPANY_ID


@pytest.fixture
def service(repos):
    svc = FieldMappingService(repos)
    svc.ensure_defaults(COMPANY_ID)
    return svc


class TestHelpers:
    @pytest.mark.parametrize("tag,group", [
        ("TDS:194J-Professional", "tds_section"),
        ("Vendor:Contractor", "party_type"),
        ("Customer:B2B", "party_type"),
        ("MSME:Micro", "compliance"),
        ("Anything", "party_type"),
    ])
    def test_tag_group_for(self, tag, group):
        assert tag_group_for(tag) == group

    def test_tds_section_from_tags(self):
        assert tds_section_from_tags(["Vendor:Contractor", "TDS:194C-Contractor"]) == "194C"
        assert tds_section_from_tags(["TDS:Exempt"]) is None
        assert tds_section_from_tags([]) is None

    def test_tds_rate_for(self):
        assert tds_rate_for("194C", "individual") == 1.0
        assert tds_rate_for("194C", "huf") == 1.0
        assert tds_rate_for("194C", "company") == 2.0
        assert tds_rate_for("194J") == 10.0
        assert tds_rate_for(None) is None

    @pytest.mark.parametrize("chain,expected", [
        (["Fixed Deposits"], "asset"),
        (["Direct Incomes"], "income"),
        (["Indirect Expenses"], "expense"),
        (["Reserves & Surplus"], "equity"),
        (["Duties & Taxes", "Current Liabilities"], "liability"),
        (["Unknown", "Secured Loans"], "liability"),
        (["Unknown"], "asset"),
    ])
    def test_infer_account_type(self, chain, expected):
        assert infer_account_type(chain) == expected


class TestFieldMappingService:
    def test_defaults_seeded_once(self, repos, service):
        assert repos.field_mappings.has_system_defaults(COMPANY_ID)
        assert service.ensure_defaults(COMPANY_ID) == 0
        assert not repos.field_mappings.has_system_defaults(COMPANY_ID + 1)

    def test_group_route_walks_chain(self, service):
        route = service.resolve_ledger(COMPANY_ID, "ABC Corp", ["Local Debtors", "Sundry Debtors"])
        assert route.target_entity == "customers"
        assert route.tag_assignments == ["Customer:B2B"]
        assert route.matched_on == "group:Sundry Debtors"

    def test_group_route_is_case_insensitive(self, service):
        route = service.resolve_ledger(COMPANY_ID, "Ravi Kumar", ["contractors"])
        assert route.target_entity == "vendors"
        assert route.tag_assignments == ["TDS:194C-Contractor", "Vendor:Contractor"]

    def test_bank_route_carries_account_type(self, service):
        route = service.resolve_ledger(COMPANY_ID, "HDFC OD", ["Bank OD A/c"])
        assert route.target_entity == "bank_accounts"
        assert route.account_type == "liability"

    def test_keyword_fallback(self, service):
        route = service.resolve_ledger(COMPANY_ID, "Office Rent", ["Indirect Expenses"])
        assert route.target_entity == "chart_of_accounts"
        assert route.matched_on == "keyword:expense"

    def test_suspense(self, service):
        route = service.resolve_ledger(COMPANY_ID, "Misc Ledger", ["Mystery Group"])
        assert route.target_entity == "suspense"
        assert route.matched_on == "none"

    def test_no_chain_is_suspense(self, service):
        assert service.resolve_ledger(COMPANY_ID, "Orphan", []).target_entity == "suspense"

    def test_ledger_mapping_wins(self, repos, service):
        saved = service.save_config(COMPANY_ID, MappingConfig(ledger_mappings=[
            LedgerMappingIn(
                tally_ledger_name="Misc Ledger",
                target_entity="chart_of_accounts",
                target_account_type="expense",
            ),
        ]))
        assert saved == 1
        route = service.resolve_ledger(COMPANY_ID, "misc ledger", ["Mystery Group"])
        assert route.target_entity == "chart_of_accounts"
        assert route.account_type == "expense"
        assert route.matched_on == "ledger:Misc Ledger"

    def test_user_group_mapping_outranks_default(self, service):
        service.save_config(COMPANY_ID, MappingConfig(group_mappings=[
            GroupMappingIn(
                tally_group_name="Sundry Creditors",
                target_entity="vendors",
                tag_assignments=["Vendor:Preferred", "MSME:Small"],
            ),
        ]))
        route = service.resolve_ledger(COMPANY_ID, "XYZ Supplies", ["Sundry Creditors"])
        assert route.tag_assignments == ["Vendor:Preferred", "MSME:Small"]

    def test_cost_category_tag_group(self, service):
        assert service.tag_group_for_category(COMPANY_ID, "Projects") == "cost_center"
        service.save_config(COMPANY_ID, MappingConfig(cost_category_mappings=[
            CostCategoryMappingIn(tally_cost_category="Projects", target_tag_group="project"),
        ]))
        assert service.tag_group_for_category(COMPANY_ID, "projects") == "project"
        assert service.tag_group_for_category(COMPANY_ID, None) == "cost_center"

    def test_mappings_are_company_scoped(self, service):
        service.save_config(COMPANY_ID, MappingConfig(ledger_mappings=[
            LedgerMappingIn(tally_ledger_name="Misc Ledger", target_entity="chart_of_accounts"),
        ]))
        route = service.resolve_ledger(COMPANY_ID + 1, "Misc Ledger", ["Mystery Group"])
        assert route.target_entity == "suspense"
