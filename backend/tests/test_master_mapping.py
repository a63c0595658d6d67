"""Master import: dependency order, routing of ledgers, and deduplication."""
import pytest

from tally_migration.core.errors import ImportCancelled
from tally_migration.migration.control import CancellationToken
from tally_migration.migration.mappings import FieldMappingService
from tally_migration.migration.master_mapping import (
    MasterMappingService,
    bank_name_for,
    determine_party_type,
    generate_account_code,
    generate_sku,
    normal_balance,
    sort_by_hierarchy,
    valuation_method,
    warehouse_code,
)
from tally_migration.models import MigrationBatch, Party
from tally_migration.schemas.responses import LedgerMappingIn, MappingConfig
from tally_migration.schemas.tally import TallyStockGroup

from conftest import COMPANY_ID


class TestHelpers:
    def test_sort_by_hierarchy(self):
        groups = [
            TallyStockGroup(name="LED", parent="Lighting"),
            TallyStockGroup(name="Lighting", parent="Electronics"),
            TallyStockGroup(name="Electronics"),
            TallyStockGroup(name="Spares", parent="Outside Group"),
        ]
        ordered = sort_by_hierarchy(groups, lambda g: g.name, lambda g: g.parent)
        assert [g.name for g in ordered] == ["Electronics", "Spares", "Lighting", "LED"]

    def test_sort_by_hierarchy_cycle(self):
        groups = [
            TallyStockGroup(name="A", parent="B"),
            TallyStockGroup(name="B", parent="A"),
            TallyStockGroup(name="C"),
        ]
        ordered = sort_by_hierarchy(groups, lambda g: g.name, lambda g: g.parent)
        assert [g.name for g in ordered] == ["C", "A", "B"]

    def test_account_code_is_deterministic(self):
        code = generate_account_code("liability", "guid-led-tds")
        assert code.startswith("TL-")
        assert len(code) == 11
        assert code == generate_account_code("liability", "guid-led-tds")
        assert code != generate_account_code("liability", "guid-led-oigst")
        assert generate_account_code("mystery", "x").startswith("TO-")

    def test_generate_sku(self):
        sku = generate_sku("LED Panel 40W", "guid-item-led")
        assert sku.startswith("SKU-LP4-")
        assert len(sku) == len("SKU-LP4-") + 6
        assert generate_sku("***", "k").startswith("SKU-ITEM-")

    def test_warehouse_code(self):
        assert warehouse_code("Main Location") == "WH-MAINLO"
        assert warehouse_code("#1") == "WH-1"
        assert warehouse_code("---") == "WH-MAIN"

    @pytest.mark.parametrize("method,expected", [
        ("FIFO", "fifo"),
        ("Lifo Annual", "lifo"),
        ("Std. Cost", "standard"),
        ("Avg. Cost", "weighted_average"),
        (None, "weighted_average"),
    ])
    def test_valuation_method(self, method, expected):
        assert valuation_method(method) == expected

    @pytest.mark.parametrize("name,gstin,expected", [
        ("Sharma Traders Pvt Ltd", None, "company"),
        ("Acme Private Limited", None, "company"),
        ("Design Studio LLP", None, "llp"),
        ("Helping Hands Trust", None, "trust"),
        ("Municipal Corporation", None, "government"),
        ("Mehta & Co", None, "firm"),
        ("ABC Corp", "27AABCA1234B1Z5", "company"),
        ("Shah Brothers", "24AAAFS1234F1Z1", "firm"),
        ("Ravi Kumar", None, "individual"),
    ])
    def test_determine_party_type(self, name, gstin, expected):
        assert determine_party_type(name, gstin) == expected

    def test_normal_balance(self):
        assert normal_balance("asset") == "debit"
        assert normal_balance("expense") == "debit"
        assert normal_balance("income") == "credit"
        assert normal_balance("liability") == "credit"

    def test_bank_name_for(self):
        assert bank_name_for("HDFC Bank") == "HDFC Bank"
        assert bank_name_for("SBI Current A/c") == "State Bank of India"
        assert bank_name_for("Co-op Bank") == "Co-op Bank"


class TestImportMasters:
    @pytest.fixture
    def result(self, repos, batch, masters_document):
        return MasterMappingService(repos).import_masters(batch.id, COMPANY_ID, masters_document.masters)

    def test_counts(self, result):
        assert result.units.imported == 1
        assert result.stock_groups.imported == 2
        assert result.godowns.imported == 1
        assert result.cost_centers.imported == 1
        assert result.ledgers.total == 12
        assert result.ledgers.imported == 11
        assert result.ledgers.suspense == 1
        assert result.stock_items.imported == 1
        assert result.total_imported == 17
        assert result.total_failed == 0
        assert result.total_suspense == 1

    def test_customer(self, repos, result):
        abc = repos.parties.get_by_name(COMPANY_ID, "ABC Corp")
        assert abc.party_type == "company"
        assert abc.is_customer and not abc.is_vendor
        assert abc.gstin == "27AABCA1234B1Z5"
        assert abc.pan_number == "AABCA1234B"
        assert abc.credit_days == 45
        assert abc.opening_balance == 10000
        assert abc.tally_guid == "guid-led-abc"
        assert abc.tally_group_name == "Local Debtors"
        assert [t.name for t in repos.parties.tags_for(abc.id)] == ["B2B"]

        profile = repos.parties.get_customer_profile(abc.id)
        assert profile.customer_type == "b2b"
        receivable = repos.accounts.get(profile.receivable_account_id)
        assert receivable.account_name == "Trade Receivable - ABC Corp"
        assert receivable.account_type == "asset"
        assert receivable.account_sub_type == "accounts_receivable"
        assert receivable.linked_party_id == abc.id

    def test_vendors(self, repos, result):
        xyz = repos.parties.get_by_name(COMPANY_ID, "XYZ Supplies")
        assert xyz.is_vendor
        assert xyz.party_type == "company"
        assert xyz.opening_balance == -25000
        xyz_profile = repos.parties.get_vendor_profile(xyz.id)
        assert xyz_profile.tds_applicable is False
        assert xyz_profile.vendor_type == "b2b"
        payable = repos.accounts.get(xyz_profile.payable_account_id)
        assert payable.account_name == "Trade Payable - XYZ Supplies"
        assert payable.normal_balance == "credit"

        ravi = repos.parties.get_by_name(COMPANY_ID, "Ravi Kumar")
        assert ravi.party_type == "individual"
        ravi_profile = repos.parties.get_vendor_profile(ravi.id)
        assert ravi_profile.tds_applicable is True
        assert ravi_profile.default_tds_section == "194C"
        assert ravi_profile.default_tds_rate == 1.0
        assert ravi_profile.vendor_type == "b2c"
        assert sorted(t.name for t in repos.parties.tags_for(ravi.id)) == ["194C-Contractor", "Contractor"]

    def test_bank_accounts(self, repos, result):
        hdfc = repos.bank_accounts.get_by_tally_ledger_name(COMPANY_ID, "HDFC Bank")
        assert hdfc.bank_name == "HDFC Bank"
        assert hdfc.account_type == "current"
        assert hdfc.account_number == "50100123456789"
        assert hdfc.ifsc_code == "HDFC0000123"
        assert hdfc.opening_balance == 250000
        gl = repos.accounts.get(hdfc.ledger_account_id)
        assert gl.account_name == "Bank - HDFC Bank"
        assert gl.account_type == "asset"
        assert gl.linked_bank_account_id == hdfc.id

        axis = repos.bank_accounts.get_by_tally_ledger_name(COMPANY_ID, "Axis Bank")
        assert axis.bank_name == "Axis Bank"

    @pytest.mark.parametrize("name,account_type,normal", [
        ("Sales", "income", "credit"),
        ("Purchase", "expense", "debit"),
        ("Output IGST", "liability", "credit"),
        ("Input IGST", "liability", "credit"),
        ("TDS on Contract", "liability", "credit"),
        ("Office Rent", "expense", "debit"),
    ])
    def test_gl_accounts(self, repos, result, name, account_type, normal):
        account = repos.accounts.get_by_tally_ledger_name(COMPANY_ID, name)
        assert account.account_type == account_type
        assert account.normal_balance == normal
        assert account.account_code.startswith("T")

    def test_suspense_ledger(self, repos, batch, result):
        assert repos.accounts.get_by_tally_ledger_name(COMPANY_ID, "Misc Ledger") is None
        assert repos.parties.get_by_name(COMPANY_ID, "Misc Ledger") is None
        logs = repos.logs.for_batch(batch.id, status="mapped_to_suspense")
        assert [log.tally_name for log in logs] == ["Misc Ledger"]
        assert logs[0].error_message == "Unmapped ledger group: Mystery Group"
        assert logs[0].target_entity == "suspense"

    def test_control_account_logs(self, repos, batch, result):
        logs = repos.logs.for_batch(batch.id, status="success", record_type="ledger_account")
        assert sorted(log.tally_name for log in logs) == [
            "Bank - Axis Bank",
            "Bank - HDFC Bank",
            "Trade Payable - Ravi Kumar",
            "Trade Payable - XYZ Supplies",
            "Trade Receivable - ABC Corp",
        ]

    def test_inventory_masters(self, repos, result):
        unit = repos.units.get_by_name(COMPANY_ID, "Nos")
        assert unit.name == "Numbers"
        assert unit.symbol == "Nos"

        electronics = repos.stock_groups.get_by_name(COMPANY_ID, "Electronics")
        cables = repos.stock_groups.get_by_name(COMPANY_ID, "Cables")
        assert electronics.parent_group_id is None
        assert cables.parent_group_id == electronics.id

        warehouse = repos.warehouses.get_by_name(COMPANY_ID, "Main Location")
        assert warehouse.code == "WH-MAINLO"
        assert warehouse.address == "Plot 12, MIDC, Pune"

        tag = repos.tags.get_by_name_and_group(COMPANY_ID, "Head Office", "cost_center")
        assert tag.tally_cost_center_guid == "guid-cc-ho"

        item = repos.stock_items.get_by_name(COMPANY_ID, "LED Panel 40W")
        assert item.opening_quantity == 50
        assert item.opening_rate == 1200
        assert item.opening_value == 60000
        assert item.gst_rate == 18
        assert item.hsn_sac_code == "85394900"
        assert item.valuation_method == "fifo"
        assert item.sku.startswith("SKU-LP4-")
        assert item.stock_group_id == electronics.id
        assert item.base_unit_id == unit.id

    def test_processing_order_is_monotonic(self, repos, batch, result):
        orders = [log.processing_order for log in repos.logs.for_batch(batch.id)]
        assert orders == list(range(1, len(orders) + 1))


class TestReimport:
    def test_second_import_skips_everything(self, repos, batch, masters_document):
        MasterMappingService(repos).import_masters(batch.id, COMPANY_ID, masters_document.masters)
        second = repos.batches.add(MigrationBatch(
            company_id=COMPANY_ID, batch_number="TALLY-20240601-TEST02", status="importing",
        ))
        repos.session.commit()

        result = MasterMappingService(repos).import_masters(second.id, COMPANY_ID, masters_document.masters)
        assert result.total_imported == 0
        assert result.total_skipped == 17
        assert result.total_suspense == 1
        assert len(repos.parties.list_for_company(COMPANY_ID)) == 3
        assert len(repos.bank_accounts.list_for_company(COMPANY_ID)) == 2

        messages = {log.tally_name: log.error_message for log in repos.logs.for_batch(second.id, status="skipped")}
        assert messages["Nos"] == "Already exists (by GUID)"
        assert messages["ABC Corp"] == "Already exists as party (by GUID)"
        assert messages["HDFC Bank"] == "Already exists as bank account (by GUID)"
        assert messages["Sales"] == "Already exists as GL account (by GUID)"
        assert messages["Main Location"] == "Warehouse already exists"

    def test_existing_party_linked_by_name(self, repos, batch, masters_document):
        existing = repos.parties.add(Party(company_id=COMPANY_ID, name="abc corp", is_vendor=True))
        repos.session.commit()

        result = MasterMappingService(repos).import_masters(batch.id, COMPANY_ID, masters_document.masters)
        assert result.ledgers.skipped == 1
        party = repos.parties.get(existing.id)
        assert party.tally_guid == "guid-led-abc"
        assert party.is_customer and party.is_vendor
        log = repos.logs.for_batch(batch.id, status="skipped")[0]
        assert log.error_message == "Linked to existing party (by name)"


class TestImportControl:
    def test_ledger_mapping_rescues_suspense(self, repos, batch, masters_document):
        mappings = FieldMappingService(repos)
        mappings.ensure_defaults(COMPANY_ID)
        mappings.save_config(COMPANY_ID, MappingConfig(ledger_mappings=[
            LedgerMappingIn(tally_ledger_name="Misc Ledger", target_entity="chart_of_accounts",
                            target_account_type="expense"),
        ]))
        repos.session.commit()

        result = MasterMappingService(repos).import_masters(batch.id, COMPANY_ID, masters_document.masters)
        assert result.ledgers.suspense == 0
        assert result.ledgers.imported == 12
        assert repos.accounts.get_by_tally_ledger_name(COMPANY_ID, "Misc Ledger").account_type == "expense"

    def test_progress_reported_per_phase(self, repos, batch, masters_document):
        seen = []
        MasterMappingService(repos).import_masters(
            batch.id, COMPANY_ID, masters_document.masters, progress=seen.append
        )
        assert [p.message for p in seen] == [
            "Imported units",
            "Imported stock groups",
            "Imported godowns",
            "Imported cost centres",
            "Imported ledgers",
            "Imported stock items",
        ]
        assert seen[-1].percent_complete == 30.0
        assert seen[-1].processed_records == seen[-1].total_records == 18

    def test_failing_progress_sink_is_ignored(self, repos, batch, masters_document):
        def sink(_):
            raise RuntimeError("socket closed")

        result = MasterMappingService(repos).import_masters(
            batch.id, COMPANY_ID, masters_document.masters, progress=sink
        )
        assert result.total_imported == 17

    def test_cancelled_before_start(self, repos, batch, masters_document):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(ImportCancelled):
            MasterMappingService(repos).import_masters(
                batch.id, COMPANY_ID, masters_document.masters, cancel=token
            )
        assert repos.units.list_for_company(COMPANY_ID) == []

    def test_failed_record_is_logged_and_skipped(self, repos, batch, masters_document, monkeypatch):
        service = MasterMappingService(repos)

        def broken(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(service, "_import_unit", broken)
        result = service.import_masters(batch.id, COMPANY_ID, masters_document.masters)
        assert result.units.failed == 1
        assert result.total_failed == 1
        failed = repos.logs.for_batch(batch.id, status="failed")
        assert [(f.record_type, f.tally_name, f.error_message) for f in failed] == [
            ("unit", "Nos", "disk full"),
        ]
        assert result.stock_items.imported == 1
