"""Pre-import validation and duplicate detection."""
from datetime import date

import pytest

from tally_migration.etl.xml_parser import parse_xml
from tally_migration.migration.master_mapping import MasterMappingService
from tally_migration.migration.validation import ValidationService
from tally_migration.schemas.tally import (
    LedgerEntry,
    ParsedDocument,
    ParsedMasters,
    ParsedVouchers,
    TallyLedger,
    TallyStockItem,
    TallyVoucher,
    ValidationIssue,
)

from conftest import COMPANY_ID

TODAY = date(2024, 6, 1)


def _document(ledgers=(), items=(), vouchers=(), issues=()):
    return ParsedDocument(
        file_name="test.xml",
        masters=ParsedMasters(ledgers=list(ledgers), stock_items=list(items)),
        vouchers=ParsedVouchers(vouchers=list(vouchers)),
        validation_issues=list(issues),
    )


def _voucher(entries, when=date(2024, 5, 1), voucher_type="Journal", guid="v-1", **kwargs):
    return TallyVoucher(
        guid=guid,
        voucher_number="1",
        voucher_type=voucher_type,
        voucher_date=when,
        ledger_entries=[LedgerEntry(ledger_name=n, amount=a) for n, a in entries],
        **kwargs,
    )


def _codes(result):
    return [i.code for i in result.issues]


@pytest.fixture
def service(repos):
    return ValidationService(repos)


class TestChecks:
    def test_clean_sample(self, service, daybook_document):
        result = service.validate(COMPANY_ID, daybook_document, today=TODAY)
        assert result.is_valid
        assert result.can_proceed
        assert result.error_count == 0

    def test_unbalanced_voucher_blocks(self, service):
        result = service.validate(COMPANY_ID, _document(vouchers=[_voucher([("Rent", 100), ("Cash", -90)])]), today=TODAY)
        assert not result.is_valid
        assert not result.can_proceed
        assert result.error_count == 1
        issue = result.issues[0]
        assert issue.code == "UNBALANCED_VOUCHER"
        assert issue.actual_value == "10.00"
        assert issue.record_name == "Journal/1"

    def test_within_tolerance(self, service):
        result = service.validate(COMPANY_ID, _document(vouchers=[_voucher([("Rent", 100), ("Cash", -99.995)])]), today=TODAY)
        assert result.is_valid

    def test_parser_issue_not_duplicated(self, service):
        voucher = _voucher([("Rent", 100), ("Cash", -90)])
        parser_issue = ValidationIssue(
            severity="error", code="UNBALANCED_VOUCHER", message="Voucher is unbalanced by 10.00",
            record_guid="v-1", field="ledger_entries",
        )
        result = service.validate(COMPANY_ID, _document(vouchers=[voucher], issues=[parser_issue]), today=TODAY)
        assert _codes(result) == ["UNBALANCED_VOUCHER"]

    def test_party_identifier_warnings(self, service):
        ledger = TallyLedger(guid="l-1", name="Bad Party", gstin="27ABC", pan_number="ABCDE1234F")
        worse = TallyLedger(guid="l-2", name="Worse Party", gstin="27AABCA1234B1Z5", pan_number="12345")
        result = service.validate(COMPANY_ID, _document(ledgers=[ledger, worse]), today=TODAY)
        assert result.is_valid
        assert result.warning_count == 2
        assert [(i.code, i.record_name) for i in result.issues] == [
            ("INVALID_GSTIN", "Bad Party"),
            ("INVALID_PAN", "Worse Party"),
        ]

    @pytest.mark.parametrize("hsn,valid", [
        ("8539", True),
        ("853949", True),
        ("85394900", True),
        ("85394", False),
        ("HSN8539", False),
    ])
    def test_hsn_length(self, service, hsn, valid):
        item = TallyStockItem(guid="i-1", name="Panel", hsn_code=hsn)
        result = service.validate(COMPANY_ID, _document(items=[item]), today=TODAY)
        assert ("INVALID_HSN" not in _codes(result)) is valid

    def test_negative_opening_quantity(self, service):
        item = TallyStockItem(guid="i-1", name="Panel", opening_quantity=-5)
        result = service.validate(COMPANY_ID, _document(items=[item]), today=TODAY)
        assert _codes(result) == ["NEGATIVE_OPENING_QTY"]

    def test_negative_opening_quantity_from_export(self, service):
        raw = (
            b"<ENVELOPE><BODY><TALLYMESSAGE>"
            b'<STOCKITEM NAME="Panel"><GUID>i-neg</GUID><BASEUNITS>Nos</BASEUNITS>'
            b"<OPENINGBALANCE>-5 Nos</OPENINGBALANCE></STOCKITEM>"
            b"</TALLYMESSAGE></BODY></ENVELOPE>"
        )
        document = parse_xml(raw, "stock.xml")
        assert document.masters.stock_items[0].opening_quantity == -5.0
        result = service.validate(COMPANY_ID, document, today=TODAY)
        assert _codes(result) == ["NEGATIVE_OPENING_QTY"]

    def test_voucher_dates(self, service):
        vouchers = [
            _voucher([("Rent", 1), ("Cash", -1)], when=date(2024, 7, 1), guid="future"),
            _voucher([("Rent", 1), ("Cash", -1)], when=date(2010, 1, 1), guid="old"),
            _voucher([("Rent", 1), ("Cash", -1)], when=date(2024, 5, 1), guid="ok"),
        ]
        result = service.validate(COMPANY_ID, _document(vouchers=vouchers), today=TODAY)
        assert [(i.code, i.record_guid) for i in result.issues] == [
            ("FUTURE_DATE", "future"),
            ("OLD_VOUCHER", "old"),
        ]
        assert result.is_valid

    def test_missing_party(self, service):
        sales = _voucher([("Cash", 100), ("Sales", -100)], voucher_type="Sales", guid="s")
        with_party = _voucher(
            [("Cash", 100), ("Sales", -100)], voucher_type="Sales", guid="p", party_ledger_name="Cash",
        )
        result = service.validate(COMPANY_ID, _document(vouchers=[sales, with_party]), today=TODAY)
        assert [(i.code, i.record_guid) for i in result.issues] == [("MISSING_PARTY", "s")]


class TestDuplicates:
    def test_nothing_imported_yet(self, service, masters_document):
        result = service.validate(COMPANY_ID, masters_document, today=TODAY)
        assert result.duplicates.duplicate_ledgers == 0
        assert "DUPLICATES_FOUND" not in _codes(result)

    def test_reimport_reports_duplicates(self, repos, batch, service, masters_document):
        MasterMappingService(repos).import_masters(batch.id, COMPANY_ID, masters_document.masters)
        result = service.validate(COMPANY_ID, masters_document, today=TODAY)
        dup = result.duplicates
        # Misc Ledger went to suspense and has no row of its own
        assert dup.duplicate_ledgers == len(masters_document.masters.ledgers) - 1
        assert "Misc Ledger" not in dup.duplicate_ledger_names
        assert dup.duplicate_stock_items == len(masters_document.masters.stock_items)
        assert dup.duplicate_vouchers == 0
        info = next(i for i in result.issues if i.code == "DUPLICATES_FOUND")
        assert info.severity == "info"
        assert result.can_proceed

    def test_other_company_is_not_a_duplicate(self, repos, batch, service, masters_document):
        MasterMappingService(repos).import_masters(batch.id, COMPANY_ID, masters_document.masters)
        result = service.validate(COMPANY_ID + 1, masters_document, today=TODAY)
        assert result.duplicates.duplicate_ledgers == 0
