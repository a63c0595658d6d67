"""Unit tests for the Tally JSON parser."""
import json
from datetime import date

import pytest

from tally_migration.core.errors import ValidationError
from tally_migration.etl.json_parser import parse_json, to_element_tree


def _dump(data) -> bytes:
    return json.dumps(data).encode("utf-8")


SAMPLE_ENVELOPE = {
    "ENVELOPE": {
        "HEADER": {"TALLYREQUEST": "Import Data"},
        "BODY": {
            "IMPORTDATA": {
                "REQUESTDESC": {
                    "STATICVARIABLES": {"SVCURRENTCOMPANY": "Sharma Traders Pvt Ltd"}
                },
                "REQUESTDATA": {
                    "TALLYMESSAGE": [
                        {"LEDGER": {"@NAME": "ABC Corp", "GUID": "g-abc", "PARENT": "Sundry Debtors",
                                    "OPENINGBALANCE": "5000.00 Dr"}},
                        {"VOUCHER": {
                            "@VCHTYPE": "Sales",
                            "GUID": "v-1",
                            "DATE": "20240415",
                            "VOUCHERNUMBER": "SI/9",
                            "ALLLEDGERENTRIES.LIST": [
                                {"LEDGERNAME": "ABC Corp", "AMOUNT": "1180.00 Dr", "ISPARTYLEDGER": "Yes"},
                                {"LEDGERNAME": "Sales", "AMOUNT": "1000.00 Cr"},
                                {"LEDGERNAME": "Output IGST", "AMOUNT": "180.00 Cr"},
                            ],
                        }},
                    ]
                },
            }
        },
    }
}


class TestShapes:
    def test_envelope(self):
        doc = parse_json(_dump(SAMPLE_ENVELOPE), "DayBook.json")
        assert doc.source_format == "json"
        assert doc.masters.company_name == "Sharma Traders Pvt Ltd"
        assert doc.masters.ledgers[0].name == "ABC Corp"
        assert doc.masters.ledgers[0].opening_balance == 5000.0
        voucher = doc.vouchers.vouchers[0]
        assert voucher.voucher_type == "Sales"
        assert voucher.voucher_date == date(2024, 4, 15)
        assert [e.amount for e in voucher.ledger_entries] == [1180.0, -1000.0, -180.0]
        assert voucher.ledger_entries[0].is_party_ledger is True
        assert voucher.amount == 1180.0

    def test_tallymessage_array(self):
        data = {"TALLYMESSAGE": [{"LEDGER": [{"NAME": "Cash"}, {"NAME": "Bank"}]}]}
        doc = parse_json(_dump(data), "x.json")
        assert [l.name for l in doc.masters.ledgers] == ["Cash", "Bank"]

    def test_top_level_array(self):
        data = [{"GROUP": {"NAME": "Assets"}}, {"LEDGER": {"NAME": "Cash", "PARENT": "Assets"}}]
        doc = parse_json(_dump(data), "x.json")
        assert doc.masters.groups[0].name == "Assets"
        assert doc.masters.ledgers[0].parent == "Assets"

    def test_direct_collections_any_casing(self):
        data = {
            "ledgers": [{"name": "Rent", "parent": "Indirect Expenses", "guid": "g-rent"}],
            "vouchers": [{
                "voucher_type_name": "Journal",
                "guid": "v-2",
                "date": "2024-05-20",
                "voucherNumber": "JV/7",
                "all_ledger_entries": [
                    {"ledger_name": "Rent", "amount": 250},
                    {"ledger_name": "Cash", "amount": -250},
                ],
            }],
        }
        doc = parse_json(_dump(data), "x.json")
        assert doc.masters.ledgers[0].guid == "g-rent"
        voucher = doc.vouchers.vouchers[0]
        assert voucher.voucher_type == "Journal"
        assert voucher.voucher_number == "JV/7"
        assert voucher.voucher_date == date(2024, 5, 20)
        assert [e.ledger_name for e in voucher.ledger_entries] == ["Rent", "Cash"]

    def test_boolean_values(self):
        data = {"vouchers": [{
            "VOUCHERTYPENAME": "Receipt", "GUID": "v-3", "DATE": "20240501",
            "ALLLEDGERENTRIES": [
                {"LEDGERNAME": "ABC Corp", "AMOUNT": -10, "ISPARTYLEDGER": True},
                {"LEDGERNAME": "Cash", "AMOUNT": 10},
            ],
        }]}
        voucher = parse_json(_dump(data), "x.json").vouchers.vouchers[0]
        assert voucher.ledger_entries[0].is_party_ledger is True
        assert voucher.ledger_entries[1].is_party_ledger is False

    def test_company_as_string(self):
        root = to_element_tree({"company": "Acme", "ledgers": []})
        assert root.find("BODY/TALLYMESSAGE/COMPANY").get("NAME") is None
        assert root.findtext("BODY/TALLYMESSAGE/COMPANY/NAME") == "Acme"

    def test_utf16_json(self):
        raw = b"\xff\xfe" + json.dumps({"ledgers": [{"NAME": "Cash"}]}).encode("utf-16-le")
        doc = parse_json(raw, "x.json")
        assert doc.masters.ledgers[0].name == "Cash"
        assert any(i.code == "SANITIZED" for i in doc.validation_issues)

    def test_raw_backup(self, tmp_path):
        parse_json(_dump({"ledgers": [{"NAME": "Cash"}]}), "Masters.json", backup_dir=tmp_path)
        assert len(list(tmp_path.glob("Masters_*.json.bak"))) == 1


class TestErrors:
    def test_invalid_json(self):
        with pytest.raises(ValidationError) as exc:
            parse_json(b"{not json", "x.json")
        assert exc.value.message.startswith("Invalid JSON format")

    def test_scalar_document(self):
        with pytest.raises(ValidationError) as exc:
            parse_json(b"42", "x.json")
        assert "expected an object or array" in exc.value.message

    def test_no_collections(self):
        with pytest.raises(ValidationError) as exc:
            parse_json(_dump({"hello": "world"}), "x.json")
        assert "no ENVELOPE, TALLYMESSAGE or data collections" in exc.value.message
