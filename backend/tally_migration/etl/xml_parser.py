"""
Tally XML Parser.

Turns sanitised Tally export bytes into a ``ParsedDocument``. The same
logical content shows up in several shapes, all of which are accepted:

  <ENVELOPE>
    <HEADER>...</HEADER>
    <BODY>
      <IMPORTDATA>                       (or <DATA>)
        <REQUESTDESC>
          <STATICVARIABLES><SVCURRENTCOMPANY>...</SVCURRENTCOMPANY></STATICVARIABLES>
        </REQUESTDESC>
        <REQUESTDATA>
          <TALLYMESSAGE xmlns:UDF="TallyUDF">
            <COMPANY>, <GROUP>, <LEDGER NAME="...">, <STOCKGROUP>, <STOCKITEM>,
            <GODOWN>, <UNIT>, <COSTCENTRE>, <COSTCATEGORY>, <CURRENCY>,
            <VOUCHERTYPE>, <VOUCHER VCHTYPE="...">
          </TALLYMESSAGE>
          ...
        </REQUESTDATA>
      </IMPORTDATA>
    </BODY>
  </ENVELOPE>

or <ENVELOPE><BODY><TALLYMESSAGE>..., or a bare <TALLYMESSAGE> root.

A field may be written as an attribute or as a child element; the
attribute wins when both are present.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional
from xml.etree import ElementTree as ET

from loguru import logger

from tally_migration.core.errors import InternalError, MigrationError, ValidationError
from tally_migration.etl.sanitizer import sanitize_xml
from tally_migration.etl.summary import count_ledgers_by_group, structural_issues, summarize_vouchers
from tally_migration.etl.values import (
    clean_text,
    parse_amount,
    parse_bool,
    parse_date,
    parse_date_or_none,
    parse_int,
    parse_optional_amount,
    parse_percent,
    parse_quantity,
    parse_rate,
    split_quantity,
)
from tally_migration.schemas.tally import (
    BatchAllocation,
    BillAllocation,
    CostAllocation,
    InventoryEntry,
    LedgerEntry,
    ParsedDocument,
    ParsedMasters,
    TallyCostCategory,
    TallyCostCenter,
    TallyCurrency,
    TallyGodown,
    TallyGroup,
    TallyLedger,
    TallyStockGroup,
    TallyStockItem,
    TallyUnit,
    TallyVoucher,
    TallyVoucherType,
    ValidationIssue,
)

# ── helpers ──────────────────────────────────────────────────────────────────


def _value(el: ET.Element, name: str) -> Optional[str]:
    """Attribute ``name`` if present and non-blank, else the child element's text."""
    attr = el.get(name)
    if attr is not None and attr.strip():
        return attr.strip()
    child = el.find(name)
    if child is not None and child.text and child.text.strip():
        return child.text.strip()
    return None


def _first(el: ET.Element, *names: str) -> Optional[str]:
    """First non-blank value among several tag aliases."""
    for name in names:
        val = _value(el, name)
        if val is not None:
            return val
    return None


def _flag(el: ET.Element, name: str, default: bool = False) -> bool:
    raw = _value(el, name)
    return default if raw is None else parse_bool(raw)


def _name(el: ET.Element) -> Optional[str]:
    return _value(el, "NAME") or clean_text(el.findtext("LANGUAGENAME.LIST/NAME.LIST/NAME"))


def _aliases(el: ET.Element) -> Optional[str]:
    names = [n.text.strip() for n in el.findall("LANGUAGENAME.LIST/NAME.LIST/NAME") if n.text]
    return names[1] if len(names) > 1 else _value(el, "ALIAS")


def _guid(el: ET.Element) -> str:
    return _first(el, "GUID", "REMOTEID") or ""


def _lines(el: ET.Element, path: str) -> Optional[str]:
    """Join repeated text children (e.g. ADDRESS.LIST/ADDRESS) into one line."""
    parts = [n.text.strip() for n in el.findall(path) if n.text and n.text.strip()]
    return ", ".join(parts) if parts else None


def _children(el: ET.Element, *tags: str) -> list[ET.Element]:
    found: list[ET.Element] = []
    for tag in tags:
        found.extend(el.findall(tag))
    return found


# ── structure probing ────────────────────────────────────────────────────────

_COMPANY_PATHS = (
    "BODY/IMPORTDATA/REQUESTDESC/STATICVARIABLES/SVCURRENTCOMPANY",
    "BODY/DATA/REQUESTDESC/STATICVARIABLES/SVCURRENTCOMPANY",
    "BODY/DESC/STATICVARIABLES/SVCURRENTCOMPANY",
    "HEADER/STATICVARIABLES/SVCURRENTCOMPANY",
)


def find_messages(root: ET.Element) -> tuple[list[ET.Element], Optional[str]]:
    """
    Locate the record containers under any of the supported shapes.

    Returns (message elements, company name from static variables).
    """
    if root.tag == "TALLYMESSAGE":
        return [root], None
    if root.tag != "ENVELOPE":
        raise ValidationError(
            "Invalid Tally XML format: Missing ENVELOPE or TALLYMESSAGE element"
        )

    company = None
    for path in _COMPANY_PATHS:
        company = clean_text(root.findtext(path))
        if company:
            break

    body = root.find("BODY")
    if body is not None:
        data = body.find("IMPORTDATA")
        if data is None:
            data = body.find("DATA")
        if data is not None:
            messages = data.findall("REQUESTDATA/TALLYMESSAGE") or data.findall("TALLYMESSAGE")
        else:
            messages = body.findall("TALLYMESSAGE")
    else:
        messages = root.findall("TALLYMESSAGE")

    if not messages:
        messages = list(root.iter("TALLYMESSAGE"))
    if not messages:
        # "Export" collections without TALLYMESSAGE wrappers
        collection = root.find(".//COLLECTION")
        messages = [collection] if collection is not None else []
    return messages, company


# ── document builder ─────────────────────────────────────────────────────────


class DocumentBuilder:
    """Accumulates records from TALLYMESSAGE containers into a ParsedDocument."""

    def __init__(self):
        self.masters = ParsedMasters()
        self.vouchers: list[TallyVoucher] = []
        self.issues: list[ValidationIssue] = []
        self._handlers: dict[str, Callable[[ET.Element], None]] = {
            "COMPANY": self._company,
            "GROUP": self._group,
            "LEDGER": self._ledger,
            "STOCKGROUP": self._stock_group,
            "STOCKITEM": self._stock_item,
            "GODOWN": self._godown,
            "UNIT": self._unit,
            "COSTCENTRE": self._cost_center,
            "COSTCENTER": self._cost_center,
            "COSTCATEGORY": self._cost_category,
            "CURRENCY": self._currency,
            "VOUCHERTYPE": self._voucher_type,
            "VOUCHER": self._voucher,
        }

    def feed(self, message: ET.Element) -> None:
        for record in message:
            handler = self._handlers.get(record.tag)
            if handler is None:
                continue
            try:
                handler(record)
            except Exception as exc:
                label = _name(record) or _value(record, "VOUCHERNUMBER") or "?"
                logger.warning(f"Could not parse {record.tag} {label}: {exc}")
                self.issues.append(ValidationIssue(
                    severity="warning",
                    code="PARSE_ERROR",
                    message=f"Could not parse {record.tag.lower()} {label}: {exc}",
                    record_type=record.tag.lower(),
                    record_name=label,
                ))

    def build(
        self,
        file_name: str,
        file_size: int,
        source_format: str,
        warnings: Optional[list[str]] = None,
    ) -> ParsedDocument:
        self.masters.ledger_counts_by_group = count_ledgers_by_group(self.masters.ledgers)
        vouchers = summarize_vouchers(self.vouchers)
        issues = [
            ValidationIssue(severity="info", code="SANITIZED", message=w)
            for w in (warnings or [])
        ]
        issues.extend(self.issues)
        issues.extend(structural_issues(self.masters, vouchers))
        return ParsedDocument(
            file_name=file_name,
            file_size=file_size,
            source_format=source_format,
            masters=self.masters,
            vouchers=vouchers,
            validation_issues=issues,
        )

    # ── masters ──────────────────────────────────────────────────────────────

    def _company(self, el: ET.Element) -> None:
        self.masters.company_name = self.masters.company_name or _name(el)
        self.masters.company_guid = self.masters.company_guid or _guid(el) or None
        self.masters.books_from = parse_date_or_none(_first(el, "BOOKSFROM", "STARTINGFROM"))
        self.masters.books_to = parse_date_or_none(_first(el, "BOOKSTO", "ENDINGAT"))

    def _group(self, el: ET.Element) -> None:
        self.masters.groups.append(TallyGroup(
            guid=_guid(el),
            name=_name(el) or "",
            parent=_value(el, "PARENT"),
            is_revenue=_flag(el, "ISREVENUE"),
            affects_gross_profit=_flag(el, "AFFECTSGROSSPROFIT"),
        ))

    def _ledger(self, el: ET.Element) -> None:
        name = _name(el)
        if not name:
            raise ValueError("ledger has no NAME")
        credit_limit = parse_optional_amount(_value(el, "CREDITLIMIT"))
        self.masters.ledgers.append(TallyLedger(
            guid=_guid(el),
            name=name,
            parent=_value(el, "PARENT"),
            alias=_aliases(el),
            is_bill_wise_on=_flag(el, "ISBILLWISEON"),
            is_revenue=_flag(el, "ISREVENUE"),
            opening_balance=parse_amount(_value(el, "OPENINGBALANCE")),
            closing_balance=parse_amount(_value(el, "CLOSINGBALANCE")),
            address=(
                _lines(el, "ADDRESS.LIST/ADDRESS")
                or _lines(el, "LEDMAILINGDETAILS.LIST/ADDRESS.LIST/ADDRESS")
            ),
            state_name=_first(el, "LEDSTATENAME", "STATENAME", "LEDMAILINGDETAILS.LIST/STATE"),
            country_name=_first(el, "COUNTRYNAME", "COUNTRYOFRESIDENCE", "LEDMAILINGDETAILS.LIST/COUNTRY"),
            pincode=_first(el, "PINCODE", "LEDMAILINGDETAILS.LIST/PINCODE"),
            email=_first(el, "EMAIL", "LEDGEREMAIL"),
            phone_number=_first(el, "LEDGERPHONE", "PHONENUMBER"),
            mobile_number=_first(el, "LEDGERMOBILE", "MOBILENUMBER"),
            gstin=_first(el, "PARTYGSTIN", "GSTIN", "LEDGSTREGDETAILS.LIST/GSTIN"),
            gst_registration_type=_first(
                el, "GSTREGISTRATIONTYPE", "LEDGSTREGDETAILS.LIST/GSTREGISTRATIONTYPE"
            ),
            state_code=_first(el, "GSTSTATECODE", "STATECODE"),
            pan_number=_first(el, "INCOMETAXNUMBER", "PANNUMBER", "PAN"),
            bank_account_number=_first(el, "BANKACCOUNTNUMBER", "ACCOUNTNUMBER", "BANKDETAILS"),
            ifsc_code=_first(el, "IFSCODE", "IFSCCODE"),
            bank_branch_name=_first(el, "BRANCHNAME", "BANKBRANCHNAME"),
            credit_limit=abs(credit_limit) if credit_limit is not None else None,
            credit_days=parse_int(_value(el, "BILLCREDITPERIOD")),
        ))

    def _stock_group(self, el: ET.Element) -> None:
        self.masters.stock_groups.append(TallyStockGroup(
            guid=_guid(el),
            name=_name(el) or "",
            parent=_value(el, "PARENT"),
            alias=_aliases(el),
            is_addable=_flag(el, "ISADDABLE", default=True),
            base_units=_value(el, "BASEUNITS"),
        ))

    def _stock_item(self, el: ET.Element) -> None:
        name = _name(el)
        if not name:
            raise ValueError("stock item has no NAME")
        rates = self._gst_rates(el)
        gst_rate = parse_percent(_value(el, "GSTRATE"))
        if gst_rate is None:
            gst_rate = rates.get("igst")
        if gst_rate is None and "cgst" in rates:
            gst_rate = rates["cgst"] + rates.get("sgst", rates["cgst"])
        gst_applicable = (_value(el, "GSTAPPLICABLE") or "").lower()

        self.masters.stock_items.append(TallyStockItem(
            guid=_guid(el),
            name=name,
            parent=_value(el, "PARENT"),
            alias=_aliases(el),
            part_number=_first(el, "PARTNUMBER", "PARTNO", "MAILINGNAME"),
            description=_value(el, "DESCRIPTION"),
            category=_value(el, "CATEGORY"),
            base_units=_value(el, "BASEUNITS"),
            additional_units=_value(el, "ADDITIONALUNITS"),
            conversion=parse_percent(_value(el, "CONVERSION")),
            opening_quantity=parse_quantity(_value(el, "OPENINGBALANCE"), signed=True),
            opening_rate=parse_rate(_value(el, "OPENINGRATE")),
            opening_value=abs(parse_amount(_value(el, "OPENINGVALUE"))),
            closing_quantity=parse_quantity(_value(el, "CLOSINGBALANCE")),
            closing_rate=parse_rate(_value(el, "CLOSINGRATE")),
            closing_value=abs(parse_amount(_value(el, "CLOSINGVALUE"))),
            gst_applicable="applicable" in gst_applicable and "not" not in gst_applicable,
            hsn_code=_first(el, "GSTDETAILS.LIST/HSNCODE", "HSNCODE", "HSN"),
            sac_code=_first(el, "GSTDETAILS.LIST/SACCODE", "SACCODE"),
            gst_rate=gst_rate,
            igst_rate=rates.get("igst"),
            cgst_rate=rates.get("cgst"),
            sgst_rate=rates.get("sgst"),
            cess_rate=rates.get("cess"),
            is_batch_enabled=_flag(el, "ISBATCHWISEON"),
            is_perishable=_flag(el, "ISPERISHABLEON"),
            has_expiry_date=_flag(el, "HASEXPIRYDATE") or _flag(el, "ISEXPIRYDATEON"),
            costing_method=_value(el, "COSTINGMETHOD"),
            standard_cost=parse_optional_amount(_value(el, "STANDARDCOSTLIST.LIST/RATE")),
            standard_price=parse_optional_amount(_value(el, "STANDARDPRICELIST.LIST/RATE")),
            reorder_level=parse_quantity(_value(el, "REORDERBASE")) or None,
            minimum_order_quantity=parse_quantity(_value(el, "MINIMUMORDERBASE")) or None,
        ))

    @staticmethod
    def _gst_rates(el: ET.Element) -> dict[str, float]:
        """Duty head -> rate from GSTDETAILS.LIST/STATEWISEDETAILS.LIST/RATEDETAILS.LIST."""
        rates: dict[str, float] = {}
        for detail in el.iter("RATEDETAILS.LIST"):
            head = (_value(detail, "GSTRATEDUTYHEAD") or "").lower()
            rate = parse_percent(_value(detail, "GSTRATE"))
            if rate is None:
                continue
            for key in ("igst", "cgst", "sgst", "cess"):
                if key in head or (key == "sgst" and "utgst" in head):
                    rates.setdefault(key, rate)
        return rates

    def _godown(self, el: ET.Element) -> None:
        self.masters.godowns.append(TallyGodown(
            guid=_guid(el),
            name=_name(el) or "",
            parent=_value(el, "PARENT"),
            address=_lines(el, "ADDRESS.LIST/ADDRESS"),
            is_internal=_flag(el, "ISINTERNAL", default=True),
            has_no_stock=_flag(el, "HASNOSPACE") or _flag(el, "HASNOSTOCK"),
        ))

    def _unit(self, el: ET.Element) -> None:
        name = _name(el) or ""
        self.masters.units.append(TallyUnit(
            guid=_guid(el),
            name=name,
            symbol=_value(el, "SYMBOL") or name,
            formal_name=_value(el, "ORIGINALNAME"),
            is_simple_unit=_flag(el, "ISSIMPLEUNIT", default=True),
            base_units=_value(el, "BASEUNITS"),
            additional_units=_value(el, "ADDITIONALUNITS"),
            conversion=parse_percent(_value(el, "CONVERSION")),
            decimal_places=parse_int(_value(el, "DECIMALPLACES")) or 0,
        ))

    def _cost_category(self, el: ET.Element) -> None:
        self.masters.cost_categories.append(TallyCostCategory(
            guid=_guid(el),
            name=_name(el) or "",
            allocate_revenue=_flag(el, "ALLOCATEREVENUE", default=True),
            allocate_non_revenue=_flag(el, "ALLOCATENONREVENUE"),
        ))

    def _cost_center(self, el: ET.Element) -> None:
        self.masters.cost_centers.append(TallyCostCenter(
            guid=_guid(el),
            name=_name(el) or "",
            parent=_value(el, "PARENT"),
            category=_value(el, "CATEGORY"),
            is_revenue_item=_flag(el, "REVENUELEDFOROPBAL"),
            email=_value(el, "EMAILID"),
        ))

    def _currency(self, el: ET.Element) -> None:
        name = _name(el) or ""
        self.masters.currencies.append(TallyCurrency(
            guid=_guid(el),
            name=name,
            symbol=_value(el, "SYMBOL") or name,
            formal_name=_first(el, "MAILINGNAME", "ORIGINALNAME"),
            iso_code=_value(el, "ISOCURRENCYCODE"),
            decimal_places=parse_int(_value(el, "DECIMALPLACES")) or 2,
        ))

    def _voucher_type(self, el: ET.Element) -> None:
        self.masters.voucher_types.append(TallyVoucherType(
            guid=_guid(el),
            name=_name(el) or "",
            parent=_value(el, "PARENT"),
            numbering_method=_value(el, "NUMBERINGMETHOD"),
            is_active=_flag(el, "ISACTIVE", default=True),
        ))

    # ── vouchers ─────────────────────────────────────────────────────────────

    def _voucher(self, el: ET.Element) -> None:
        voucher_type = (
            clean_text(el.get("VCHTYPE"))
            or clean_text(el.findtext("VOUCHERTYPENAME"))
            or clean_text(el.get("VOUCHERTYPENAME"))
            or ""
        )
        party_name = _first(el, "PARTYLEDGERNAME", "PARTYNAME")

        ledger_entries = [
            self._ledger_entry(e)
            for e in _children(el, "ALLLEDGERENTRIES.LIST", "LEDGERENTRIES.LIST")
        ]
        inventory_entries = []
        for inv in _children(
            el,
            "ALLINVENTORYENTRIES.LIST",
            "INVENTORYENTRIES.LIST",
            "INVENTORYENTRIESIN.LIST",
            "INVENTORYENTRIESOUT.LIST",
        ):
            inventory_entries.append(self._inventory_entry(inv))
            # Invoice-mode vouchers carry the sales/purchase ledger inside the item
            ledger_entries.extend(
                self._ledger_entry(a) for a in inv.findall("ACCOUNTINGALLOCATIONS.LIST")
            )
        if not ledger_entries:
            ledger_entries = self._bare_ledger_entries(el, party_name)

        amount = abs(parse_amount(_value(el, "AMOUNT")))
        if amount == 0:
            credits = sum(e.amount for e in ledger_entries if e.amount < 0)
            debits = sum(e.amount for e in ledger_entries if e.amount > 0)
            amount = abs(credits) if credits else debits

        self.vouchers.append(TallyVoucher(
            guid=_guid(el),
            voucher_number=_value(el, "VOUCHERNUMBER") or "",
            voucher_type=voucher_type,
            voucher_date=parse_date(_value(el, "DATE")),
            reference_number=_value(el, "REFERENCE"),
            reference_date=parse_date_or_none(_value(el, "REFERENCEDATE")),
            narration=_value(el, "NARRATION"),
            party_ledger_name=party_name,
            party_ledger_guid=_value(el, "PARTYLEDGERGUID"),
            amount=round(amount, 2),
            currency=_value(el, "CURRENCYNAME"),
            exchange_rate=parse_percent(_value(el, "EXCHANGERATE")),
            place_of_supply=_value(el, "PLACEOFSUPPLY"),
            is_reverse_charge=_flag(el, "ISREVERSECHARGEAPPLICABLE"),
            party_gstin=_first(el, "PARTYGSTIN", "CONSIGNEEGSTIN"),
            irn=_first(el, "IRN", "IRNACKNO"),
            eway_bill_number=_first(el, "EWAYBILLDETAILS.LIST/BILLNUMBER", "EWAYBILLNO"),
            is_cancelled=_flag(el, "ISCANCELLED"),
            is_optional=_flag(el, "ISOPTIONAL"),
            is_post_dated=_flag(el, "ISPOSTDATED"),
            ledger_entries=ledger_entries,
            inventory_entries=inventory_entries,
            bill_allocations=[self._bill_allocation(b) for b in el.findall("BILLALLOCATIONS.LIST")],
            cost_allocations=self._cost_allocations(el),
        ))

    def _ledger_entry(self, el: ET.Element) -> LedgerEntry:
        return LedgerEntry(
            ledger_name=_value(el, "LEDGERNAME") or "",
            ledger_guid=_value(el, "LEDGERGUID"),
            amount=parse_amount(_value(el, "AMOUNT")),
            is_party_ledger=_flag(el, "ISPARTYLEDGER"),
            cgst_amount=parse_optional_amount(_value(el, "CGSTAMOUNT")),
            sgst_amount=parse_optional_amount(_value(el, "SGSTAMOUNT")),
            igst_amount=parse_optional_amount(_value(el, "IGSTAMOUNT")),
            cess_amount=parse_optional_amount(_value(el, "CESSAMOUNT")),
            tds_amount=parse_optional_amount(_value(el, "TDSAMOUNT")),
            tds_section=_first(el, "TDSSECTION", "TDSNATUREOFPAYMENT"),
            tds_rate=parse_percent(_value(el, "TDSRATE")),
            bill_allocations=[self._bill_allocation(b) for b in el.findall("BILLALLOCATIONS.LIST")],
            cost_allocations=self._cost_allocations(el),
        )

    @staticmethod
    def _bare_ledger_entries(el: ET.Element, party_name: Optional[str]) -> list[LedgerEntry]:
        """Pair sibling LEDGERNAME / AMOUNT elements by position."""
        names = [n.text.strip() for n in el.findall("LEDGERNAME") if n.text and n.text.strip()]
        amounts = [parse_amount(a.text) for a in el.findall("AMOUNT")]
        entries = [
            LedgerEntry(ledger_name=name, amount=amount)
            for name, amount in zip(names, amounts)
        ]
        if party_name and len(amounts) > len(names):
            entries.append(LedgerEntry(
                ledger_name=party_name, amount=amounts[len(names)], is_party_ledger=True
            ))
        return entries

    def _inventory_entry(self, el: ET.Element) -> InventoryEntry:
        quantity, unit = split_quantity(_first(el, "ACTUALQTY", "BILLEDQTY"))
        batches = [self._batch_allocation(b) for b in el.findall("BATCHALLOCATIONS.LIST")]
        godown = _value(el, "GODOWNNAME") or next(
            (b.godown_name for b in batches if b.godown_name), None
        )
        return InventoryEntry(
            stock_item_name=_value(el, "STOCKITEMNAME") or "",
            stock_item_guid=_value(el, "STOCKITEMGUID"),
            quantity=quantity,
            unit=unit,
            rate=parse_rate(_value(el, "RATE")),
            amount=parse_amount(_value(el, "AMOUNT")),
            discount=parse_percent(_value(el, "DISCOUNT")),
            godown_name=godown,
            destination_godown_name=_value(el, "DESTINATIONGODOWNNAME"),
            hsn_code=_first(el, "GSTHSNNAME", "HSNCODE"),
            gst_rate=parse_percent(_value(el, "GSTRATE")),
            order_number=_first(el, "ORDERNO", "BATCHALLOCATIONS.LIST/ORDERNO"),
            order_date=parse_date_or_none(_value(el, "ORDERDUEDATE")),
            batch_allocations=batches,
        )

    @staticmethod
    def _batch_allocation(el: ET.Element) -> BatchAllocation:
        return BatchAllocation(
            batch_name=_value(el, "BATCHNAME"),
            godown_name=_value(el, "GODOWNNAME"),
            quantity=parse_quantity(_first(el, "ACTUALQTY", "BILLEDQTY")),
            rate=parse_rate(_value(el, "RATE")),
            amount=parse_amount(_value(el, "AMOUNT")),
            manufacturing_date=parse_date_or_none(_value(el, "MFDON")),
            expiry_date=parse_date_or_none(_first(el, "EXPIRYDATE", "EXPIRYPERIOD")),
        )

    @staticmethod
    def _bill_allocation(el: ET.Element) -> BillAllocation:
        return BillAllocation(
            name=_value(el, "NAME"),
            bill_type=_value(el, "BILLTYPE"),
            amount=parse_amount(_value(el, "AMOUNT")),
            bill_date=parse_date_or_none(_value(el, "BILLDATE")),
            due_date=parse_date_or_none(_value(el, "DUEDATE")),
            credit_period=_value(el, "BILLCREDITPERIOD"),
        )

    @staticmethod
    def _cost_allocations(el: ET.Element) -> list[CostAllocation]:
        allocations: list[CostAllocation] = []
        for category in el.findall("CATEGORYALLOCATIONS.LIST"):
            category_name = _value(category, "CATEGORY")
            for cc in category.findall("COSTCENTREALLOCATIONS.LIST"):
                allocations.append(CostAllocation(
                    category=category_name,
                    cost_center_name=_value(cc, "NAME"),
                    cost_center_guid=_value(cc, "GUID"),
                    amount=parse_amount(_value(cc, "AMOUNT")),
                ))
        for cc in el.findall("COSTCENTREALLOCATIONS.LIST"):
            allocations.append(CostAllocation(
                cost_center_name=_value(cc, "NAME"),
                cost_center_guid=_value(cc, "GUID"),
                amount=parse_amount(_value(cc, "AMOUNT")),
            ))
        return allocations


# ── entry points ─────────────────────────────────────────────────────────────


def build_document(
    root: ET.Element,
    file_name: str,
    file_size: int,
    source_format: str,
    warnings: Optional[list[str]] = None,
) -> ParsedDocument:
    """Walk an element tree (native XML or converted JSON) into a ParsedDocument."""
    messages, company = find_messages(root)
    builder = DocumentBuilder()
    if company:
        builder.masters.company_name = company
    for message in messages:
        builder.feed(message)
    document = builder.build(file_name, file_size, source_format, warnings)
    logger.info(
        f"Parsed {file_name}: {len(document.masters.ledgers)} ledgers, "
        f"{len(document.masters.stock_items)} stock items, "
        f"{len(document.vouchers.vouchers)} vouchers, "
        f"{len(document.validation_issues)} issue(s)"
    )
    return document


def parse_xml(
    raw: bytes,
    file_name: str,
    *,
    backup_dir: Optional[Path] = None,
) -> ParsedDocument:
    """
    Parse a Tally XML export.

    Raises ValidationError for malformed XML or an unrecognised root, and
    InternalError for anything unexpected.
    """
    try:
        clean, warnings = sanitize_xml(raw, source_path=file_name, backup_dir=backup_dir)
        root = ET.fromstring(clean)
        return build_document(root, file_name, len(raw), "xml", warnings)
    except ET.ParseError as e:
        raise ValidationError(f"Invalid XML format: {e}") from e
    except MigrationError:
        raise
    except Exception as e:
        logger.exception(f"Failed to parse {file_name}")
        raise InternalError(f"Failed to parse file: {e}") from e
