"""
Tally JSON Parser.

TallyPrime's JSON export carries the same logical schema as the XML one,
but keys arrive in whatever casing the exporting tool chose ("LEDGERNAME",
"ledgerName", "ledger_name"), attributes may be spelled "@NAME", and any
value may be a scalar, a single object or an array.

Rather than re-implement record parsing, the JSON tree is converted into
an equivalent ElementTree and handed to the XML document builder.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional
from xml.etree import ElementTree as ET

from loguru import logger

from tally_migration.core.errors import InternalError, MigrationError, ValidationError
from tally_migration.etl.sanitizer import save_raw_backup, sanitize_text
from tally_migration.etl.xml_parser import build_document
from tally_migration.schemas.tally import ParsedDocument

# Repeated child collections that the XML schema suffixes with ".LIST"
_LIST_TAGS = {
    "ALLLEDGERENTRIES",
    "LEDGERENTRIES",
    "ALLINVENTORYENTRIES",
    "INVENTORYENTRIES",
    "INVENTORYENTRIESIN",
    "INVENTORYENTRIESOUT",
    "ACCOUNTINGALLOCATIONS",
    "BILLALLOCATIONS",
    "BATCHALLOCATIONS",
    "CATEGORYALLOCATIONS",
    "COSTCENTREALLOCATIONS",
    "LANGUAGENAME",
    "GSTDETAILS",
    "STATEWISEDETAILS",
    "RATEDETAILS",
}

# Collection keys at message level -> record tag
_RECORD_TAGS = {
    "COMPANY": "COMPANY",
    "GROUP": "GROUP",
    "GROUPS": "GROUP",
    "LEDGER": "LEDGER",
    "LEDGERS": "LEDGER",
    "STOCKGROUP": "STOCKGROUP",
    "STOCKGROUPS": "STOCKGROUP",
    "STOCKITEM": "STOCKITEM",
    "STOCKITEMS": "STOCKITEM",
    "GODOWN": "GODOWN",
    "GODOWNS": "GODOWN",
    "UNIT": "UNIT",
    "UNITS": "UNIT",
    "COSTCENTRE": "COSTCENTRE",
    "COSTCENTRES": "COSTCENTRE",
    "COSTCENTER": "COSTCENTRE",
    "COSTCENTERS": "COSTCENTRE",
    "COSTCATEGORY": "COSTCATEGORY",
    "COSTCATEGORIES": "COSTCATEGORY",
    "CURRENCY": "CURRENCY",
    "CURRENCIES": "CURRENCY",
    "VOUCHERTYPE": "VOUCHERTYPE",
    "VOUCHERTYPES": "VOUCHERTYPE",
    "VOUCHER": "VOUCHER",
    "VOUCHERS": "VOUCHER",
}

_TEXT_KEYS = {"#text", "$", "_text", "#value"}


def _norm(key: str) -> str:
    return key.replace("_", "").replace("-", "").upper()


def _tag(key: str) -> str:
    tag = _norm(key)
    if tag.endswith(".LIST"):
        return tag
    return f"{tag}.LIST" if tag in _LIST_TAGS else tag


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return str(value)


def _append(parent: ET.Element, key: str, value: Any) -> None:
    """Append ``value`` under ``parent`` as the XML export would have written it."""
    if value is None:
        return
    if key in _TEXT_KEYS:
        parent.text = _scalar(value)
        return
    if key.startswith("@"):
        parent.set(_norm(key[1:]), _scalar(value))
        return
    if isinstance(value, list):
        for item in value:
            _append(parent, key, item)
        return

    child = ET.SubElement(parent, _tag(key))
    if isinstance(value, dict):
        for k, v in value.items():
            _append(child, k, v)
    else:
        child.text = _scalar(value)


def _message(records: dict[str, Any]) -> ET.Element:
    """Build one TALLYMESSAGE from a mapping of collection key -> record(s)."""
    message = ET.Element("TALLYMESSAGE")
    for key, value in records.items():
        tag = _RECORD_TAGS.get(_norm(key))
        if tag is None:
            continue
        items = value if isinstance(value, list) else [value]
        for item in items:
            if isinstance(item, str) and tag == "COMPANY":
                item = {"NAME": item}
            if isinstance(item, dict):
                _append(message, tag, item)
    return message


def _messages(value: Any) -> list[ET.Element]:
    items = value if isinstance(value, list) else [value]
    return [_message(item) for item in items if isinstance(item, dict)]


def _find(data: dict[str, Any], *names: str) -> Any:
    """Case/underscore-insensitive key lookup."""
    wanted = {_norm(n) for n in names}
    for key, value in data.items():
        if _norm(key) in wanted:
            return value
    return None


def to_element_tree(data: Any) -> ET.Element:
    """
    Convert a decoded JSON export into an ENVELOPE element tree.

    Accepted shapes: {"ENVELOPE": {...}}, {"BODY": {...}},
    {"TALLYMESSAGE": [...]}, a top-level array of messages, or direct
    collections such as {"ledgers": [...], "vouchers": [...]}.
    """
    if isinstance(data, list):
        root = ET.Element("ENVELOPE")
        body = ET.SubElement(root, "BODY")
        body.extend(_messages(data))
        return root
    if not isinstance(data, dict):
        raise ValidationError("Invalid Tally JSON format: expected an object or array")

    envelope = _find(data, "ENVELOPE")
    if isinstance(envelope, dict):
        data = envelope
    body = _find(data, "BODY")
    if isinstance(body, dict):
        root = ET.Element("ENVELOPE")
        for key, value in data.items():
            if _norm(key) == "BODY":
                continue
            _append(root, key, value)
        body_el = ET.SubElement(root, "BODY")
        for key, value in body.items():
            if _norm(key) == "TALLYMESSAGE":
                body_el.extend(_messages(value))
            else:
                _append(body_el, key, value)
        # TALLYMESSAGE nested under IMPORTDATA/REQUESTDATA was converted generically
        for message in list(root.iter("TALLYMESSAGE")):
            _normalise_message(message)
        return root

    root = ET.Element("ENVELOPE")
    body_el = ET.SubElement(root, "BODY")
    messages = _find(data, "TALLYMESSAGE")
    if messages is not None:
        body_el.extend(_messages(messages))
        return root

    if not any(_norm(key) in _RECORD_TAGS for key in data):
        raise ValidationError(
            "Invalid Tally JSON format: no ENVELOPE, TALLYMESSAGE or data collections found"
        )
    body_el.append(_message(data))
    return root


def _normalise_message(message: ET.Element) -> None:
    """Rename plural/lowercase record tags inside a generically converted message."""
    for record in list(message):
        tag = _RECORD_TAGS.get(_norm(record.tag))
        if tag and record.tag != tag:
            record.tag = tag


def parse_json(
    raw: bytes,
    file_name: str,
    *,
    backup_dir: Optional[Path] = None,
) -> ParsedDocument:
    """
    Parse a Tally JSON export.

    Raises ValidationError for malformed JSON or an unrecognised shape, and
    InternalError for anything unexpected.
    """
    try:
        warnings: list[str] = []
        if backup_dir:
            try:
                save_raw_backup(raw, file_name, backup_dir)
            except OSError as e:
                warnings.append(f"Could not write raw backup: {e}")
        text, text_warnings = sanitize_text(raw, source_path=file_name)
        warnings.extend(text_warnings)
        data = json.loads(text, strict=False)
        root = to_element_tree(data)
        return build_document(root, file_name, len(raw), "json", warnings)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON format: {e}") from e
    except MigrationError:
        raise
    except Exception as e:
        logger.exception(f"Failed to parse {file_name}")
        raise InternalError(f"Failed to parse file: {e}") from e
