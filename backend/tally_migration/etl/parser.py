"""Parser selection: by file extension, falling back to content sniffing."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from loguru import logger

from tally_migration.etl.json_parser import parse_json
from tally_migration.etl.sanitizer import decode_bytes
from tally_migration.etl.summary import structural_issues, summarize_vouchers
from tally_migration.etl.xml_parser import parse_xml
from tally_migration.schemas.tally import ParsedDocument, ParsedMasters


def detect_format(file_name: str, raw: bytes) -> str:
    """Return 'xml' or 'json'."""
    suffix = Path(file_name or "").suffix.lower()
    if suffix == ".json":
        return "json"
    if suffix == ".xml":
        return "xml"
    head, _ = decode_bytes(raw[:4096])
    head = head.lstrip("\ufeff \t\r\n")
    return "json" if head[:1] in ("{", "[") else "xml"


def _empty_document(file_name: str, raw: bytes, source_format: str) -> ParsedDocument:
    masters = ParsedMasters()
    vouchers = summarize_vouchers([])
    return ParsedDocument(
        file_name=file_name,
        file_size=len(raw),
        source_format=source_format,
        masters=masters,
        vouchers=vouchers,
        validation_issues=structural_issues(masters, vouchers),
    )


def parse_file(
    raw: bytes,
    file_name: str,
    *,
    backup_dir: Optional[Path] = None,
) -> ParsedDocument:
    source_format = detect_format(file_name, raw)
    text, _ = decode_bytes(raw)
    if not text.strip():
        logger.warning(f"{file_name}: file has no content")
        return _empty_document(file_name, raw, source_format)
    if source_format == "json":
        return parse_json(raw, file_name, backup_dir=backup_dir)
    return parse_xml(raw, file_name, backup_dir=backup_dir)
