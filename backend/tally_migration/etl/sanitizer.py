"""
Pre-sanitizer for Tally export bytes.

Tally exports frequently arrive as:
- UTF-16 LE/BE with a BOM (the default for "Export" from TallyPrime)
- UTF-8 with a BOM, or Windows-1252 mislabelled as UTF-8
- text containing control characters and numeric character references
  (&#4; and friends) that XML 1.0 forbids

Everything here runs BEFORE the XML/JSON parser sees the data.
"""

import re
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from loguru import logger

# Anything outside the XML 1.0 Char production:
#   #x9 | #xA | #xD | [#x20-#xD7FF] | [#xE000-#xFFFD] | [#x10000-#x10FFFF]
_INVALID_XML_CHAR_RE = re.compile(
    r"[^\x09\x0A\x0D\x20-\uD7FF\uE000-\uFFFD\U00010000-\U0010FFFF]"
)

# Numeric character references; Tally sometimes omits the trailing ';'
_CHAR_REF_RE = re.compile(r"&#(?:[xX]([0-9a-fA-F]+)|([0-9]+));?")

_XML_DECL_RE = re.compile(
    rb'<\?xml[^?]*encoding=["\']([^"\']+)["\'][^?]*\?>',
    re.IGNORECASE,
)

_BOMS: tuple[tuple[bytes, str], ...] = (
    (b"\xef\xbb\xbf", "utf-8"),
    (b"\xff\xfe", "utf-16-le"),
    (b"\xfe\xff", "utf-16-be"),
)


def is_valid_xml_char(codepoint: int) -> bool:
    if codepoint in (0x9, 0xA, 0xD):
        return True
    if 0x20 <= codepoint <= 0xD7FF:
        return True
    if 0xE000 <= codepoint <= 0xFFFD:
        return True
    return 0x10000 <= codepoint <= 0x10FFFF


def decode_bytes(raw: bytes) -> Tuple[str, str]:
    """
    Decode export bytes to text.

    A BOM decides the encoding (and is dropped); without one the data is
    read as UTF-8, falling back to Windows-1252 for legacy exports.
    Returns (text, detected_encoding).
    """
    for bom, encoding in _BOMS:
        if raw.startswith(bom):
            text = raw[len(bom):].decode(encoding, errors="replace")
            return text, f"{encoding}-bom"

    try:
        return raw.decode("utf-8"), "utf-8"
    except UnicodeDecodeError:
        pass
    try:
        return raw.decode("windows-1252"), "windows-1252"
    except UnicodeDecodeError:
        return raw.decode("utf-8", errors="replace"), "utf-8(replaced)"


def strip_invalid_chars(text: str) -> Tuple[str, list[str]]:
    """
    Remove raw characters that are illegal in XML 1.0.

    Returns (clean_text, warnings).
    """
    warnings: list[str] = []
    positions = [m.start() for m in _INVALID_XML_CHAR_RE.finditer(text)]
    if positions:
        warnings.append(
            f"Removed {len(positions)} invalid control character(s) "
            f"at offsets: {positions[:20]}"
        )
    return _INVALID_XML_CHAR_RE.sub("", text), warnings


def strip_invalid_char_refs(text: str) -> Tuple[str, list[str]]:
    """
    Remove numeric character references that decode to illegal characters
    (e.g. ``&#4;`` or ``&#x1F;``). Valid references are left untouched.

    Returns (clean_text, warnings).
    """
    removed: list[str] = []

    def replace_ref(m: re.Match) -> str:
        hex_val, dec_val = m.group(1), m.group(2)
        try:
            codepoint = int(hex_val, 16) if hex_val else int(dec_val, 10)
        except ValueError:
            removed.append(m.group(0))
            return ""
        if not is_valid_xml_char(codepoint):
            removed.append(m.group(0))
            return ""
        return m.group(0)

    clean = _CHAR_REF_RE.sub(replace_ref, text)
    warnings: list[str] = []
    if removed:
        warnings.append(
            f"Removed {len(removed)} invalid character reference(s): {removed[:10]}"
        )
    return clean, warnings


def _fix_xml_declaration(raw_bytes: bytes) -> bytes:
    """Point the declared encoding at utf-8 to match the re-encoded bytes."""

    def replace_decl(m: re.Match) -> bytes:
        return re.sub(
            rb'encoding=["\'][^"\']+["\']',
            b'encoding="utf-8"',
            m.group(0),
            flags=re.IGNORECASE,
        )

    return _XML_DECL_RE.sub(replace_decl, raw_bytes, count=1)


def save_raw_backup(raw: bytes, source_path: str, backup_dir: Path) -> Optional[Path]:
    """Keep an untouched copy of the upload next to the sanitised one."""
    backup_dir = Path(backup_dir)
    backup_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.utcnow().strftime("%Y%m%dT%H%M%S")
    src = Path(source_path)
    backup_path = backup_dir / f"{src.stem}_{stamp}{src.suffix}.bak"
    backup_path.write_bytes(raw)
    logger.debug(f"Raw backup saved to {backup_path}")
    return backup_path


def sanitize_text(
    raw: bytes,
    *,
    source_path: str = "<unknown>",
) -> Tuple[str, list[str]]:
    """
    Decode and clean export bytes, returning text for either parser.

    1. Detect encoding from the BOM (default UTF-8).
    2. Strip illegal numeric character references.
    3. Strip raw illegal characters.
    """
    warnings: list[str] = []

    text, detected = decode_bytes(raw)
    if detected.endswith("-bom"):
        logger.debug(f"{source_path}: decoded as {detected}")
    elif detected != "utf-8":
        # Guessed encodings are reported; a BOM is authoritative
        warnings.append(f"Re-encoded from {detected} to UTF-8")
        logger.info(f"{source_path}: Re-encoded from {detected}")
    # A second BOM can survive in files that were concatenated
    text = text.lstrip("\ufeff")

    text, ref_warnings = strip_invalid_char_refs(text)
    warnings.extend(ref_warnings)
    if ref_warnings:
        logger.warning(f"{source_path}: {ref_warnings[0]}")

    text, char_warnings = strip_invalid_chars(text)
    warnings.extend(char_warnings)
    if char_warnings:
        logger.warning(f"{source_path}: {char_warnings[0]}")

    return text, warnings


def sanitize_xml(
    raw: bytes,
    *,
    source_path: str = "<unknown>",
    backup_dir: Optional[Path] = None,
) -> Tuple[bytes, list[str]]:
    """
    Full XML sanitisation pipeline.

    Parameters
    ----------
    raw:         Raw bytes from the upload.
    source_path: File name (used for logging and backup naming).
    backup_dir:  If provided, the original raw bytes are saved here.

    Returns
    -------
    (clean UTF-8 bytes, warnings)
    """
    warnings: list[str] = []

    if backup_dir:
        try:
            save_raw_backup(raw, source_path, backup_dir)
        except OSError as e:
            warnings.append(f"Could not write raw backup: {e}")

    text, text_warnings = sanitize_text(raw, source_path=source_path)
    warnings.extend(text_warnings)

    clean_bytes = _fix_xml_declaration(text.encode("utf-8"))
    return clean_bytes, warnings
