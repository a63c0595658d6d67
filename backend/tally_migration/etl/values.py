"""
Scalar value parsing for Tally exports.

Tally writes amounts with thousands separators, currency symbols and a
Dr/Cr suffix, quantities with a trailing unit ("10 Nos"), rates as
"value/unit", and dates as YYYYMMDD. Every helper here is total: bad input
falls back to a neutral value instead of raising.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Optional

from dateutil import parser as date_parser

# ── amounts ──────────────────────────────────────────────────────────────────

_CURRENCY_RE = re.compile(r"(₹|Rs\.?|INR)", re.IGNORECASE)
_DRCR_RE = re.compile(r"\s*(Dr|Cr)\.?\s*$", re.IGNORECASE)


def parse_amount(raw: Optional[str]) -> float:
    """
    Parse a signed Tally amount.

    '1,234.50 Cr' -> -1234.50, '₹ 500 Dr' -> 500.0, '-250' -> -250.0.
    Forex amounts ('-$ 100 @ ₹ 83/$ = -₹ 8300') use the value after '='.
    """
    if raw is None:
        return 0.0
    text = str(raw).strip()
    if not text:
        return 0.0
    if "=" in text:
        text = text.rsplit("=", 1)[1].strip()

    suffix = None
    m = _DRCR_RE.search(text)
    if m:
        suffix = m.group(1).lower()
        text = text[: m.start()]

    text = _CURRENCY_RE.sub("", text).replace(",", "").replace(" ", "").strip()
    try:
        value = float(text)
    except ValueError:
        return 0.0
    # The suffix wins over a stray sign
    if suffix == "cr":
        value = -abs(value)
    elif suffix == "dr":
        value = abs(value)
    return value


def parse_optional_amount(raw: Optional[str]) -> Optional[float]:
    if raw is None or not str(raw).strip():
        return None
    return parse_amount(raw)


# ── quantities / rates ───────────────────────────────────────────────────────

def split_quantity(raw: Optional[str], signed: bool = False) -> tuple[float, Optional[str]]:
    """
    Parse quantity strings like '10 Nos', ' 5.5 KGS', '-3 PC'.
    Returns (quantity, unit); the quantity is non-negative unless ``signed``.
    """
    if raw is None:
        return 0.0, None
    text = str(raw).strip()
    if not text:
        return 0.0, None
    # Compound quantities ('10 Box = 120 Nos') keep the primary unit only
    text = text.split("=", 1)[0].strip()
    m = re.match(r"^([+-]?\s*[\d.,]+)\s*([A-Za-z][^/]*)?", text)
    if not m:
        return 0.0, None
    number = m.group(1).replace(",", "").replace(" ", "")
    unit = (m.group(2) or "").strip() or None
    try:
        value = float(number)
    except ValueError:
        return 0.0, None
    return (value if signed else abs(value)), unit


def parse_quantity(raw: Optional[str], signed: bool = False) -> float:
    return split_quantity(raw, signed)[0]


def parse_rate(raw: Optional[str]) -> float:
    """Parse '1066.96/Nos' or '₹ 100' into a non-negative number."""
    if raw is None:
        return 0.0
    text = str(raw).strip()
    if not text:
        return 0.0
    if "/" in text:
        text = text.split("/", 1)[0]
    return abs(parse_amount(text))


def parse_percent(raw: Optional[str]) -> Optional[float]:
    if raw is None:
        return None
    text = str(raw).replace("%", "").strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def parse_int(raw: Optional[str]) -> Optional[int]:
    """Leading integer of strings like '30 Days'."""
    if raw is None:
        return None
    m = re.search(r"-?\d+", str(raw))
    return int(m.group(0)) if m else None


# ── dates ────────────────────────────────────────────────────────────────────

def parse_date(raw: Optional[str]) -> date:
    """
    Parse a Tally date. YYYYMMDD first, then any format dateutil accepts
    (day-first, as Indian exports write them). Unparseable input yields
    today's date.
    """
    parsed = _try_parse_date(raw)
    return parsed if parsed is not None else date.today()


def parse_date_or_none(raw: Optional[str]) -> Optional[date]:
    """Like ``parse_date`` but blank or unparseable input yields None."""
    return _try_parse_date(raw)


def _try_parse_date(raw: Optional[str]) -> Optional[date]:
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    if len(text) == 8 and text.isdigit():
        try:
            return datetime.strptime(text, "%Y%m%d").date()
        except ValueError:
            return None
    try:
        return date_parser.parse(text, dayfirst=not text[:4].isdigit()).date()
    except (ValueError, OverflowError):
        return None


# ── booleans / text ──────────────────────────────────────────────────────────

def parse_bool(raw: Optional[str]) -> bool:
    """'Yes' / 'True' / '1' (any case) are true; everything else is false."""
    if raw is None:
        return False
    return str(raw).strip().lower() in ("yes", "true", "1")


def clean_text(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


# ── voucher types ────────────────────────────────────────────────────────────

_VOUCHER_TYPE_MAP: dict[str, str] = {
    "sales": "sales",
    "purchase": "purchase",
    "receipt": "receipt",
    "payment": "payment",
    "journal": "journal",
    "contra": "contra",
    "credit note": "credit_note",
    "creditnote": "credit_note",
    "debit note": "debit_note",
    "debitnote": "debit_note",
    "stock journal": "stock_journal",
    "physical stock": "physical_stock",
    "delivery note": "delivery_note",
    "receipt note": "receipt_note",
    "sales order": "sales_order",
    "purchase order": "purchase_order",
    "memorandum": "memorandum",
}


def normalize_voucher_type(raw: Optional[str]) -> str:
    """Canonical lower_snake voucher type ('Credit Note' -> 'credit_note')."""
    key = (raw or "").strip().lower()
    return _VOUCHER_TYPE_MAP.get(key, key.replace(" ", "_"))
