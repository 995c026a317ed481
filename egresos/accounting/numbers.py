"""Number, date and text helpers shared by the parser, aggregation and sinks."""

from __future__ import annotations

import math
import re
import unicodedata
from datetime import date, datetime

import config

EPSILON = 1e-9
TILDE = "\u0303"

_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


def parse_decimal(raw: str | None) -> float | None:
    """Parse an XML amount: 1,234.56 -> 1234.56. Returns None when unparsable."""
    if raw is None:
        return None
    cleaned = str(raw).strip().replace(",", "")
    if not cleaned:
        return None
    try:
        value = float(cleaned)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def is_zero(value: float) -> bool:
    return abs(value) < EPSILON


def format_number(
    value: float,
    group_separator: str | None = None,
    decimal_separator: str | None = None,
) -> str:
    """Format with 2 decimals and thousands grouping, es-CR style by default."""
    group = config.NUMBER_GROUP_SEPARATOR if group_separator is None else group_separator
    decimal = config.NUMBER_DECIMAL_SEPARATOR if decimal_separator is None else decimal_separator
    if is_zero(value):
        value = 0.0
    text = f"{value:,.2f}"
    return text.replace(",", "\x00").replace(".", decimal).replace("\x00", group)


def format_money(value: float | None, currency: str | None, default_currency: str | None = None) -> str:
    """Amount without currency symbol; non-default currencies get their code appended."""
    if value is None:
        return "—"
    default_currency = (default_currency or config.DEFAULT_CURRENCY).upper()
    code = (currency or "").strip().upper()
    base = format_number(value)
    if not code or code == default_currency:
        return base
    return f"{base} {code}"


def format_currency_totals(totals: dict[str, float], default_currency: str | None = None) -> str:
    """Render a per-currency sum without ever adding different currencies together."""
    default_currency = (default_currency or config.DEFAULT_CURRENCY).upper()
    entries = sorted(
        ((code, amount) for code, amount in totals.items() if math.isfinite(amount) and not is_zero(amount)),
        key=lambda item: item[0],
    )
    if not entries:
        return format_number(0.0)
    if len(entries) == 1:
        code, amount = entries[0]
        return format_money(amount, code, default_currency)
    return " | ".join(f"{code}: {format_number(amount)}" for code, amount in entries)


def sort_key(text: str | None) -> str:
    """Accent and case insensitive key, so 'Árbol' sorts next to 'arbol'.

    The tilde of ñ is kept: it is a separate letter in Spanish, after n and before o.
    """
    normalized = unicodedata.normalize("NFKD", (text or "").strip())
    kept = []
    for ch in normalized:
        if unicodedata.combining(ch):
            # U+0303 sorts above every ASCII letter, so "ñ" lands between "nz" and "o"
            if ch == TILDE and kept and kept[-1] in "nN":
                kept.append(ch)
            continue
        kept.append(ch)
    return "".join(kept).casefold()


def format_simple_date(raw: str | None) -> str:
    """Render an issue date as dd/mm/yyyy without shifting time zones."""
    text = (raw or "").strip()
    if not text:
        return "—"

    m = _ISO_DATE.match(text)
    if m:
        try:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3))).strftime("%d/%m/%Y")
        except ValueError:
            return text

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).strftime("%d/%m/%Y")
    except ValueError:
        pass

    return text.split("T")[0] or text
