from datetime import datetime
from decimal import Context, Decimal, InvalidOperation, ROUND_HALF_UP
import math
from typing import Any, Optional

_DECIMAL_CONTEXT = Context(prec=40)

DISPLAY_FALLBACK = "—"


def to_number(value: Any, default: Optional[float] = None) -> Optional[float]:
    """Parse user or wire input into a finite float; accepts a decimal comma."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        n = float(value)
    else:
        text = str(value).strip().replace(",", ".")
        if not text:
            return default
        try:
            n = float(text)
        except ValueError:
            return default
    return n if math.isfinite(n) else default


def format_number(value: Any, min_digits: int = 2, max_digits: int = 8) -> str:
    """
    Grouped decimal string with between `min_digits` and `max_digits`
    fraction digits, e.g. 65000.5 -> "65,000.50".
    """
    n = to_number(value)
    if n is None:
        return DISPLAY_FALLBACK
    try:
        d = Decimal(str(n)).quantize(Decimal(10) ** -max_digits, rounding=ROUND_HALF_UP,
                                           context=_DECIMAL_CONTEXT)
    except InvalidOperation:
        return DISPLAY_FALLBACK
    s = f"{d:,.{max_digits}f}"
    if max_digits > min_digits:
        whole, frac = s.split(".")
        frac = frac.rstrip("0")
        if len(frac) < min_digits:
            frac = frac + "0" * (min_digits - len(frac))
        s = f"{whole}.{frac}" if frac else whole
    if s.startswith("-") and not any(c not in "-0.," for c in s):
        s = s[1:]
    return s


def format_signed(value: Any, min_digits: int = 2, max_digits: int = 8) -> str:
    n = to_number(value)
    if n is None:
        return DISPLAY_FALLBACK
    return f"{'+' if n >= 0 else ''}{format_number(n, min_digits, max_digits)}"


def format_usd(value: Any) -> str:
    """US dollar amount with 2-8 fraction digits: $1,234.50 / -$1,234.50."""
    n = to_number(value)
    if n is None:
        return DISPLAY_FALLBACK
    body = format_number(abs(n), 2, 8)
    return f"-${body}" if n < 0 and body.strip("0.,") else f"${body}"


def format_signed_usd(value: Any) -> str:
    n = to_number(value)
    if n is None:
        return DISPLAY_FALLBACK
    return f"+{format_usd(n)}" if n >= 0 else format_usd(n)


def format_percent(value: Any) -> str:
    n = to_number(value)
    return f"{n:.2f}" if n is not None else "0.00"


def format_timestamp(epoch_ms: Any) -> str:
    n = to_number(epoch_ms)
    if n is None:
        return DISPLAY_FALLBACK
    try:
        return datetime.fromtimestamp(n / 1000).strftime("%Y-%m-%d %H:%M:%S")
    except (OverflowError, OSError, ValueError):
        return DISPLAY_FALLBACK


def sign_class(value: Optional[float]) -> str:
    """CSS class for a signed amount; empty when the amount is unknown."""
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return ""
    return "text-success" if value >= 0 else "text-danger"


def clamp(text: str, width: int) -> str:
    """Truncate to `width` characters, ending with an ellipsis when cut."""
    return text[: width - 1] + "…" if len(text) > width else text
