from datetime import date
from decimal import Decimal, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")


def today() -> date:
    """Wrapper for deterministic tests."""
    return date.today()


def quantize_amount(value: Decimal) -> Decimal:
    """Normalize money values to NUMERIC(12,2) precision."""
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def money(value: Decimal) -> str:
    """Decimal(1234.5) -> '1234.50' (no thousands separator)."""
    return str(quantize_amount(Decimal(value)))


def progress_percent(current: Decimal, target: Decimal) -> int:
    """Whole-number percent of target reached, rounded half up."""
    ratio = Decimal(current) / Decimal(target) * 100
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
