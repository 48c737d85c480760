from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from pydantic import BaseModel

# Stock quantities are stored as Numeric(14, 3)
QUANTITY_STEP = Decimal("0.001")


def normalize_number(value, default=None):
    """Accept numbers and numeric strings, including "1.234,56" style input."""
    if value is None:
        return default
    if isinstance(value, (int, float, Decimal)):
        return value
    raw = str(value).strip()
    if not raw:
        return default
    if "," in raw:
        raw = raw.replace(".", "").replace(",", ".")
    return raw


def normalize_quantity(value, default=Decimal("0")):
    """Parse a quantity and round it to the three decimals the ledger keeps."""
    value = normalize_number(value, default=default)
    try:
        return Decimal(str(value)).quantize(QUANTITY_STEP, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Invalid quantity: {value!r}")


def normalize_text(value):
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class OperationResult(BaseModel):
    success: bool
    message: str
    error: str | None = None  # LedgerError.code when success is False
