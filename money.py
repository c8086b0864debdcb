import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")

_GROUPED = re.compile(r"^-?\d{1,3}(,\d{3})+(\.\d*)?$")


def quantize(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(value: str, *, allow_negative: bool = False) -> Decimal:
    """Parse a user-entered dollar amount such as ``"1,200.50"`` or ``"$45"``.

    Commas are only accepted as thousands separators; more than two
    fractional digits is an error rather than a silent rounding.
    """
    clean = value.strip().replace("$", "").replace(" ", "")
    if "," in clean:
        if not _GROUPED.match(clean):
            raise ValueError("Invalid amount")
        clean = clean.replace(",", "")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    if amount.as_tuple().exponent < -2:
        raise ValueError("Amount cannot have more than 2 decimal places")
    amount = quantize(amount)
    if amount < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return amount


def format_amount(amount: Decimal, *, signed: bool = False) -> str:
    rounded = quantize(Decimal(amount))
    text = f"{abs(rounded):,.2f}"
    if rounded < 0:
        return f"-{text}"
    if signed:
        return f"+{text}"
    return text
