"""
Currency Support Module

Handles ISO 4217 currency codes and proper Decimal precision for financial
calculations. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .errors import BankingError, ErrorKind

# Set global decimal context for financial precision
getcontext().prec = 28  # High precision for financial calculations


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    USD = ("USD", 2)  # US Dollar, 2 decimal places
    EUR = ("EUR", 2)  # Euro, 2 decimal places
    GBP = ("GBP", 2)  # British Pound, 2 decimal places
    JPY = ("JPY", 0)  # Japanese Yen, 0 decimal places
    CAD = ("CAD", 2)  # Canadian Dollar, 2 decimal places
    THB = ("THB", 2)  # Thai Baht, 2 decimal places

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def minor_unit(self) -> Decimal:
        """Smallest representable amount, e.g. 0.01 for USD"""
        return Decimal(1).scaleb(-self.precision)

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Look up a currency by its ISO code"""
        try:
            return cls[code.upper()]
        except (KeyError, AttributeError):
            raise BankingError(ErrorKind.VALIDATION_ERROR, f"Unsupported currency: {code}")


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    All monetary values MUST use this class or raw Decimal.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))

        # Round to currency precision
        rounded = self.amount.quantize(self.currency.minor_unit, rounding=ROUND_HALF_UP)
        object.__setattr__(self, 'amount', rounded)

    def to_string(self) -> str:
        """Format for display"""
        if self.currency.precision == 0:
            return f"{self.currency.code} {self.amount:,.0f}"
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"


def format_amount(amount: Decimal, currency: Currency) -> str:
    """Render an amount as a plain decimal string at currency precision"""
    return str(amount.quantize(currency.minor_unit, rounding=ROUND_HALF_UP))


def parse_amount(value: Any, currency: Currency,
                 max_amount: Optional[Decimal] = None) -> Decimal:
    """
    Validate a transfer amount without rounding it.

    Args:
        value: Decimal, int, str or float supplied by the caller
        currency: Currency whose minor unit bounds the precision
        max_amount: Optional upper bound (inclusive)

    Returns:
        The amount as an exact Decimal

    Raises:
        BankingError(INVALID_AMOUNT): zero, negative, NaN, infinite,
            non-numeric, over-precision or above max_amount
    """
    if isinstance(value, bool) or value is None:
        raise BankingError(ErrorKind.INVALID_AMOUNT, "Amount must be a number")

    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise BankingError(ErrorKind.INVALID_AMOUNT, f"Amount is not a number: {value!r}")

    if not amount.is_finite():
        raise BankingError(ErrorKind.INVALID_AMOUNT, "Amount must be finite")

    if amount <= 0:
        raise BankingError(ErrorKind.INVALID_AMOUNT, "Amount must be positive")

    if max_amount is not None and amount > max_amount:
        raise BankingError(
            ErrorKind.INVALID_AMOUNT,
            f"Amount exceeds the maximum of {format_amount(max_amount, currency)} {currency.code}"
        )

    try:
        exact = amount == amount.quantize(currency.minor_unit)
    except InvalidOperation:
        raise BankingError(ErrorKind.INVALID_AMOUNT, "Amount is too large")
    if not exact:
        raise BankingError(
            ErrorKind.INVALID_AMOUNT,
            f"Amount has more than {currency.precision} decimal places"
        )

    return amount
