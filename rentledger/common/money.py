"""
Integer money helpers.

All amounts are integers in the currency's minor unit. Ratios are computed
with integer arithmetic so results are identical on every host.
"""


def round_half_up_ratio(numerator: int, denominator: int) -> int:
    """
    numerator / denominator rounded to the nearest integer, halves away from zero.

    Example:
        >>> round_half_up_ratio(500000 * 5, 30)
        83333
        >>> round_half_up_ratio(5, 2)
        3
        >>> round_half_up_ratio(-5, 2)
        -3
    """
    if denominator == 0:
        raise ZeroDivisionError("ratio denominator is zero")
    if denominator < 0:
        numerator, denominator = -numerator, -denominator

    sign = -1 if numerator < 0 else 1
    quotient = (2 * abs(numerator) + denominator) // (2 * denominator)
    return sign * quotient


def scale_amount(amount: int, part: int, whole: int) -> int:
    """
    amount * part / whole, rounded half up at the minor unit.

    Used for proration (days covered / days in cycle) and for the
    proportional late fee (balance / monthly rent).
    """
    return round_half_up_ratio(amount * part, whole)


def format_amount(amount: int, currency: str = 'UGX') -> str:
    """Human-readable amount, e.g. 'UGX 83,333'."""
    sign = '-' if amount < 0 else ''
    return f"{sign}{currency} {abs(amount):,}"
