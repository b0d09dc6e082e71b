from decimal import ROUND_HALF_DOWN, ROUND_HALF_UP, Decimal

ZERO = Decimal("0.00")


def round_money(value: Decimal | float | int | str | None) -> Decimal:
    """
    Round monetary value to 2 decimal places using ROUND_HALF_UP.

    None is treated as zero (SUM over no rows).

    Examples:
        >>> round_money(10.125)
        Decimal('10.13')
        >>> round_money("10.115")
        Decimal('10.12')
        >>> round_money(None)
        Decimal('0.00')
    """
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if value < 0:
        return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_DOWN)
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def outstanding_of(amount_due: Decimal | None, amount_paid: Decimal | None) -> Decimal:
    """Outstanding balance, clamped at zero: max(due - paid, 0)."""
    balance = round_money(amount_due) - round_money(amount_paid)
    return balance if balance > 0 else ZERO


def payment_status_for(amount_due: Decimal, amount_paid: Decimal) -> str:
    """pending / partial / paid for a running total against what is due."""
    if round_money(amount_paid) >= round_money(amount_due):
        return "paid"
    if round_money(amount_paid) > 0:
        return "partial"
    return "pending"
