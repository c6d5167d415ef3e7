"""
Contract calculator.

Pure functions deriving what a unit costs per month and when it is next due.
Malformed numbers are coerced to zero, never raised.
"""

from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from dateutil.relativedelta import relativedelta

from .datatypes import ContractTerms, FLAT_FEE, Money, Unit

CENT = Decimal('0.01')


def as_money(value) -> Money:
    """Coerce anything number-like to Decimal, 0 otherwise"""
    if value is None or isinstance(value, bool):
        return Money(0)
    if isinstance(value, Decimal):
        return value if value.is_finite() else Money(0)
    try:
        result = Decimal(str(value).replace('$', '').strip())
    except (InvalidOperation, ValueError):
        return Money(0)
    return result if result.is_finite() else Money(0)


def term_months(unit: Unit) -> int:
    """Contract term in months, never below 1"""
    try:
        months = int(unit.contract_months or 0)
    except (TypeError, ValueError):
        months = 0
    return max(months, 1)


def monthly_cost(unit: Unit) -> Money:
    if unit.contract_type == FLAT_FEE:
        return as_money(unit.total_contract_cost) / Decimal(term_months(unit))
    return as_money(unit.monthly_fee)


def payment_amount(unit: Unit, months: int = 1) -> Money:
    """Amount charged for `months` months, rounded to cents"""
    return (monthly_cost(unit) * Decimal(months)).quantize(CENT, rounding=ROUND_HALF_UP)


def due_date_base(unit: Unit, fallback: Optional[date] = None) -> Optional[date]:
    return unit.next_due_date or unit.contract_start or fallback


def advance_due_date(unit: Unit, months: int = 1, fallback: Optional[date] = None) -> Optional[date]:
    """
    Next due date after paying `months` months.

    The current due date is the base; a unit that was never billed starts
    from its contract start, and failing that from `fallback`.
    """
    base = due_date_base(unit, fallback)
    if base is None:
        return None
    return base + relativedelta(months=months)


def advance_expiration(unit: Unit, months: int = 1, fallback: Optional[date] = None) -> Optional[date]:
    base = unit.expiration_date or due_date_base(unit, fallback)
    if base is None:
        return None
    return base + relativedelta(months=months)


def contract_terms(unit: Unit) -> ContractTerms:
    return ContractTerms(monthly_cost=monthly_cost(unit), next_due_date=unit.next_due_date)


def remaining_balance(unit: Unit) -> Money:
    """Outstanding flat-fee balance; the full contract cost until a payment lands"""
    if unit.contract_balance is not None:
        return as_money(unit.contract_balance)
    return as_money(unit.total_contract_cost)
