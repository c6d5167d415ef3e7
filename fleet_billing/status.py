"""
Payment status engine.

Classifies units and clients as current, overdue or withdrawn and rolls up
what the portfolio is owed. Everything here is read-only.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from .config import billing_settings
from .contract import monthly_cost
from .datatypes import (Client, Money, PortfolioSummary, Unit,
                        STATUS_CURRENT, STATUS_OVERDUE, STATUS_WITHDRAWN)


def classify(unit: Unit, today: date) -> str:
    if unit.withdrawn:
        return STATUS_WITHDRAWN
    if unit.next_due_date is not None and unit.next_due_date < today:
        return STATUS_OVERDUE
    return STATUS_CURRENT


def days_until_due(unit: Unit, today: date) -> Optional[int]:
    """Days left before the due date (negative once it has passed)"""
    if unit.next_due_date is None:
        return None
    return (unit.next_due_date - today).days


def days_overdue(unit: Unit, today: date) -> int:
    if classify(unit, today) != STATUS_OVERDUE:
        return 0
    return (today - unit.next_due_date).days


def overdue_amount(unit: Unit, today: date, period_days: Optional[int] = None) -> Money:
    """
    Estimated amount owed by an overdue unit.

    Each started overdue period (30 days by default) counts one monthly
    charge, so a unit one day late already owes one month.
    """
    late = days_overdue(unit, today)
    if late <= 0:
        return Money(0)
    period = period_days or billing_settings()['overdue_period_days']
    periods = late // period + 1
    return monthly_cost(unit) * Decimal(periods)


def client_status(client: Client, units: Iterable[Unit], today: date) -> str:
    """
    Roll unit statuses up to the client.

    A client marked withdrawn stays withdrawn. Otherwise any overdue unit
    makes the client overdue, and a client whose units are all withdrawn
    is withdrawn.
    """
    if client.status == STATUS_WITHDRAWN:
        return STATUS_WITHDRAWN

    statuses = [classify(u, today) for u in units]
    if not statuses:
        return STATUS_CURRENT
    if all(s == STATUS_WITHDRAWN for s in statuses):
        return STATUS_WITHDRAWN
    if STATUS_OVERDUE in statuses:
        return STATUS_OVERDUE
    return STATUS_CURRENT


def client_debt(units: Iterable[Unit], today: date) -> Money:
    return sum((overdue_amount(u, today) for u in units), Money(0))


def group_units_by_client(units: Iterable[Unit]) -> Dict[str, List[Unit]]:
    grouped = defaultdict(list)
    for unit in units:
        grouped[unit.client_id].append(unit)
    return grouped


def portfolio_summary(clients: List[Client], units: List[Unit], today: date) -> PortfolioSummary:
    by_client = group_units_by_client(units)

    clients_by_status: Dict[str, int] = {}
    total_overdue = Money(0)
    for client in clients:
        owned = by_client.get(client.id, [])
        status = client_status(client, owned, today)
        clients_by_status[status] = clients_by_status.get(status, 0) + 1
        total_overdue += client_debt(owned, today)

    income = sum((monthly_cost(u) for u in units if not u.withdrawn), Money(0))

    return PortfolioSummary(
        total_clients=len(clients),
        total_units=len(units),
        total_monthly_income=income,
        total_overdue_value=total_overdue,
        clients_by_status=clients_by_status,
    )
