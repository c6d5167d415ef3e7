"""
Tests for the payment status engine.
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from fleet_billing.datatypes import (Client, Unit, METERED,
                                     STATUS_CURRENT, STATUS_OVERDUE, STATUS_WITHDRAWN)
from fleet_billing.fleet import load_clients, load_units
from fleet_billing.status import (classify, client_debt, client_status, days_overdue,
                                  days_until_due, overdue_amount, portfolio_summary)

TODAY = date(2025, 3, 10)


def unit(due, fee='25', withdrawn=False, client_id='c1', unit_id='u'):
    return Unit(id=unit_id, client_id=client_id, contract_type=METERED,
                monthly_fee=Decimal(fee), next_due_date=due, withdrawn=withdrawn)


class TestClassify:
    """Unit classification"""

    @pytest.mark.parametrize('offset,expected', [
        (-30, STATUS_OVERDUE),
        (-1, STATUS_OVERDUE),
        (0, STATUS_CURRENT),
        (1, STATUS_CURRENT),
        (90, STATUS_CURRENT),
    ])
    def test_overdue_iff_due_date_passed(self, offset, expected):
        assert classify(unit(TODAY + timedelta(days=offset)), TODAY) == expected

    def test_withdrawn_wins_over_dates(self):
        assert classify(unit(TODAY - timedelta(days=40), withdrawn=True), TODAY) == STATUS_WITHDRAWN
        assert classify(unit(TODAY, withdrawn=True), TODAY) == STATUS_WITHDRAWN

    def test_unit_without_due_date_is_current(self):
        assert classify(unit(None), TODAY) == STATUS_CURRENT
        assert days_until_due(unit(None), TODAY) is None
        assert days_overdue(unit(None), TODAY) == 0

    def test_day_counters(self):
        assert days_until_due(unit(date(2025, 3, 13)), TODAY) == 3
        assert days_until_due(unit(date(2025, 3, 5)), TODAY) == -5
        assert days_overdue(unit(date(2025, 3, 5)), TODAY) == 5
        assert days_overdue(unit(date(2025, 3, 13)), TODAY) == 0
        assert days_overdue(unit(date(2025, 3, 5), withdrawn=True), TODAY) == 0


class TestOverdueAmount:
    """Estimated amount owed"""

    def test_one_day_late_owes_one_month(self):
        assert overdue_amount(unit(date(2025, 3, 9)), TODAY) == Decimal('25')

    def test_each_started_period_adds_a_month(self):
        # 68 days late -> 3 periods of 30 days
        assert overdue_amount(unit(date(2025, 1, 1)), TODAY) == Decimal('75')

    def test_current_and_withdrawn_owe_nothing(self):
        assert overdue_amount(unit(TODAY), TODAY) == Decimal('0')
        assert overdue_amount(unit(date(2025, 1, 1), withdrawn=True), TODAY) == Decimal('0')

    def test_client_debt_sums_units(self):
        units = [unit(date(2025, 3, 5)), unit(date(2025, 1, 1), fee='10'), unit(TODAY)]
        assert client_debt(units, TODAY) == Decimal('55')


class TestClientStatus:
    """Rolling unit statuses up to the client"""

    def test_any_overdue_unit_makes_client_owe(self):
        client = Client(id='c1', name='A')
        units = [unit(TODAY), unit(date(2025, 3, 1)), unit(None)]
        assert client_status(client, units, TODAY) == STATUS_OVERDUE

    def test_all_current_is_current(self):
        client = Client(id='c1', name='A', status=STATUS_OVERDUE)
        assert client_status(client, [unit(TODAY), unit(date(2025, 4, 1))], TODAY) == STATUS_CURRENT

    def test_client_without_units_is_current(self):
        assert client_status(Client(id='c1', name='A'), [], TODAY) == STATUS_CURRENT

    def test_manually_withdrawn_client_stays_withdrawn(self):
        client = Client(id='c1', name='A', status=STATUS_WITHDRAWN)
        assert client_status(client, [unit(date(2025, 1, 1))], TODAY) == STATUS_WITHDRAWN

    def test_all_units_withdrawn(self):
        client = Client(id='c1', name='A')
        units = [unit(date(2025, 1, 1), withdrawn=True), unit(TODAY, withdrawn=True)]
        assert client_status(client, units, TODAY) == STATUS_WITHDRAWN

    def test_withdrawn_unit_does_not_hide_overdue_one(self):
        client = Client(id='c1', name='A')
        units = [unit(TODAY, withdrawn=True), unit(date(2025, 3, 1))]
        assert client_status(client, units, TODAY) == STATUS_OVERDUE


class TestPortfolioSummary:
    """Portfolio roll-up over the seeded fleet"""

    def test_summary(self, fleet_store, today):
        summary = portfolio_summary(load_clients(fleet_store), load_units(fleet_store), today)

        assert summary.total_clients == 2
        assert summary.total_units == 3
        assert summary.clients_by_status == {STATUS_OVERDUE: 1, STATUS_CURRENT: 1}
        # 1200/12 + 25 + 30
        assert summary.total_monthly_income == Decimal('155')
        # only u2 is late, five days
        assert summary.total_overdue_value == Decimal('25')

    def test_empty_portfolio(self, today):
        summary = portfolio_summary([], [], today)
        assert summary.total_clients == 0
        assert summary.total_monthly_income == Decimal('0')
        assert summary.clients_by_status == {}
