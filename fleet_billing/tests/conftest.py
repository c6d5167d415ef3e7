"""
Shared fixtures: a small fleet of two clients and three units.

Billing "today" in these tests is 2025-03-10.
"""

import pytest
from datetime import date
from decimal import Decimal

from fleet_billing.config import ENV_VAR, reset_config_cache
from fleet_billing.datatypes import Client, Unit, FLAT_FEE, METERED
from fleet_billing.fleet import save_client, save_unit
from fleet_billing.store import MemoryStore

TODAY = date(2025, 3, 10)


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    """Every test starts from the packaged configuration"""
    monkeypatch.delenv(ENV_VAR, raising=False)
    reset_config_cache()
    yield
    reset_config_cache()


@pytest.fixture
def today():
    return TODAY


def seed_fleet(store):
    save_client(store, Client(id='c1', name='Transportes Andinos', owner_id='m1', phone='0991234567'))
    save_client(store, Client(id='c2', name='Logistica Sur', owner_id='m2'))

    # flat-fee, due today
    save_unit(store, Unit(id='u1', client_id='c1', plate='ABC-123', contract_type=FLAT_FEE,
                          plan='total-cc', total_contract_cost=Decimal('1200'), contract_months=12,
                          contract_start=date(2025, 1, 10), next_due_date=date(2025, 3, 10)))
    # metered, five days overdue
    save_unit(store, Unit(id='u2', client_id='c1', plate='XYZ-987', contract_type=METERED,
                          plan='estandar-sc', monthly_fee=Decimal('25.00'),
                          contract_start=date(2024, 12, 5), next_due_date=date(2025, 3, 5),
                          expiration_date=date(2025, 3, 5)))
    # metered, due in three days
    save_unit(store, Unit(id='u3', client_id='c2', plate='PQR-456', contract_type=METERED,
                          plan='avanzado-sc', monthly_fee=Decimal('30'),
                          next_due_date=date(2025, 3, 13)))
    return store


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def fleet_store(store):
    return seed_fleet(store)
