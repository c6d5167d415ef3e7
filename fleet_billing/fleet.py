import logging
from datetime import date
from typing import Dict, List, Optional

from .contract import as_money
from .datatypes import Client, Unit, FLAT_FEE, METERED, PLAN_TIERS
from .errors import NotFoundError, ValidationError
from .records import (client_from_doc, client_to_doc, unit_from_doc, unit_to_doc,
                      format_money)
from .status import client_debt, client_status, group_units_by_client
from .store import CLIENTS, PAYMENTS, UNITS, MemoryStore, Transaction, new_id

logger = logging.getLogger(__name__)


def get_client(source, client_id: str) -> Client:
    """Load a client from a store or an open transaction"""
    doc = source.get(CLIENTS, client_id)
    if doc is None:
        raise NotFoundError(f"Client {client_id} not found")
    return client_from_doc(client_id, doc)


def get_unit(source, unit_id: str) -> Unit:
    doc = source.get(UNITS, unit_id)
    if doc is None:
        raise NotFoundError(f"Unit {unit_id} not found")
    return unit_from_doc(unit_id, doc)


def load_clients(store: MemoryStore) -> List[Client]:
    return [client_from_doc(i, d) for i, d in store.query(CLIENTS)]


def load_units(store: MemoryStore, client_id: Optional[str] = None) -> List[Unit]:
    docs = store.query(UNITS, client_id=client_id) if client_id else store.query(UNITS)
    return [unit_from_doc(i, d) for i, d in docs]


def save_client(store: MemoryStore, client: Client) -> Client:
    if not client.name.strip():
        raise ValidationError("Client name is required")
    if not client.id:
        client.id = new_id()
    with store.transaction() as tx:
        tx.set(CLIENTS, client.id, client_to_doc(client))
    logger.info(f"Saved client {client.id} ({client.name})")
    return client


def _validate_unit(unit: Unit) -> None:
    if not unit.plate.strip():
        raise ValidationError("Plate is required")
    if unit.contract_type not in (FLAT_FEE, METERED):
        raise ValidationError(f"Unknown contract type {unit.contract_type!r}")
    if unit.plan is not None and unit.plan not in PLAN_TIERS:
        raise ValidationError(f"Unknown plan {unit.plan!r}")
    if unit.contract_type == FLAT_FEE and as_money(unit.total_contract_cost) < 0:
        raise ValidationError("Contract cost cannot be negative")
    if unit.contract_type == METERED and as_money(unit.monthly_fee) < 0:
        raise ValidationError("Monthly fee cannot be negative")


def save_unit(store: MemoryStore, unit: Unit) -> Unit:
    """Create or replace a unit; the owning client must exist"""
    _validate_unit(unit)
    if not unit.id:
        unit.id = new_id()
    with store.transaction() as tx:
        get_client(tx, unit.client_id)
        tx.set(UNITS, unit.id, unit_to_doc(unit))
    logger.info(f"Saved unit {unit.id} ({unit.plate}) for client {unit.client_id}")
    return unit


def set_unit_withdrawn(store: MemoryStore, unit_id: str, withdrawn: bool = True) -> Unit:
    with store.transaction() as tx:
        unit = get_unit(tx, unit_id)
        unit.withdrawn = withdrawn
        tx.update(UNITS, unit_id, {'withdrawn': withdrawn})
    logger.info(f"Unit {unit_id} {'withdrawn' if withdrawn else 'reactivated'}")
    return unit


def _delete_client_tree(tx: Transaction, client_id: str) -> Dict[str, int]:
    units = tx.query(UNITS, client_id=client_id)
    payments = tx.query(PAYMENTS, client_id=client_id)
    for unit_id, _ in units:
        tx.delete(UNITS, unit_id)
    for payment_id, _ in payments:
        tx.delete(PAYMENTS, payment_id)
    tx.delete(CLIENTS, client_id)
    return {'units': len(units), 'payments': len(payments)}


def delete_client(store: MemoryStore, client_id: str) -> Dict[str, int]:
    """Remove a client together with its units and their payments"""
    with store.transaction() as tx:
        get_client(tx, client_id)
        removed = _delete_client_tree(tx, client_id)
    logger.info(f"Deleted client {client_id}: {removed['units']} unit(s), {removed['payments']} payment(s)")
    return removed


def refresh_client_statuses(store: MemoryStore, today: date) -> Dict[str, str]:
    """
    Write the derived status and debt back onto every client.

    Returns client id → status for all clients.
    """
    clients = load_clients(store)
    by_client = group_units_by_client(load_units(store))

    statuses = {}
    changed = 0
    with store.transaction() as tx:
        for client in clients:
            units = by_client.get(client.id, [])
            status = client_status(client, units, today)
            debt = client_debt(units, today)
            statuses[client.id] = status
            if status != client.status or debt != client.debt:
                tx.update(CLIENTS, client.id, {'status': status, 'debt': format_money(debt)})
                changed += 1

    logger.info(f"Refreshed client statuses: {changed} of {len(clients)} changed")
    return statuses
