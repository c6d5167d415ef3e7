"""
One-time move of payments from the nested layout
(clients/{cid}/units/{uid}/payments) into the flat `payments` collection.

A payment is identified by its natural key (unit id, invoice number,
payment date). Migrated documents are stored under an id derived from that
key, and the flat ledger is checked for the key before every write, so the
migration can be stopped and re-run any number of times without creating
duplicates.
"""

import hashlib
import logging
from datetime import date
from typing import Dict, Optional, Set, Tuple

from .datatypes import LegacyPayment, MigrationResult, PaymentRecord
from .records import legacy_payment_from_doc, payment_from_doc, payment_to_doc
from .store import CLIENTS, PAYMENTS, UNITS, MemoryStore, legacy_units_path

logger = logging.getLogger(__name__)

NaturalKey = Tuple[str, str, str]


def natural_key(unit_id: str, invoice_number: str, payment_date: date) -> NaturalKey:
    return (unit_id.strip(), invoice_number.strip(), payment_date.isoformat())


def key_to_id(key: NaturalKey) -> str:
    """Stable document id for a natural key"""
    return hashlib.sha1('|'.join(key).encode('utf-8')).hexdigest()[:20]


def _existing_keys(store: MemoryStore) -> Set[NaturalKey]:
    keys = set()
    for doc_id, doc in store.query(PAYMENTS):
        payment = payment_from_doc(doc_id, doc)
        if payment.unit_id and payment.invoice_number and payment.payment_date:
            keys.add(natural_key(payment.unit_id, payment.invoice_number, payment.payment_date))
    return keys


def _is_nested(path: str) -> bool:
    parts = path.split('/')
    return len(parts) == 5 and parts[0] == CLIENTS and parts[2] == UNITS


def _unit_plate(store: MemoryStore, legacy: LegacyPayment, cache: Dict[str, str]) -> str:
    if legacy.unit_plate:
        return legacy.unit_plate
    if legacy.unit_id not in cache:
        doc = (store.get(UNITS, legacy.unit_id)
               or store.get(legacy_units_path(legacy.client_id), legacy.unit_id)
               or {})
        # nested unit documents still use the old field name
        cache[legacy.unit_id] = str(doc.get('plate') or doc.get('placa') or '')
    return cache[legacy.unit_id]


def _client_info(store: MemoryStore, client_id: str, cache: Dict[str, Tuple[str, Optional[str]]]):
    if client_id not in cache:
        doc = store.get(CLIENTS, client_id) or {}
        name = doc.get('name') or doc.get('nomSujeto') or ''
        owner = doc.get('owner_id') or doc.get('ownerId')
        cache[client_id] = (str(name), str(owner) if owner else None)
    return cache[client_id]


def migrate_nested_payments(store: MemoryStore) -> MigrationResult:
    """
    Copy every nested legacy payment into the flat ledger.

    Malformed records are logged and counted, never fatal. Running this
    twice leaves the ledger exactly as one run does.
    """
    logger.info("Starting nested payment migration...")

    existing = _existing_keys(store)
    logger.debug(f"Found {len(existing)} payments already in the flat ledger")

    migrated = skipped = failed = 0
    plates: Dict[str, str] = {}
    clients: Dict[str, Tuple[str, Optional[str]]] = {}

    for path, doc_id, doc in store.collection_group(PAYMENTS):
        if not _is_nested(path):
            continue

        try:
            legacy = legacy_payment_from_doc(path, doc_id, doc)
        except ValueError as e:
            logger.warning(f"Skipping malformed legacy payment at {path}/{doc_id}: {e}")
            failed += 1
            continue

        key = natural_key(legacy.unit_id, legacy.invoice_number, legacy.payment_date)
        if key in existing:
            logger.debug(f"Payment {key} already migrated")
            skipped += 1
            continue

        client_name, owner_id = _client_info(store, legacy.client_id, clients)
        payment = PaymentRecord(
            id=key_to_id(key),
            client_id=legacy.client_id,
            unit_id=legacy.unit_id,
            invoice_number=legacy.invoice_number,
            amount=legacy.amount,
            payment_date=legacy.payment_date,
            method=legacy.method,
            months_paid=legacy.months_paid,
            unit_plate=_unit_plate(store, legacy, plates),
            client_name=legacy.client_name or client_name,
            owner_id=legacy.owner_id or owner_id,
        )

        try:
            with store.transaction() as tx:
                if tx.get(PAYMENTS, payment.id) is not None:
                    # written by a concurrent or interrupted run
                    existing.add(key)
                    skipped += 1
                    continue
                tx.set(PAYMENTS, payment.id, payment_to_doc(payment))
        except Exception as e:
            logger.warning(f"Could not migrate payment {path}/{doc_id}: {e}")
            failed += 1
            continue

        existing.add(key)
        migrated += 1
        logger.debug(f"Migrated payment {path}/{doc_id} → payments/{payment.id}")

    message = (f"{migrated} payment(s) migrated, {skipped} already present, "
               f"{failed} could not be migrated")
    logger.info(f"Migration complete: {message}")
    return MigrationResult(success=True, migrated_count=migrated, skipped_count=skipped,
                           failed_count=failed, message=message)


def backfill_owner_ids(store: MemoryStore) -> int:
    """Tag flat payments that have no owner with their client's owner"""
    owners = {}
    for client_id, doc in store.query(CLIENTS):
        if doc.get('owner_id'):
            owners[client_id] = doc['owner_id']

    updated = 0
    with store.transaction() as tx:
        for payment_id, doc in tx.query(PAYMENTS):
            if doc.get('owner_id'):
                continue
            owner = owners.get(doc.get('client_id'))
            if owner:
                tx.update(PAYMENTS, payment_id, {'owner_id': owner})
                updated += 1

    logger.info(f"Backfilled owner id on {updated} payment(s)")
    return updated
