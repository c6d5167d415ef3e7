"""
Payment ledger.

Payments live in the flat `payments` collection tagged with their client
and unit. Recording a payment advances the unit's due date in the same
transaction; deleting one is a compensating transaction that puts the unit
back where the payment found it.
"""

import logging
from datetime import date
from typing import Iterable, List, Optional

from dateutil.relativedelta import relativedelta

from .access import can_delete, visible
from .config import billing_settings
from .contract import advance_due_date, advance_expiration, payment_amount, remaining_balance
from .datatypes import (BulkDeleteResult, Client, PaymentForm, PaymentRecord, Unit, User,
                        FLAT_FEE)
from .errors import NotFoundError, TransactionError, ValidationError
from .fleet import get_client, get_unit
from .records import format_date, format_money, payment_from_doc, payment_to_doc, unit_from_doc
from .store import CLIENTS, PAYMENTS, UNITS, MemoryStore, Transaction, new_id

logger = logging.getLogger(__name__)


def validate_form(form: PaymentForm) -> PaymentForm:
    invoice = (form.invoice_number or '').strip()
    if not invoice:
        raise ValidationError("Invoice number is required")
    if form.payment_date is None:
        raise ValidationError("Payment date is required")
    methods = billing_settings()['payment_methods']
    if form.method not in methods:
        raise ValidationError(f"Payment method must be one of {', '.join(methods)}")
    try:
        months = int(form.months_paid)
    except (TypeError, ValueError):
        raise ValidationError("Months paid must be a whole number")
    if months < 1:
        raise ValidationError("Months paid must be at least 1")
    return PaymentForm(invoice_number=invoice, method=form.method,
                       payment_date=form.payment_date, months_paid=months)


def _clean_ids(ids: Iterable) -> List[str]:
    """Trimmed, non-empty, de-duplicated ids in their original order"""
    cleaned = [i.strip() for i in (ids or []) if isinstance(i, str) and i.strip()]
    return list(dict.fromkeys(cleaned))


def record_payment(tx: Transaction, client: Client, unit: Unit, form: PaymentForm) -> PaymentRecord:
    """
    Append one payment and advance its unit inside an open transaction.

    The unit's state before the payment is kept on the record so a later
    delete can restore it exactly.
    """
    if tx.query(PAYMENTS, unit_id=unit.id, invoice_number=form.invoice_number):
        raise ValidationError(
            f"Invoice {form.invoice_number} is already recorded for unit {unit.plate or unit.id}")

    new_due = advance_due_date(unit, form.months_paid, fallback=form.payment_date)
    amount = payment_amount(unit, form.months_paid)

    changes = {
        'last_payment_date': format_date(form.payment_date),
        'next_due_date': format_date(new_due),
    }
    if unit.contract_type == FLAT_FEE:
        changes['contract_balance'] = format_money(remaining_balance(unit) - amount)
    else:
        changes['expiration_date'] = format_date(
            advance_expiration(unit, form.months_paid, fallback=form.payment_date))

    payment = PaymentRecord(
        id=new_id(),
        client_id=client.id,
        unit_id=unit.id,
        invoice_number=form.invoice_number,
        amount=amount,
        payment_date=form.payment_date,
        method=form.method,
        months_paid=form.months_paid,
        unit_plate=unit.plate,
        client_name=client.name,
        owner_id=client.owner_id,
        previous_due_date=unit.next_due_date,
        new_due_date=new_due,
        previous_expiration_date=unit.expiration_date,
    )

    tx.update(UNITS, unit.id, changes)
    tx.set(PAYMENTS, payment.id, payment_to_doc(payment))
    return payment


def register_payment(store: MemoryStore, client_id: str, unit_ids: Iterable[str],
                     form: PaymentForm) -> List[PaymentRecord]:
    """
    Record one payment per selected unit of a client.

    All units are paid in a single transaction: if any unit is missing,
    belongs to another client or cannot be billed, nothing is written.
    """
    form = validate_form(form)
    client_id = (client_id or '').strip() if isinstance(client_id, str) else ''
    if not client_id:
        raise ValidationError("A client id is required")
    ids = _clean_ids(unit_ids)
    if not ids:
        raise ValidationError("No valid unit was selected")

    with store.transaction() as tx:
        client = get_client(tx, client_id)
        units = []
        for unit_id in ids:
            unit = get_unit(tx, unit_id)
            if unit.client_id != client.id:
                raise NotFoundError(f"Unit {unit_id} does not belong to client {client.name}")
            units.append(unit)

        payments = [record_payment(tx, client, unit, form) for unit in units]

    logger.info(f"Registered {len(payments)} payment(s) for client {client.id}, invoice {form.invoice_number}")
    return payments


def _reversal(tx: Transaction, unit: Unit, payment: PaymentRecord) -> dict:
    """
    Unit fields that undo `payment`.

    When the unit still shows the due date this payment produced, the
    snapshot taken at recording time is restored. Otherwise (a later
    payment moved it on, or the record was migrated without a snapshot)
    the months paid are subtracted from the current due date.
    """
    if payment.new_due_date is not None and unit.next_due_date == payment.new_due_date:
        due = payment.previous_due_date
        expiration = payment.previous_expiration_date
    else:
        if unit.next_due_date is None:
            raise ValidationError(
                f"Unit {unit.plate or unit.id} has no valid next due date, the payment cannot be reverted")
        back = relativedelta(months=payment.months_paid)
        due = unit.next_due_date - back
        expiration = unit.expiration_date - back if unit.expiration_date else None

    changes = {'next_due_date': format_date(due)}
    if unit.contract_type == FLAT_FEE:
        # a unit that never had a balance recorded keeps none
        if unit.contract_balance is not None:
            changes['contract_balance'] = format_money(unit.contract_balance + payment.amount)
    else:
        changes['expiration_date'] = format_date(expiration)

    remaining = [payment_from_doc(i, d) for i, d in tx.query(PAYMENTS, unit_id=unit.id)
                 if i != payment.id]
    dates = [p.payment_date for p in remaining if p.payment_date is not None]
    changes['last_payment_date'] = format_date(max(dates)) if dates else None
    return changes


def delete_payment(store: MemoryStore, payment_id: str) -> PaymentRecord:
    """Remove a payment and revert its unit; returns the deleted record"""
    with store.locked():
        with store.transaction() as tx:
            doc = tx.get(PAYMENTS, payment_id)
            if doc is None:
                raise NotFoundError("Payment not found")
            payment = payment_from_doc(payment_id, doc)

            unit_doc = tx.get(UNITS, payment.unit_id)
            if unit_doc is None:
                raise NotFoundError("The unit this payment belongs to could not be found")
            unit = unit_from_doc(payment.unit_id, unit_doc)

            changes = _reversal(tx, unit, payment)
            tx.update(UNITS, unit.id, changes)
            tx.delete(PAYMENTS, payment_id)

        # still under the lock: no other write can land between commit and check
        if store.get(PAYMENTS, payment_id) is not None:
            raise TransactionError(f"Payment {payment_id} is still present after delete")
        reverted = store.get(UNITS, payment.unit_id) or {}
        if reverted.get('next_due_date') != changes['next_due_date']:
            raise TransactionError(f"Unit {payment.unit_id} due date was not reverted")

    logger.info(f"Deleted payment {payment_id} (invoice {payment.invoice_number}); "
                f"unit {payment.unit_id} due date back to {changes['next_due_date']}")
    return payment


def _sorted(payments: List[PaymentRecord]) -> List[PaymentRecord]:
    return sorted(payments, key=lambda p: (p.payment_date or date.min, p.id), reverse=True)


def list_by_client(store: MemoryStore, client_id: str) -> List[PaymentRecord]:
    return _sorted([payment_from_doc(i, d) for i, d in store.query(PAYMENTS, client_id=client_id)])


def list_by_unit(store: MemoryStore, unit_id: str) -> List[PaymentRecord]:
    return _sorted([payment_from_doc(i, d) for i, d in store.query(PAYMENTS, unit_id=unit_id)])


def list_all(store: MemoryStore, user: Optional[User] = None) -> List[PaymentRecord]:
    """Every payment, newest first; limited to what `user` may see when given"""
    payments = [payment_from_doc(i, d) for i, d in store.query(PAYMENTS)]
    if user is not None:
        payments = visible(user, payments)
    return _sorted(payments)


def bulk_delete_units(store: MemoryStore, unit_ids: Iterable[str],
                      user: Optional[User] = None) -> BulkDeleteResult:
    """
    Delete units one transaction at a time, cascading to their payments.

    A unit that is missing, not deletable by `user`, or fails to commit is
    reported in `failed_ids`; the rest are still deleted.
    """
    result = BulkDeleteResult()

    for unit_id in _clean_ids(unit_ids):
        try:
            with store.transaction() as tx:
                unit = get_unit(tx, unit_id)
                if user is not None:
                    client_doc = tx.get(CLIENTS, unit.client_id) or {}
                    if not can_delete(user, client_doc.get('owner_id')):
                        raise ValidationError(f"Not allowed to delete unit {unit_id}")
                payments = tx.query(PAYMENTS, unit_id=unit_id)
                for payment_id, _ in payments:
                    tx.delete(PAYMENTS, payment_id)
                tx.delete(UNITS, unit_id)
            result.deleted_count += 1
            result.payments_removed += len(payments)
            logger.debug(f"Deleted unit {unit_id} and {len(payments)} payment(s)")
        except Exception as e:
            logger.warning(f"Could not delete unit {unit_id}: {e}")
            result.failed_ids.append(unit_id)

    logger.info(f"Bulk delete finished: {result.deleted_count} deleted, {len(result.failed_ids)} failed")
    return result
