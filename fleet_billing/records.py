import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import pandas as pd

from .contract import as_money
from .datatypes import (Client, InstallationOrder, LegacyPayment, Money, PaymentRecord,
                        Unit, WorkOrder, METERED, STATUS_CURRENT)
from .store import Document

logger = logging.getLogger(__name__)

# Field names used by documents in the old nested payments layout
LEGACY_FIELDS = {
    'invoice_number': 'numeroFactura',
    'amount': 'monto',
    'payment_date': 'fechaPago',
    'method': 'formaPago',
    'months_paid': 'mesesPagados',
    'unit_plate': 'unitPlaca',
    'client_name': 'clientName',
    'owner_id': 'ownerId',
    'client_id': 'clientId',
    'unit_id': 'unitId',
}


def _missing(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ''
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _parse_date(value) -> Optional[date]:
    """Parse an ISO date (or timestamp) from a document, None when empty or invalid"""
    if _missing(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    try:
        return datetime.strptime(text[:10], '%Y-%m-%d').date()
    except ValueError:
        try:
            return datetime.strptime(text, '%m/%d/%Y').date()
        except ValueError:
            logger.warning(f"Could not parse date: {value}")
            return None


def _parse_money(value) -> Money:
    if _missing(value):
        return Money(0)
    return as_money(value)


def _parse_optional_money(value) -> Optional[Money]:
    if _missing(value):
        return None
    return as_money(value)


def _parse_int(value, default: Optional[int] = None) -> Optional[int]:
    if _missing(value):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        logger.warning(f"Could not parse integer: {value}")
        return default


def _parse_flag(value) -> bool:
    if _missing(value):
        return False
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes', 'si', 'sí')
    return bool(value)


def _parse_text(value, default: str = '') -> str:
    return default if _missing(value) else str(value).strip()


def _parse_optional_text(value) -> Optional[str]:
    return None if _missing(value) else str(value).strip()


def format_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def format_money(amount: Optional[Decimal]) -> Optional[str]:
    if amount is None:
        return None
    return f'{amount:.2f}'


# --- Clients -----------------------------------------------------------------

def client_from_doc(doc_id: str, doc: Document) -> Client:
    return Client(
        id=doc_id,
        name=_parse_text(doc.get('name')),
        owner_id=_parse_optional_text(doc.get('owner_id')),
        phone=_parse_optional_text(doc.get('phone')),
        status=_parse_text(doc.get('status'), STATUS_CURRENT),
        debt=_parse_money(doc.get('debt')),
    )


def client_to_doc(client: Client) -> Document:
    return {
        'name': client.name,
        'owner_id': client.owner_id,
        'phone': client.phone,
        'status': client.status,
        'debt': format_money(client.debt),
    }


# --- Units -------------------------------------------------------------------

def unit_from_doc(doc_id: str, doc: Document) -> Unit:
    return Unit(
        id=doc_id,
        client_id=_parse_text(doc.get('client_id')),
        plate=_parse_text(doc.get('plate')),
        contract_type=_parse_text(doc.get('contract_type'), METERED),
        plan=_parse_optional_text(doc.get('plan')),
        total_contract_cost=_parse_money(doc.get('total_contract_cost')),
        contract_months=_parse_int(doc.get('contract_months')),
        monthly_fee=_parse_money(doc.get('monthly_fee')),
        contract_start=_parse_date(doc.get('contract_start')),
        next_due_date=_parse_date(doc.get('next_due_date')),
        last_payment_date=_parse_date(doc.get('last_payment_date')),
        expiration_date=_parse_date(doc.get('expiration_date')),
        contract_balance=_parse_optional_money(doc.get('contract_balance')),
        cutoff_days=_parse_int(doc.get('cutoff_days')),
        withdrawn=_parse_flag(doc.get('withdrawn')),
        device_id=_parse_optional_text(doc.get('device_id')),
        device_active=_parse_flag(doc.get('device_active')),
    )


def unit_to_doc(unit: Unit) -> Document:
    return {
        'client_id': unit.client_id,
        'plate': unit.plate,
        'contract_type': unit.contract_type,
        'plan': unit.plan,
        'total_contract_cost': format_money(unit.total_contract_cost),
        'contract_months': unit.contract_months,
        'monthly_fee': format_money(unit.monthly_fee),
        'contract_start': format_date(unit.contract_start),
        'next_due_date': format_date(unit.next_due_date),
        'last_payment_date': format_date(unit.last_payment_date),
        'expiration_date': format_date(unit.expiration_date),
        'contract_balance': format_money(unit.contract_balance),
        'cutoff_days': unit.cutoff_days,
        'withdrawn': unit.withdrawn,
        'device_id': unit.device_id,
        'device_active': unit.device_active,
    }


# --- Payments ----------------------------------------------------------------

def payment_from_doc(doc_id: str, doc: Document) -> PaymentRecord:
    return PaymentRecord(
        id=doc_id,
        client_id=_parse_text(doc.get('client_id')),
        unit_id=_parse_text(doc.get('unit_id')),
        invoice_number=_parse_text(doc.get('invoice_number')),
        amount=_parse_money(doc.get('amount')),
        payment_date=_parse_date(doc.get('payment_date')),
        method=_parse_text(doc.get('method')),
        months_paid=_parse_int(doc.get('months_paid'), 1),
        unit_plate=_parse_text(doc.get('unit_plate')),
        client_name=_parse_text(doc.get('client_name')),
        owner_id=_parse_optional_text(doc.get('owner_id')),
        previous_due_date=_parse_date(doc.get('previous_due_date')),
        new_due_date=_parse_date(doc.get('new_due_date')),
        previous_expiration_date=_parse_date(doc.get('previous_expiration_date')),
    )


def payment_to_doc(payment: PaymentRecord) -> Document:
    return {
        'client_id': payment.client_id,
        'unit_id': payment.unit_id,
        'invoice_number': payment.invoice_number,
        'amount': format_money(payment.amount),
        'payment_date': format_date(payment.payment_date),
        'method': payment.method,
        'months_paid': payment.months_paid,
        'unit_plate': payment.unit_plate,
        'client_name': payment.client_name,
        'owner_id': payment.owner_id,
        'previous_due_date': format_date(payment.previous_due_date),
        'new_due_date': format_date(payment.new_due_date),
        'previous_expiration_date': format_date(payment.previous_expiration_date),
    }


def legacy_payment_from_doc(path: str, doc_id: str, doc: Document) -> LegacyPayment:
    """
    Read a payment from clients/{cid}/units/{uid}/payments/{id}.

    Owner ids come from the path; fields stored on the document are only a
    fallback. Raises ValueError when the record cannot be identified.
    """
    parts = path.split('/')
    client_id = parts[1] if len(parts) == 5 else _parse_text(doc.get(LEGACY_FIELDS['client_id']))
    unit_id = parts[3] if len(parts) == 5 else _parse_text(doc.get(LEGACY_FIELDS['unit_id']))

    def field(name):
        return doc.get(LEGACY_FIELDS[name], doc.get(name))

    invoice = _parse_text(field('invoice_number'))
    payment_date = _parse_date(field('payment_date'))
    if not client_id or not unit_id:
        raise ValueError(f"payment {doc_id} has no owning client/unit")
    if not invoice:
        raise ValueError(f"payment {doc_id} has no invoice number")
    if payment_date is None:
        raise ValueError(f"payment {doc_id} has no valid payment date")

    return LegacyPayment(
        id=doc_id,
        client_id=client_id,
        unit_id=unit_id,
        invoice_number=invoice,
        amount=_parse_money(field('amount')),
        payment_date=payment_date,
        method=_parse_text(field('method')),
        months_paid=max(_parse_int(field('months_paid'), 1) or 1, 1),
        unit_plate=_parse_text(field('unit_plate')),
        client_name=_parse_text(field('client_name')),
        owner_id=_parse_optional_text(field('owner_id')),
    )


# --- Orders ------------------------------------------------------------------

def work_order_from_doc(doc_id: str, doc: Document) -> WorkOrder:
    return WorkOrder(
        id=doc_id,
        owner_id=_parse_optional_text(doc.get('owner_id')),
        description=_parse_text(doc.get('description')),
        status=_parse_text(doc.get('status'), 'pendiente'),
        client_id=_parse_optional_text(doc.get('client_id')),
        created=_parse_date(doc.get('created')),
    )


def work_order_to_doc(order: WorkOrder) -> Document:
    return {
        'owner_id': order.owner_id,
        'description': order.description,
        'status': order.status,
        'client_id': order.client_id,
        'created': format_date(order.created),
    }


def installation_order_from_doc(doc_id: str, doc: Document) -> InstallationOrder:
    return InstallationOrder(
        id=doc_id,
        client_id=_parse_text(doc.get('client_id')),
        owner_id=_parse_optional_text(doc.get('owner_id')),
        technician_id=_parse_optional_text(doc.get('technician_id')),
        plate=_parse_text(doc.get('plate')),
        status=_parse_text(doc.get('status'), 'pendiente'),
        scheduled_date=_parse_date(doc.get('scheduled_date')),
    )


def installation_order_to_doc(order: InstallationOrder) -> Document:
    return {
        'client_id': order.client_id,
        'owner_id': order.owner_id,
        'technician_id': order.technician_id,
        'plate': order.plate,
        'status': order.status,
        'scheduled_date': format_date(order.scheduled_date),
    }
