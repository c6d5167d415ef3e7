"""
Operator-facing actions.

Each action returns an ActionResult and never raises: billing errors
become their message, anything unexpected becomes a generic failure.
"""

import functools
import logging
from datetime import date
from typing import Iterable, Optional

from . import ledger, migration, scheduled
from .config import notification_settings
from .datatypes import ActionResult, PaymentForm, User
from .errors import BillingError
from .notifier import Notifier
from .store import MemoryStore

logger = logging.getLogger(__name__)


def _boundary(label: str):
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> ActionResult:
            try:
                return func(*args, **kwargs)
            except BillingError as e:
                logger.warning(f"{label} failed: {e}")
                return ActionResult(success=False, message=str(e))
            except Exception as e:
                logger.exception(f"Unexpected error during {label}")
                return ActionResult(success=False, message=f"Unexpected error during {label}: {e}")
        return wrapper
    return decorator


def _notify_received(notifier: Notifier, payments) -> int:
    """Send payment_received for each payment; failures are only logged"""
    template = notification_settings()['templates']['received']
    sent = 0
    for payment in payments:
        try:
            if notifier.send(template, payment.client_id, payment.unit_id):
                sent += 1
        except Exception as e:
            logger.warning(f"Could not send {template} for unit {payment.unit_id}: {e}")
    return sent


@_boundary('payment registration')
def register_payment(store: MemoryStore, client_id: str, unit_ids: Iterable[str], form: PaymentForm,
                     notifier: Optional[Notifier] = None) -> ActionResult:
    payments = ledger.register_payment(store, client_id, unit_ids, form)
    details = {'payment_ids': [p.id for p in payments]}
    if notifier is not None:
        details['notified'] = _notify_received(notifier, payments)
    return ActionResult(success=True, message=f"{len(payments)} payment(s) registered", details=details)


@_boundary('payment deletion')
def delete_payment(store: MemoryStore, payment_id: str) -> ActionResult:
    payment = ledger.delete_payment(store, payment_id)
    return ActionResult(success=True,
                        message="Payment deleted and unit status reverted",
                        details={'unit_id': payment.unit_id})


@_boundary('bulk unit deletion')
def bulk_delete_units(store: MemoryStore, unit_ids: Iterable[str], user: Optional[User] = None) -> ActionResult:
    result = ledger.bulk_delete_units(store, unit_ids, user)
    details = {'deleted_count': result.deleted_count, 'failed_ids': result.failed_ids,
               'payments_removed': result.payments_removed}
    if result.deleted_count == 0:
        return ActionResult(success=False, message="None of the selected units could be deleted",
                            details=details)
    message = f"{result.deleted_count} unit(s) deleted"
    if result.failed_ids:
        message += f", {len(result.failed_ids)} failed: {', '.join(result.failed_ids)}"
    return ActionResult(success=True, message=message, details=details)


@_boundary('payment migration')
def migrate_nested_payments(store: MemoryStore) -> ActionResult:
    result = migration.migrate_nested_payments(store)
    return ActionResult(success=result.success, message=result.message,
                        details={'migrated_count': result.migrated_count,
                                 'skipped_count': result.skipped_count,
                                 'failed_count': result.failed_count})


@_boundary('owner backfill')
def backfill_payment_owner_ids(store: MemoryStore) -> ActionResult:
    updated = migration.backfill_owner_ids(store)
    if updated == 0:
        return ActionResult(success=True, message="All payments already carry an owner")
    return ActionResult(success=True, message=f"{updated} payment(s) tagged with their owner",
                        details={'updated': updated})


def _sweep_message(result) -> str:
    if result.already_ran:
        return f"Notices for {result.sweep_date} were already sent"
    if result.sent_total == 0 and not result.failed_unit_ids:
        return "No unit needed a notice today"
    return f"{result.sent_total} notice(s) sent, {len(result.failed_unit_ids)} failed"


@_boundary('notice sweep')
def send_reminders_now(store: MemoryStore, notifier: Notifier, today: Optional[date] = None) -> ActionResult:
    """Manual sweep; runs even if today's scheduled sweep already happened"""
    result = scheduled.run_sweep(store, notifier, today=today, force=True)
    return ActionResult(success=True, message=_sweep_message(result),
                        details={'sent': result.sent, 'failed_unit_ids': result.failed_unit_ids})


@_boundary('daily sweep')
def daily_sweep(store: MemoryStore, notifier: Notifier, today: Optional[date] = None) -> ActionResult:
    """Entry point for the once-a-day scheduled trigger"""
    result = scheduled.run_sweep(store, notifier, today=today)
    return ActionResult(success=True, message=_sweep_message(result),
                        details={'sent': result.sent, 'failed_unit_ids': result.failed_unit_ids,
                                 'already_ran': result.already_ran})
