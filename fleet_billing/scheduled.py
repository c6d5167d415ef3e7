"""
Daily payment notice sweep.

Once a day every unit is placed in at most one bucket, checked in this
order:

1. due in `reminder_days_ahead` days (3 by default) → payment_reminder
2. due today                                        → payment_due_today
3. due date already passed                          → payment_overdue

Withdrawn units, units of withdrawn clients and units without a due date
get nothing. A per-day marker turns a second trigger on the same day into
a no-op, and every notice that went out is logged per unit and day so a
forced re-run only retries the ones that failed.
"""

import logging
import threading
from datetime import date, timedelta
from typing import Optional

from .config import local_today, notification_settings
from .datatypes import SweepResult, Unit, STATUS_WITHDRAWN
from .fleet import load_clients, load_units
from .notifier import Notifier
from .records import format_date
from .store import META, NOTIFICATION_LOG, MemoryStore

# Set up module logger
logger = logging.getLogger(__name__)

SWEEP_MARKER = 'notification_sweep'


def bucket_for(unit: Unit, today: date, days_ahead: Optional[int] = None) -> Optional[str]:
    """Template to send for `unit` today, or None"""
    if unit.withdrawn or unit.next_due_date is None:
        return None

    settings = notification_settings()
    templates = settings['templates']
    if days_ahead is None:
        days_ahead = settings['reminder_days_ahead']

    due = unit.next_due_date
    if due == today + timedelta(days=days_ahead):
        return templates['reminder']
    if due == today:
        return templates['due_today']
    if due < today:
        return templates['overdue']
    return None


def last_sweep_date(store: MemoryStore) -> Optional[date]:
    marker = store.get(META, SWEEP_MARKER) or {}
    value = marker.get('last_sweep_date')
    return date.fromisoformat(str(value)) if value else None


def _notification_id(today: date, unit_id: str) -> str:
    return f'{today.isoformat()}:{unit_id}'


def _send_with_timeout(notifier: Notifier, template: str, client_id: str, unit_id: str,
                       timeout: Optional[float]) -> bool:
    if not timeout:
        return bool(notifier.send(template, client_id, unit_id))

    outcome = {}

    def deliver():
        try:
            outcome['delivered'] = notifier.send(template, client_id, unit_id)
        except Exception as e:
            outcome['error'] = e

    # an abandoned call must not block interpreter exit
    worker = threading.Thread(target=deliver, name=f'notifier-{unit_id}', daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        raise TimeoutError(f"no answer after {timeout}s")
    if 'error' in outcome:
        raise outcome['error']
    return bool(outcome.get('delivered'))


def run_sweep(store: MemoryStore, notifier: Notifier, today: Optional[date] = None,
              force: bool = False) -> SweepResult:
    """
    Run the daily notice sweep over every unit.

    Args:
        store: document store holding clients, units and the sweep log
        notifier: delivery channel for the notices
        today: sweep date, defaults to today in the configured time zone
        force: run even if a sweep was already recorded for `today`

    Returns:
        SweepResult with per-template counts and the units whose notice failed
    """
    settings = notification_settings()
    today = today or local_today(settings['timezone'])
    result = SweepResult(sweep_date=today)

    if not force and last_sweep_date(store) == today:
        logger.info(f"Notice sweep for {today} already ran, skipping")
        result.already_ran = True
        return result

    logger.info(f"Starting notice sweep for {today}...")

    clients = {c.id: c for c in load_clients(store)}
    units = load_units(store)
    already_sent = {doc_id for doc_id, _ in store.query(NOTIFICATION_LOG, sweep_date=format_date(today))}
    logger.debug(f"Found {len(already_sent)} notices already sent for {today}")

    timeout = settings.get('notifier_timeout_seconds')
    days_ahead = settings['reminder_days_ahead']

    for unit in units:
        result.processed += 1

        client = clients.get(unit.client_id)
        if client is not None and client.status == STATUS_WITHDRAWN:
            logger.debug(f"Unit {unit.id} skipped, client {client.id} is withdrawn")
            continue

        template = bucket_for(unit, today, days_ahead)
        if template is None:
            continue

        notification_id = _notification_id(today, unit.id)
        if notification_id in already_sent:
            logger.debug(f"{template} already sent to unit {unit.id} today")
            continue

        try:
            delivered = _send_with_timeout(notifier, template, unit.client_id, unit.id, timeout)
        except TimeoutError:
            logger.warning(f"Notifier timed out after {timeout}s for unit {unit.id} ({template})")
            delivered = False
        except Exception as e:
            logger.warning(f"Notifier failed for unit {unit.id} ({template}): {e}")
            delivered = False

        if not delivered:
            result.failed_unit_ids.append(unit.id)
            continue

        result.sent[template] = result.sent.get(template, 0) + 1
        try:
            with store.transaction() as tx:
                tx.set(NOTIFICATION_LOG, notification_id, {
                    'sweep_date': format_date(today),
                    'unit_id': unit.id,
                    'client_id': unit.client_id,
                    'template': template,
                })
        except Exception as e:
            logger.error(f"Sent {template} to unit {unit.id} but could not log it: {e}")

    with store.transaction() as tx:
        tx.set(META, SWEEP_MARKER, {
            'last_sweep_date': format_date(today),
            'sent': result.sent_total,
            'failed': len(result.failed_unit_ids),
        })

    logger.info(f"Notice sweep complete: processed {result.processed} unit(s), "
                f"sent {result.sent_total}, {len(result.failed_unit_ids)} failed")
    return result
