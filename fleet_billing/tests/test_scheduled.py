"""
Tests for the daily payment notice sweep.
"""

import os
import subprocess
import sys
import textwrap
import threading
import pytest
from datetime import date, timedelta
from pathlib import Path

from fleet_billing.config import ENV_VAR, reset_config_cache
from fleet_billing.datatypes import Client, Unit, STATUS_WITHDRAWN
from fleet_billing.fleet import save_client, save_unit, set_unit_withdrawn
from fleet_billing.notifier import LoggingNotifier, Notifier
from fleet_billing.scheduled import SWEEP_MARKER, bucket_for, last_sweep_date, run_sweep
from fleet_billing.store import META, NOTIFICATION_LOG

TODAY = date(2025, 3, 10)


class FlakyNotifier(LoggingNotifier):
    """Raises for the given units, delivers the rest"""

    def __init__(self, failing_units):
        super().__init__()
        self.failing_units = set(failing_units)

    def send(self, template, client_id, unit_id):
        if unit_id in self.failing_units:
            raise ConnectionError("WhatsApp gateway unavailable")
        return super().send(template, client_id, unit_id)


class RejectingNotifier(Notifier):
    def send(self, template, client_id, unit_id):
        return False


class HangingNotifier(LoggingNotifier):
    """Blocks on one unit until released"""

    def __init__(self, hanging_unit):
        super().__init__()
        self.hanging_unit = hanging_unit
        self.release = threading.Event()

    def send(self, template, client_id, unit_id):
        if unit_id == self.hanging_unit:
            self.release.wait(5)
        return super().send(template, client_id, unit_id)


def due_in(days, **kw):
    return Unit(id='u', client_id='c', next_due_date=TODAY + timedelta(days=days), **kw)


class TestBucketFor:
    """Choosing the notice for a unit"""

    def test_buckets(self):
        assert bucket_for(due_in(3), TODAY) == 'payment_reminder'
        assert bucket_for(due_in(0), TODAY) == 'payment_due_today'
        assert bucket_for(due_in(-5), TODAY) == 'payment_overdue'
        assert bucket_for(due_in(-1), TODAY) == 'payment_overdue'

    def test_other_days_get_nothing(self):
        assert bucket_for(due_in(1), TODAY) is None
        assert bucket_for(due_in(2), TODAY) is None
        assert bucket_for(due_in(4), TODAY) is None

    def test_withdrawn_or_undated_units_get_nothing(self):
        assert bucket_for(due_in(0, withdrawn=True), TODAY) is None
        assert bucket_for(due_in(-10, withdrawn=True), TODAY) is None
        assert bucket_for(Unit(id='u', client_id='c'), TODAY) is None

    def test_reminder_wins_when_windows_overlap(self):
        """With a zero-day reminder window, due-today units get the reminder"""
        assert bucket_for(due_in(0), TODAY, days_ahead=0) == 'payment_reminder'
        assert bucket_for(due_in(7), TODAY, days_ahead=7) == 'payment_reminder'


class TestRunSweep:
    """The daily sweep over the seeded fleet"""

    def test_each_unit_gets_its_notice(self, fleet_store):
        notifier = LoggingNotifier()

        result = run_sweep(fleet_store, notifier, today=TODAY)

        assert sorted(notifier.sent) == [
            ('payment_due_today', 'c1', 'u1'),
            ('payment_overdue', 'c1', 'u2'),
            ('payment_reminder', 'c2', 'u3'),
        ]
        assert result.processed == 3
        assert result.sent == {'payment_due_today': 1, 'payment_overdue': 1, 'payment_reminder': 1}
        assert result.failed_unit_ids == []
        assert last_sweep_date(fleet_store) == TODAY

    def test_withdrawn_unit_due_today_gets_nothing(self, fleet_store):
        set_unit_withdrawn(fleet_store, 'u1')
        notifier = LoggingNotifier()

        run_sweep(fleet_store, notifier, today=TODAY)

        assert 'u1' not in {unit_id for _, _, unit_id in notifier.sent}

    def test_units_of_withdrawn_client_get_nothing(self, fleet_store):
        save_client(fleet_store, Client(id='c1', name='Transportes Andinos', owner_id='m1',
                                        status=STATUS_WITHDRAWN))
        notifier = LoggingNotifier()

        run_sweep(fleet_store, notifier, today=TODAY)

        assert notifier.sent == [('payment_reminder', 'c2', 'u3')]

    def test_second_trigger_same_day_is_a_no_op(self, fleet_store):
        notifier = LoggingNotifier()
        run_sweep(fleet_store, notifier, today=TODAY)

        again = run_sweep(fleet_store, notifier, today=TODAY)

        assert again.already_ran
        assert again.sent_total == 0
        assert len(notifier.sent) == 3

    def test_next_day_runs_again(self, fleet_store):
        run_sweep(fleet_store, LoggingNotifier(), today=TODAY)
        notifier = LoggingNotifier()

        result = run_sweep(fleet_store, notifier, today=TODAY + timedelta(days=1))

        assert not result.already_ran
        # u2 still overdue; u1 now overdue too; u3 is two days out
        assert sorted(u for _, _, u in notifier.sent) == ['u1', 'u2']

    def test_notifier_failure_does_not_stop_the_sweep(self, fleet_store):
        notifier = FlakyNotifier(['u2'])

        result = run_sweep(fleet_store, notifier, today=TODAY)

        assert result.failed_unit_ids == ['u2']
        assert result.sent_total == 2
        assert sorted(u for _, _, u in notifier.sent) == ['u1', 'u3']

    def test_rejected_notice_counts_as_failed(self, fleet_store):
        result = run_sweep(fleet_store, RejectingNotifier(), today=TODAY)
        assert sorted(result.failed_unit_ids) == ['u1', 'u2', 'u3']
        assert result.sent_total == 0

    def test_forced_rerun_only_retries_failures(self, fleet_store):
        """Notices already delivered today are not sent twice"""
        run_sweep(fleet_store, FlakyNotifier(['u2']), today=TODAY)
        notifier = LoggingNotifier()

        result = run_sweep(fleet_store, notifier, today=TODAY, force=True)

        assert notifier.sent == [('payment_overdue', 'c1', 'u2')]
        assert result.sent == {'payment_overdue': 1}
        assert len(fleet_store.query(NOTIFICATION_LOG)) == 3

    def test_marker_records_counts(self, fleet_store):
        run_sweep(fleet_store, FlakyNotifier(['u3']), today=TODAY)
        marker = fleet_store.get(META, SWEEP_MARKER)
        assert marker == {'last_sweep_date': '2025-03-10', 'sent': 2, 'failed': 1}

    def test_unit_without_due_date_is_skipped(self, fleet_store):
        save_unit(fleet_store, Unit(id='u4', client_id='c2', plate='NEW-001'))
        notifier = LoggingNotifier()

        result = run_sweep(fleet_store, notifier, today=TODAY)

        assert result.processed == 4
        assert 'u4' not in {u for _, _, u in notifier.sent}

    def test_empty_store(self, store):
        result = run_sweep(store, LoggingNotifier(), today=TODAY)
        assert result.processed == 0
        assert result.sent == {}


class TestNotifierTimeout:
    """A notifier that hangs is abandoned"""

    @pytest.fixture
    def short_timeout(self, tmp_path, monkeypatch):
        cfg = tmp_path / 'billing.yaml'
        cfg.write_text("notifications:\n  notifier_timeout_seconds: 0.2\n")
        monkeypatch.setenv(ENV_VAR, str(cfg))
        reset_config_cache()

    def test_hanging_notifier_times_out(self, fleet_store, short_timeout):
        notifier = HangingNotifier('u1')
        try:
            result = run_sweep(fleet_store, notifier, today=TODAY)
        finally:
            notifier.release.set()

        assert result.failed_unit_ids == ['u1']
        assert result.sent_total == 2

    def test_process_exits_while_notifier_still_hangs(self, tmp_path):
        """An abandoned notifier call does not keep the interpreter from exiting"""
        cfg = tmp_path / 'billing.yaml'
        cfg.write_text("notifications:\n  notifier_timeout_seconds: 0.2\n")
        script = textwrap.dedent("""
            import time
            from datetime import date
            from fleet_billing.datatypes import Client, Unit
            from fleet_billing.fleet import save_client, save_unit
            from fleet_billing.notifier import Notifier
            from fleet_billing.scheduled import run_sweep
            from fleet_billing.store import MemoryStore

            class StuckNotifier(Notifier):
                def send(self, template, client_id, unit_id):
                    time.sleep(30)
                    return True

            store = MemoryStore()
            save_client(store, Client(id='c1', name='Transportes Andinos'))
            save_unit(store, Unit(id='u1', client_id='c1', next_due_date=date(2025, 3, 10)))
            print(run_sweep(store, StuckNotifier(), today=date(2025, 3, 10)).failed_unit_ids)
        """)
        env = dict(os.environ, PYTHONPATH=str(Path(__file__).parents[2]))
        env[ENV_VAR] = str(cfg)

        done = subprocess.run([sys.executable, '-c', script], env=env,
                              capture_output=True, text=True, timeout=10)

        assert done.returncode == 0, done.stderr
        assert "['u1']" in done.stdout
