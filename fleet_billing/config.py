import logging
import os
import yaml
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Optional

from dateutil import tz

from .datatypes import PAYMENT_DUE_TODAY, PAYMENT_OVERDUE, PAYMENT_RECEIVED, PAYMENT_REMINDER

logger = logging.getLogger(__name__)

CFG_PATH = Path(__file__).parent / 'data' / 'billing_config.yaml'
ENV_VAR = 'FLEET_BILLING_CONFIG'

DEFAULTS: Dict[str, Any] = {
    'store': {'data_dir': 'billing_data'},
    'billing': {
        'overdue_period_days': 30,
        'payment_methods': ['transferencia', 'efectivo'],
    },
    'notifications': {
        'timezone': 'America/Guayaquil',
        'reminder_days_ahead': 3,
        'notifier_timeout_seconds': 10,
        'templates': {
            'reminder': PAYMENT_REMINDER,
            'due_today': PAYMENT_DUE_TODAY,
            'overdue': PAYMENT_OVERDUE,
            'received': PAYMENT_RECEIVED,
        },
    },
}

_config_cache = None


def _config_path() -> Path:
    override = os.environ.get(ENV_VAR)
    path = Path(override) if override else CFG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Billing config not found at {path}")
    return path


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def load_config() -> Dict[str, Any]:
    """Load the billing configuration, filling missing keys from DEFAULTS"""
    global _config_cache

    if _config_cache is not None:
        return _config_cache

    path = _config_path()
    logger.debug(f"Loading billing config from {path}")
    with open(path, 'r') as f:
        raw = yaml.safe_load(f) or {}

    _config_cache = _merge(DEFAULTS, raw)
    logger.info(f"Loaded billing configuration (version {raw.get('metadata', {}).get('config_version', 'unknown')})")
    return _config_cache


def reset_config_cache() -> None:
    global _config_cache
    _config_cache = None


def notification_settings() -> Dict[str, Any]:
    return load_config()['notifications']


def billing_settings() -> Dict[str, Any]:
    return load_config()['billing']


def local_today(timezone: Optional[str] = None) -> date:
    """Calendar date in the configured billing time zone"""
    name = timezone or notification_settings()['timezone']
    zone = tz.gettz(name)
    if zone is None:
        logger.warning(f"Unknown time zone {name!r}, using the system zone")
        return date.today()
    return datetime.now(zone).date()
