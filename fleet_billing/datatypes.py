from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Dict, Optional
from datetime import date

Money = Decimal       # keep full-precision cents

# Contract types
FLAT_FEE = 'con_contrato'        # total cost amortized over a fixed term
METERED = 'sin_contrato'         # recurring monthly charge, no term

PLAN_TIERS = ('estandar-sc', 'avanzado-sc', 'total-sc',
              'estandar-cc', 'avanzado-cc', 'total-cc')

# Payment status, as stored on clients
STATUS_CURRENT = 'al dia'
STATUS_OVERDUE = 'adeuda'
STATUS_WITHDRAWN = 'retirado'

# Notification templates
PAYMENT_REMINDER = 'payment_reminder'
PAYMENT_DUE_TODAY = 'payment_due_today'
PAYMENT_OVERDUE = 'payment_overdue'
PAYMENT_RECEIVED = 'payment_received'

# User roles
ROLE_MASTER = 'master'
ROLE_MANAGER = 'manager'
ROLE_ANALYST = 'analista'
ROLE_TECHNICIAN = 'tecnico'


@dataclass
class User:
    id: str
    role: str                    # master | manager | analista | tecnico
    name: str = ''
    creator_id: Optional[str] = None   # manager that created an analista


@dataclass
class Client:
    id: str
    name: str
    owner_id: Optional[str] = None
    phone: Optional[str] = None
    status: str = STATUS_CURRENT       # derived, see status.client_status
    debt: Money = Money(0)


@dataclass
class Unit:
    id: str
    client_id: str
    plate: str = ''
    contract_type: str = METERED
    plan: Optional[str] = None
    total_contract_cost: Money = Money(0)   # flat-fee only
    contract_months: Optional[int] = None   # flat-fee only, <= 0 treated as 1
    monthly_fee: Money = Money(0)           # metered only
    contract_start: Optional[date] = None
    next_due_date: Optional[date] = None
    last_payment_date: Optional[date] = None
    expiration_date: Optional[date] = None  # metered only
    contract_balance: Optional[Money] = None  # flat-fee only
    cutoff_days: Optional[int] = None
    withdrawn: bool = False                 # manual, excludes unit from reminders
    device_id: Optional[str] = None         # telemetry, not used for billing
    device_active: bool = False


@dataclass
class PaymentRecord:
    id: str
    client_id: str
    unit_id: str
    invoice_number: str
    amount: Money
    payment_date: date
    method: str                  # "transferencia" | "efectivo"
    months_paid: int = 1
    unit_plate: str = ''
    client_name: str = ''
    owner_id: Optional[str] = None
    previous_due_date: Optional[date] = None        # unit state when recorded
    new_due_date: Optional[date] = None             # due date this payment produced
    previous_expiration_date: Optional[date] = None


@dataclass
class LegacyPayment:
    """A payment found under clients/{cid}/units/{uid}/payments."""
    id: str
    client_id: str
    unit_id: str
    invoice_number: str
    amount: Money
    payment_date: date
    method: str
    months_paid: int = 1
    unit_plate: str = ''
    client_name: str = ''
    owner_id: Optional[str] = None


@dataclass
class PaymentForm:
    invoice_number: str
    method: str
    payment_date: date
    months_paid: int = 1


@dataclass
class WorkOrder:
    id: str
    owner_id: Optional[str]
    description: str = ''
    status: str = 'pendiente'
    client_id: Optional[str] = None
    created: Optional[date] = None


@dataclass
class InstallationOrder:
    id: str
    client_id: str
    owner_id: Optional[str]
    technician_id: Optional[str] = None
    plate: str = ''
    status: str = 'pendiente'
    scheduled_date: Optional[date] = None


@dataclass
class ContractTerms:
    monthly_cost: Money
    next_due_date: Optional[date]


@dataclass
class ActionResult:
    success: bool
    message: str
    details: Dict = field(default_factory=dict)


@dataclass
class BulkDeleteResult:
    deleted_count: int = 0
    failed_ids: List[str] = field(default_factory=list)
    payments_removed: int = 0


@dataclass
class MigrationResult:
    success: bool
    migrated_count: int = 0
    skipped_count: int = 0           # already present in the flat ledger
    failed_count: int = 0            # malformed or unwritable
    message: str = ''


@dataclass
class SweepResult:
    sweep_date: date
    processed: int = 0
    sent: Dict[str, int] = field(default_factory=dict)   # template → count
    failed_unit_ids: List[str] = field(default_factory=list)
    already_ran: bool = False

    @property
    def sent_total(self) -> int:
        return sum(self.sent.values())


@dataclass
class PortfolioSummary:
    total_clients: int
    total_units: int
    total_monthly_income: Money
    total_overdue_value: Money
    clients_by_status: Dict[str, int]
