class BillingError(Exception):
    """Base class for failures the operator should see as a message."""


class ValidationError(BillingError):
    """Bad input, nothing was written."""


class NotFoundError(BillingError):
    """A referenced client, unit or payment does not exist."""


class TransactionError(BillingError):
    """A paired write could not be committed, nothing was applied."""
