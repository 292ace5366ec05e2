"""
Billing error taxonomy.

BillingValidationError  - malformed input, rejected before any computation
BillingConflictError    - invoice already exists for the period, entry already linked
BillingPersistenceError - store failure during commit (raised after rollback)
BillingNotFoundError    - referenced row does not exist
"""


class BillingError(Exception):
    pass


class BillingValidationError(BillingError, ValueError):
    """Malformed input: negative minutes, overlapping agreements, empty period"""
    pass


class BillingConflictError(BillingError):
    pass


class BillingPersistenceError(BillingError):
    pass


class BillingNotFoundError(BillingError, LookupError):
    """Client, invoice, line, agreement or time entry does not exist"""
    pass
