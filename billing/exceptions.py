"""
Typed errors raised by the billing core.

Every error carries a machine-readable ``code`` so API views and
management commands can report failures without parsing messages.

    BillingError
    +-- BillNotFound
    +-- VersionConflict
    +-- StoreError
    +-- NotifyError
    +-- InvalidPayment
    +-- InvalidAdjustment
"""


class BillingError(Exception):
    code = "BILLING_ERROR"


class BillNotFound(BillingError):
    code = "BILL_NOT_FOUND"

    def __init__(self, bill_id):
        self.bill_id = bill_id
        super().__init__(f"Bill {bill_id} not found")


class VersionConflict(BillingError):
    """The bill was modified by someone else since it was read."""

    code = "VERSION_CONFLICT"

    def __init__(self, bill_id, expected_version=None):
        self.bill_id = bill_id
        self.expected_version = expected_version
        super().__init__(
            f"Bill {bill_id} was modified concurrently "
            f"(expected version {expected_version})"
        )


class StoreError(BillingError):
    code = "STORE_ERROR"


class NotifyError(BillingError):
    code = "NOTIFY_ERROR"


class InvalidPayment(BillingError):
    code = "INVALID_PAYMENT"


class InvalidAdjustment(BillingError):
    code = "INVALID_ADJUSTMENT"
