from decimal import Decimal

# Daily late-payment penalty
RATE_PER_DAY = Decimal("50.00")

ZERO = Decimal("0.00")

# Bills the accrual engine still looks at
ACCRUING_STATUSES = ("pending", "partially_paid", "overdue")

# Read-modify-write attempts per bill before giving up on a version conflict
MAX_SAVE_ATTEMPTS = 3

# Bills processed in parallel by a batch run
BATCH_WORKERS = 1

# How far ahead payment reminders look
REMINDER_DAYS_AHEAD = 3

SECONDS_PER_DAY = 24 * 60 * 60

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]
