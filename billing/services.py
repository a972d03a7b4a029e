from django.conf import settings

from notifications.notifier import DjangoNotifier
from .clock import SystemClock
from .constants import BATCH_WORKERS, MAX_SAVE_ATTEMPTS, RATE_PER_DAY
from .engine import PenaltyAccrualEngine
from .store import DjangoBillStore


def build_penalty_engine(store=None, notifier=None, clock=None, max_workers=None, notify=True):
    """
    Wire a penalty engine against the database, the in-app/email notifier
    and the system clock, reading tunables from Django settings.

    Each call builds fresh collaborators; nothing is cached between calls.
    With ``notify=False`` the engine runs without a notifier.
    """
    if notify and notifier is None:
        notifier = DjangoNotifier(defer_email=True)

    if max_workers is None:
        max_workers = getattr(settings, "PENALTY_BATCH_WORKERS", BATCH_WORKERS)

    return PenaltyAccrualEngine(
        store=store or DjangoBillStore(),
        notifier=notifier if notify else None,
        clock=clock or SystemClock(),
        rate_per_day=getattr(settings, "PENALTY_RATE_PER_DAY", RATE_PER_DAY),
        max_save_attempts=getattr(settings, "PENALTY_MAX_SAVE_ATTEMPTS", MAX_SAVE_ATTEMPTS),
        max_workers=max_workers,
    )
