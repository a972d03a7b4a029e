from datetime import timezone as dt_timezone

from django.utils import timezone


class SystemClock:
    def now(self):
        return timezone.now()


class FrozenClock:
    """Clock pinned to a fixed instant, moved only by ``advance``/``freeze_at``."""

    def __init__(self, at):
        self.freeze_at(at)

    def now(self):
        return self._now

    def freeze_at(self, at):
        if timezone.is_naive(at):
            at = at.replace(tzinfo=dt_timezone.utc)
        self._now = at

    def advance(self, delta):
        self._now = self._now + delta
