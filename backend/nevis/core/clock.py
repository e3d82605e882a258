"""Injectable time source."""

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Timezone-aware UTC now; the default clock for every time-dependent component."""
    return datetime.now(UTC)


def ensure_aware(value: datetime) -> datetime:
    """Label naive datetimes (as returned by some drivers) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
