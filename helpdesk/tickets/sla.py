from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from .models import Priority

if TYPE_CHECKING:
    from helpdesk.core.config import Settings


@dataclass(frozen=True, slots=True)
class SlaPolicy:
    """Resolution time allowed per priority, in hours."""

    urgent_hours: float = 4
    high_hours: float = 8
    medium_hours: float = 24
    low_hours: float = 72

    @classmethod
    def from_settings(cls, settings: Settings) -> SlaPolicy:
        return cls(
            urgent_hours=settings.sla_hours_urgent,
            high_hours=settings.sla_hours_high,
            medium_hours=settings.sla_hours_medium,
            low_hours=settings.sla_hours_low,
        )

    def offset(self, priority: Priority) -> timedelta:
        hours = {
            Priority.URGENT: self.urgent_hours,
            Priority.HIGH: self.high_hours,
            Priority.MEDIUM: self.medium_hours,
            Priority.LOW: self.low_hours,
        }[priority]
        return timedelta(hours=hours)


DEFAULT_SLA_POLICY = SlaPolicy()


def compute_deadline(priority: Priority, created_at: datetime, policy: SlaPolicy = DEFAULT_SLA_POLICY) -> datetime:
    """Deadline for a ticket created at ``created_at``; only called once, at creation."""

    return created_at + policy.offset(priority)
