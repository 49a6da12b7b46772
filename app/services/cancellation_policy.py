from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

DEFAULT_PENALTY_HOURS = 12


@dataclass(frozen=True, slots=True)
class CancellationDecision:
    penalized: bool
    hours_until_start: float
    message: str

    @property
    def refund_due(self) -> bool:
        return not self.penalized

    def to_payload(self) -> dict[str, object]:
        return {
            "penalized": self.penalized,
            "refund_due": self.refund_due,
            "hours_until_start": round(self.hours_until_start, 2),
            "message": self.message,
        }


def decide(
    session_start: datetime,
    now: datetime,
    *,
    penalty_hours: int = DEFAULT_PENALTY_HOURS,
) -> CancellationDecision:
    """
    Decide whether cancelling a class at ``now`` forfeits its credits.

    Cancelling ``penalty_hours`` or less before the start keeps the credits so
    the teacher is still paid. Callers must reject ``now >= session_start``
    before asking: a class that already started is a no-show.
    """
    remaining = session_start - now
    hours = remaining.total_seconds() / 3600
    if remaining <= timedelta(hours=penalty_hours):
        return CancellationDecision(
            penalized=True,
            hours_until_start=hours,
            message=(
                f"Class cancelled less than {penalty_hours} hours before it starts; "
                "the credits are kept to pay the teacher."
            ),
        )
    return CancellationDecision(
        penalized=False,
        hours_until_start=hours,
        message=f"Class cancelled more than {penalty_hours} hours ahead; the credits are refunded in full.",
    )
