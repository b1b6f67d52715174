"""Booking status transitions.

The whole policy lives in ``TRANSITIONS``: a (from, to) pair is legal only
if it is listed, only for the listed roles, and only when the booking's
delivery option matches where the rule names one.
"""
from dataclasses import dataclass
from datetime import datetime

from aquaflow.core.errors import InvalidTransition
from aquaflow.schemas.entities import Booking, BookingStatus, UserRole, utcnow

S = BookingStatus
STAFF = frozenset({UserRole.ADMIN, UserRole.RIDER})


@dataclass(frozen=True)
class TransitionRule:
    roles: frozenset[UserRole] = STAFF
    delivery: bool | None = None  # None: either delivery option


TRANSITIONS: dict[tuple[BookingStatus, BookingStatus], TransitionRule] = {
    (S.PENDING, S.ACCEPTED): TransitionRule(),
    (S.PENDING, S.CANCELLED): TransitionRule(),
    (S.ACCEPTED, S.PICKED_UP): TransitionRule(),
    (S.PICKED_UP, S.REFILLED): TransitionRule(),
    (S.REFILLED, S.OUT_FOR_DELIVERY): TransitionRule(delivery=True),
    (S.REFILLED, S.COMPLETED): TransitionRule(delivery=False),
    (S.OUT_FOR_DELIVERY, S.COMPLETED): TransitionRule(),
}

TERMINAL = frozenset({S.COMPLETED, S.CANCELLED})
ACTIVE = (S.ACCEPTED, S.PICKED_UP, S.REFILLED, S.OUT_FOR_DELIVERY)


def check_transition(booking: Booking, requested: BookingStatus | str, role: UserRole) -> BookingStatus:
    """Return the next status or raise ``InvalidTransition``."""
    current = booking.status
    try:
        target = BookingStatus(requested)
    except ValueError:
        raise InvalidTransition(current.value, str(requested), "unknown status") from None

    rule = TRANSITIONS.get((current, target))
    if rule is None:
        reason = "booking is closed" if current in TERMINAL else "not in the transition table"
        raise InvalidTransition(current.value, target.value, reason)
    if role not in rule.roles:
        raise InvalidTransition(current.value, target.value, f"role {role.value} may not do this")
    if rule.delivery is not None and booking.delivery_option != rule.delivery:
        need = "with" if rule.delivery else "without"
        raise InvalidTransition(current.value, target.value, f"only for bookings {need} return delivery")
    return target


def allowed_transitions(booking: Booking, role: UserRole) -> list[BookingStatus]:
    out = []
    for (src, dst), rule in TRANSITIONS.items():
        if src != booking.status or role not in rule.roles:
            continue
        if rule.delivery is not None and booking.delivery_option != rule.delivery:
            continue
        out.append(dst)
    return out


def apply_transition(booking: Booking, requested: BookingStatus | str, role: UserRole,
                     now: datetime | None = None) -> Booking:
    """Return a copy of ``booking`` in the requested status.

    Entering Completed stamps ``completed_at``; no other transition touches
    timestamps.
    """
    target = check_transition(booking, requested, role)
    changes = {"status": target}
    if target == S.COMPLETED:
        changes["completed_at"] = now or utcnow()
    return booking.model_copy(update=changes)
