"""Payment status transitions driven by normalized gateway events.

    PENDING --CHARGE_SUCCESS--> PAID --REFUND_PROCESSED--> REFUNDED
    PENDING --CHARGE_FAILED---> FAILED

FAILED and REFUNDED are terminal for automated events; leaving them needs
an operator. Anything outside the table is absorbed and reported as
INVALID, never raised.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from servixing.models.enums import PaymentStatus
from servixing.services.payment_events import EventKind


class Outcome(str, enum.Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    TERMINAL = "terminal"
    INVALID = "invalid"


TERMINAL_STATES = frozenset({PaymentStatus.FAILED, PaymentStatus.REFUNDED})

_TRANSITIONS = {
    (PaymentStatus.PENDING, EventKind.CHARGE_SUCCESS): PaymentStatus.PAID,
    (PaymentStatus.PENDING, EventKind.CHARGE_FAILED): PaymentStatus.FAILED,
    (PaymentStatus.PAID, EventKind.REFUND_PROCESSED): PaymentStatus.REFUNDED,
}

# Re-delivery of the event that produced the current state.
_REDELIVERIES = {
    (PaymentStatus.PAID, EventKind.CHARGE_SUCCESS),
}

# Work order payment_status written alongside each new payment status.
WORK_ORDER_PAYMENT_STATUS = {
    PaymentStatus.PAID: PaymentStatus.PAID.value,
    PaymentStatus.REFUNDED: PaymentStatus.REFUNDED.value,
}


@dataclass(frozen=True)
class Transition:
    current: PaymentStatus
    event: EventKind
    next: PaymentStatus
    outcome: Outcome

    @property
    def changed(self) -> bool:
        return self.outcome is Outcome.APPLIED

    @property
    def work_order_payment_status(self) -> Optional[str]:
        if not self.changed:
            return None
        return WORK_ORDER_PAYMENT_STATUS.get(self.next)


def is_terminal(status: PaymentStatus | str) -> bool:
    return PaymentStatus(status) in TERMINAL_STATES


def decide(current: PaymentStatus | str, event: EventKind | str) -> Transition:
    current = PaymentStatus(current)
    event = EventKind(event)

    if current in TERMINAL_STATES:
        return Transition(current, event, current, Outcome.TERMINAL)
    if (current, event) in _REDELIVERIES:
        return Transition(current, event, current, Outcome.DUPLICATE)
    nxt = _TRANSITIONS.get((current, event))
    if nxt is None:
        return Transition(current, event, current, Outcome.INVALID)
    return Transition(current, event, nxt, Outcome.APPLIED)
