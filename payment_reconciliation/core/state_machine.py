"""
Payment state machine.

transition() is pure: given the current payment and a callback outcome it
returns the target status and the side effects owed if, and only if, this call
is the one that moves the payment into that status. Callers commit the status
change with a conditional write and run the effects only when that write
reports it changed a row.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Tuple, Union

from payment_reconciliation.enums import DONATION_LABELS, PaymentPurpose, PaymentStatus


class CallbackOutcome(str, Enum):
    """Normalized outcome of an inbound gateway callback."""

    SUCCESS = "SUCCESS"
    FAIL = "FAIL"
    CANCEL = "CANCEL"
    IPN_VALID = "IPN_VALID"
    IPN_INVALID = "IPN_INVALID"


COMPLETING_OUTCOMES = frozenset({CallbackOutcome.SUCCESS, CallbackOutcome.IPN_VALID})

TARGET_STATUS = {
    CallbackOutcome.SUCCESS: PaymentStatus.PAID,
    CallbackOutcome.IPN_VALID: PaymentStatus.PAID,
    CallbackOutcome.FAIL: PaymentStatus.FAILED,
    CallbackOutcome.CANCEL: PaymentStatus.CANCELLED,
}


@dataclass(frozen=True)
class ElevateMembership:
    """Promote the payer from USER to MEMBER."""

    kind: str = field(default="elevate_membership", init=False)


@dataclass(frozen=True)
class CreditFund:
    """Credit the donation fund with the payment amount."""

    label: str
    kind: str = field(default="credit_fund", init=False)


Effect = Union[ElevateMembership, CreditFund]


def effects_for(purpose: PaymentPurpose | str) -> Tuple[Effect, ...]:
    """Side effects owed when a payment with this purpose becomes PAID."""
    purpose = PaymentPurpose(purpose)
    if purpose is PaymentPurpose.MEMBERSHIP_FEE:
        return (ElevateMembership(),)
    if purpose in DONATION_LABELS:
        return (CreditFund(label=DONATION_LABELS[purpose]),)
    return ()


def allowed_sources(target: PaymentStatus) -> Tuple[PaymentStatus, ...]:
    """Statuses a payment may be in for a move into target to be legal."""
    return tuple(s for s in PaymentStatus if s is not PaymentStatus.PAID and s is not target)


@dataclass(frozen=True)
class Transition:
    outcome: CallbackOutcome
    from_status: PaymentStatus
    status: Optional[PaymentStatus] = None
    paid_at: Optional[datetime] = None
    effects: Tuple[Effect, ...] = ()

    @property
    def is_noop(self) -> bool:
        return self.status is None

    @property
    def sources(self) -> Tuple[PaymentStatus, ...]:
        if self.status is None:
            return ()
        return allowed_sources(self.status)


def transition(payment: Any, outcome: CallbackOutcome, now: Optional[datetime] = None) -> Transition:
    """
    Compute the state change a callback outcome asks for.

    Args:
        payment: Anything exposing ``status`` and ``purpose``
        outcome: Normalized callback outcome
        now: Clock override for paid_at

    Returns:
        Transition: target status and effects, or a no-op
    """
    current = PaymentStatus(payment.status)
    target = TARGET_STATUS.get(outcome)

    # IPN_INVALID has no target; PAID absorbs everything; repeats change nothing.
    if target is None or current is PaymentStatus.PAID or current is target:
        return Transition(outcome=outcome, from_status=current)

    if target is PaymentStatus.PAID:
        return Transition(
            outcome=outcome,
            from_status=current,
            status=target,
            paid_at=now or datetime.now(timezone.utc),
            effects=effects_for(payment.purpose),
        )

    return Transition(outcome=outcome, from_status=current, status=target)
