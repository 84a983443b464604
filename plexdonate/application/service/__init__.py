"""Application services."""

from .access_controller import (
    AccessChange,
    AccessController,
    InviteOutcome,
    InviteResult,
    send_email,
)
from .locks import SubscriptionLocks
from .reconciler import ReconcileResult, Reconciler
from .sweeper import SweepReport, Sweeper, expiration_event

__all__ = [
    "AccessChange",
    "AccessController",
    "InviteOutcome",
    "InviteResult",
    "ReconcileResult",
    "Reconciler",
    "SubscriptionLocks",
    "SweepReport",
    "Sweeper",
    "expiration_event",
    "send_email",
]
