"""
Ledger Engine - Status State Machines.

============================================================
PURPOSE
============================================================
Transition tables and guards for the three record lifecycles.

DEPOSIT:
    PENDING ──► APPROVED | REJECTED   (terminal)

SUBSCRIPTION:
    PENDING ──► CONFIRMED ──► ALLOCATED
       │            │
       └────────────┴───────► REJECTED

IPO:
    UPCOMING ──► ONGOING ──► CLOSED ──► LISTED

INVARIANTS:
- Terminal states are final
- Re-applying the current state is NOT a no-op; a second
  review of the same deposit must fail
- All transitions are logged

============================================================
"""

import logging
from enum import Enum
from typing import Dict, Set, Tuple, TypeVar

from core.exceptions import InvalidStateTransition

from .types import DepositStatus, SubscriptionStatus, IpoStatus


logger = logging.getLogger(__name__)

S = TypeVar("S", bound=Enum)


# ============================================================
# STATE TRANSITION RULES
# ============================================================

DEPOSIT_TRANSITIONS: Dict[DepositStatus, Set[DepositStatus]] = {
    DepositStatus.PENDING: {DepositStatus.APPROVED, DepositStatus.REJECTED},
    DepositStatus.APPROVED: set(),
    DepositStatus.REJECTED: set(),
}

SUBSCRIPTION_TRANSITIONS: Dict[SubscriptionStatus, Set[SubscriptionStatus]] = {
    SubscriptionStatus.PENDING: {
        SubscriptionStatus.CONFIRMED,
        SubscriptionStatus.ALLOCATED,
        SubscriptionStatus.REJECTED,
    },
    SubscriptionStatus.CONFIRMED: {
        SubscriptionStatus.ALLOCATED,
        SubscriptionStatus.REJECTED,
    },
    SubscriptionStatus.ALLOCATED: set(),
    SubscriptionStatus.REJECTED: set(),
}

IPO_TRANSITIONS: Dict[IpoStatus, Set[IpoStatus]] = {
    IpoStatus.UPCOMING: {IpoStatus.ONGOING},
    IpoStatus.ONGOING: {IpoStatus.CLOSED},
    IpoStatus.CLOSED: {IpoStatus.LISTED},
    IpoStatus.LISTED: set(),
}

_TABLES = {
    DepositStatus: DEPOSIT_TRANSITIONS,
    SubscriptionStatus: SUBSCRIPTION_TRANSITIONS,
    IpoStatus: IPO_TRANSITIONS,
}


# ============================================================
# STATE TRANSITION GUARD
# ============================================================

class TransitionGuard:
    """
    Guard for status transitions.

    Ensures transitions are valid and provides reason for denial.
    """

    @staticmethod
    def can_transition(from_state: S, to_state: S) -> Tuple[bool, str]:
        """
        Check if transition is allowed.

        Args:
            from_state: Current state
            to_state: Target state

        Returns:
            Tuple of (allowed, reason)
        """
        table = _TABLES[type(from_state)]
        valid_targets = table.get(from_state, set())

        if to_state in valid_targets:
            return True, "Valid transition"

        if not valid_targets:
            return False, f"Cannot transition from terminal state {from_state.value}"

        return False, f"Invalid transition: {from_state.value} -> {to_state.value}"

    @staticmethod
    def require(entity: str, entity_id: object, from_state: S, to_state: S) -> S:
        """
        Assert a transition is allowed.

        Returns:
            The target state

        Raises:
            InvalidStateTransition if the transition is not allowed
        """
        allowed, reason = TransitionGuard.can_transition(from_state, to_state)
        if not allowed:
            logger.warning(f"Rejected {entity} {entity_id} transition: {reason}")
            raise InvalidStateTransition(
                entity=entity,
                entity_id=entity_id,
                from_state=from_state.value,
                to_state=to_state.value,
            )
        logger.debug(f"{entity} {entity_id}: {from_state.value} -> {to_state.value}")
        return to_state


def is_terminal(state: Enum) -> bool:
    """Check if a state has no outgoing transitions."""
    return not _TABLES[type(state)].get(state)


__all__ = [
    "DEPOSIT_TRANSITIONS",
    "SUBSCRIPTION_TRANSITIONS",
    "IPO_TRANSITIONS",
    "TransitionGuard",
    "is_terminal",
]
