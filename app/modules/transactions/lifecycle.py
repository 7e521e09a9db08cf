"""
Escrow state machine.

Pure rules only: which actor may request which action from which status, and
which status it leads to. Persistence, locking and side effects live in
TransactionService.
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple

from app.core.exceptions import IllegalTransition, InvalidRequest, PermissionDenied
from app.modules.transactions.models import (
    ActorRole, TransactionAction, TransactionStatus, TERMINAL_STATUSES
)


@dataclass(frozen=True)
class ActorContext:
    """Who is acting, and in which capacity for this transaction"""
    user_id: Optional[int]
    role: ActorRole


SYSTEM_ACTOR = ActorContext(user_id=None, role=ActorRole.SYSTEM)


@dataclass(frozen=True)
class TransitionRule:
    actors: FrozenSet[ActorRole]
    sources: FrozenSet[TransactionStatus]
    target: TransactionStatus


S = TransactionStatus
NON_TERMINAL = frozenset(s for s in TransactionStatus if s not in TERMINAL_STATUSES)

TRANSITION_RULES: Dict[TransactionAction, List[TransitionRule]] = {
    TransactionAction.FUND: [
        TransitionRule(frozenset({ActorRole.BUYER}), frozenset({S.CREATED}), S.ESCROW_REQUESTED),
    ],
    TransactionAction.DISPUTE: [
        TransitionRule(frozenset({ActorRole.BUYER}), frozenset({S.VERIFICATION_PERIOD}), S.DISPUTED),
    ],
    TransactionAction.RELEASE: [
        TransitionRule(frozenset({ActorRole.SELLER}), frozenset({S.READY_TO_RELEASE}), S.RELEASED),
        TransitionRule(
            frozenset({ActorRole.ADMIN}),
            frozenset({S.FUNDED, S.READY_TO_RELEASE, S.DISPUTED}),
            S.RELEASED,
        ),
    ],
    TransactionAction.REFUND: [
        TransitionRule(frozenset({ActorRole.ADMIN}), frozenset({S.FUNDED, S.DISPUTED}), S.REFUNDED),
    ],
    TransactionAction.CLOSE: [
        TransitionRule(frozenset({ActorRole.ADMIN}), NON_TERMINAL, S.CLOSED),
    ],
    TransactionAction.REINSTATE: [
        TransitionRule(frozenset({ActorRole.ADMIN}), frozenset({S.DISPUTED}), S.VERIFICATION_PERIOD),
    ],
}

# Transitions nobody may request; the engine applies them itself
SYSTEM_TRANSITIONS: FrozenSet[Tuple[TransactionStatus, TransactionStatus]] = frozenset({
    (S.ESCROW_REQUESTED, S.FUNDED),
    (S.FUNDED, S.VERIFICATION_PERIOD),
    (S.VERIFICATION_PERIOD, S.READY_TO_RELEASE),
    # High-value release rejected by admin or finance
    (S.READY_TO_RELEASE, S.DISPUTED),
})

LEGAL_TRANSITIONS: FrozenSet[Tuple[TransactionStatus, TransactionStatus]] = frozenset(
    {(source, rule.target) for rules in TRANSITION_RULES.values() for rule in rules for source in rule.sources}
    | SYSTEM_TRANSITIONS
)

# Target status requested through PUT {status: ...} -> action
_STATUS_ACTIONS: Dict[TransactionStatus, TransactionAction] = {
    S.ESCROW_REQUESTED: TransactionAction.FUND,
    S.FUNDED: TransactionAction.FUND,
    S.DISPUTED: TransactionAction.DISPUTE,
    S.RELEASED: TransactionAction.RELEASE,
    S.REFUNDED: TransactionAction.REFUND,
    S.CLOSED: TransactionAction.CLOSE,
    S.VERIFICATION_PERIOD: TransactionAction.REINSTATE,
}


def resolve_transition(
    action: TransactionAction,
    actor: ActorContext,
    current: TransactionStatus,
) -> TransactionStatus:
    """
    Return the status ``action`` leads to, or raise.

    Terminal transactions reject everything with IllegalTransition; otherwise
    the actor is checked before the current status.
    """
    rules = TRANSITION_RULES.get(action)
    if rules is None:
        raise InvalidRequest(f"Action '{action.value}' is not a status transition")

    if current in TERMINAL_STATUSES:
        raise IllegalTransition(
            f"Transaction is {current.value}; no further transitions are permitted",
            current.value,
        )

    permitted = [rule for rule in rules if actor.role in rule.actors]
    if not permitted:
        raise PermissionDenied(f"A {actor.role.value} may not {action.value} this transaction")

    for rule in permitted:
        if current in rule.sources:
            return rule.target

    raise IllegalTransition(
        f"Cannot {action.value} a transaction in status {current.value}",
        current.value,
    )


def assert_legal(current: TransactionStatus, target: TransactionStatus) -> None:
    if (current, target) not in LEGAL_TRANSITIONS:
        raise IllegalTransition(
            f"Invalid status transition from {current.value} to {target.value}",
            current.value,
        )


def action_for_status(target: TransactionStatus, current: TransactionStatus) -> TransactionAction:
    """Map a requested target status onto the action that produces it"""
    action = _STATUS_ACTIONS.get(target)
    if action is None:
        raise IllegalTransition(
            f"Status {target.value} is set by the platform, not requested",
            current.value,
        )
    return action
