"""
Escrow State Transition Validator
================================

Prevents invalid state transitions and ensures escrow hold lifecycle integrity.
Transitions are keyed by (from, to) and carry the set of roles allowed to make
them, so a move that exists for the other role is reported as Forbidden rather
than as an invalid transition.
"""

import logging
from typing import Dict, FrozenSet, Optional, Set, Tuple

from models import ActorRole, EscrowStatus
from utils.exception_handler import Forbidden, InvalidTransition, ValidationError

logger = logging.getLogger(__name__)

_ADMIN = frozenset({ActorRole.ADMIN})
_CLIENT = frozenset({ActorRole.CLIENT})
_BOTH = frozenset({ActorRole.ADMIN, ActorRole.CLIENT})


class EscrowStateValidator:
    """
    Validates escrow hold state transitions.

    Prevents invalid transitions like:
    - RELEASED -> REFUNDED (funds already paid out)
    - REFUNDED -> HELD (resurrection)
    - APPROVED -> DISPUTED (disputes are raised while funds are still held)
    """

    VALID_TRANSITIONS: Dict[EscrowStatus, Dict[EscrowStatus, FrozenSet[ActorRole]]] = {
        # HELD: initial state, funds reserved out of the wallet
        EscrowStatus.HELD: {
            EscrowStatus.APPROVED: _ADMIN,
            EscrowStatus.RELEASED: _ADMIN,
            EscrowStatus.REFUNDED: _ADMIN,
            EscrowStatus.DISPUTED: _BOTH,
            EscrowStatus.CANCELLED: _CLIENT,
        },

        # APPROVED: admin signed off, waiting for payout or refund
        EscrowStatus.APPROVED: {
            EscrowStatus.RELEASED: _ADMIN,
            EscrowStatus.REFUNDED: _ADMIN,
        },

        # DISPUTED: admin resolves to any outcome
        EscrowStatus.DISPUTED: {
            EscrowStatus.APPROVED: _ADMIN,
            EscrowStatus.RELEASED: _ADMIN,
            EscrowStatus.REFUNDED: _ADMIN,
        },

        # Terminal states
        EscrowStatus.RELEASED: {},
        EscrowStatus.REFUNDED: {},
        EscrowStatus.CANCELLED: {},
    }

    TERMINAL_STATES: Set[EscrowStatus] = {
        EscrowStatus.RELEASED,
        EscrowStatus.REFUNDED,
        EscrowStatus.CANCELLED,
    }

    # Statuses each API surface may request at all
    ADMIN_REQUESTABLE: Set[EscrowStatus] = {
        EscrowStatus.APPROVED,
        EscrowStatus.RELEASED,
        EscrowStatus.REFUNDED,
        EscrowStatus.DISPUTED,
        EscrowStatus.CANCELLED,
    }
    CLIENT_REQUESTABLE: Set[EscrowStatus] = {
        EscrowStatus.CANCELLED,
        EscrowStatus.DISPUTED,
    }

    @staticmethod
    def parse_status(value) -> EscrowStatus:
        if isinstance(value, EscrowStatus):
            return value
        try:
            return EscrowStatus(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"Invalid status provided: {value!r}")

    @classmethod
    def check_requestable(cls, status: EscrowStatus, actor: ActorRole) -> None:
        allowed = cls.CLIENT_REQUESTABLE if actor == ActorRole.CLIENT else cls.ADMIN_REQUESTABLE
        if status not in allowed:
            raise ValidationError(
                f"Invalid status provided: {status.value}",
                details={"allowed": sorted(s.value for s in allowed)},
            )

    @classmethod
    def validate_transition(
        cls,
        from_status: EscrowStatus,
        to_status: EscrowStatus,
        actor: ActorRole,
        escrow_id: Optional[str] = None,
    ) -> Tuple[bool, str]:
        """
        Validate if a state transition is allowed for the acting role.

        Returns:
            Tuple[bool, str]: (is_valid, reason)
        """
        escrow_ref = f"Escrow {escrow_id}" if escrow_id else "Escrow"

        # Same status (no-op)
        if from_status == to_status:
            return True, "No status change required"

        roles = cls.VALID_TRANSITIONS.get(from_status, {}).get(to_status)
        if roles is None:
            logger.warning(
                f"❌ INVALID_TRANSITION: {escrow_ref} {from_status.value} -> {to_status.value} "
                f"Valid options: {[s.value for s in cls.get_valid_next_states(from_status)]}"
            )
            return False, f"Invalid transition: {from_status.value} -> {to_status.value}"

        if actor not in roles:
            logger.warning(
                f"🚫 FORBIDDEN_TRANSITION: {escrow_ref} {from_status.value} -> {to_status.value} "
                f"not permitted for {actor.value}"
            )
            return False, f"Role {actor.value} may not move a hold from {from_status.value} to {to_status.value}"

        logger.debug(f"✅ VALID_TRANSITION: {escrow_ref} {from_status.value} -> {to_status.value}")
        return True, "Valid state transition"

    @classmethod
    def ensure_transition(
        cls,
        from_status: EscrowStatus,
        to_status: EscrowStatus,
        actor: ActorRole,
        escrow_id: Optional[str] = None,
    ) -> None:
        """Raise InvalidTransition or Forbidden if the move is not allowed"""
        is_valid, reason = cls.validate_transition(from_status, to_status, actor, escrow_id)
        if is_valid:
            return

        roles = cls.VALID_TRANSITIONS.get(from_status, {}).get(to_status)
        if roles is None:
            raise InvalidTransition(
                reason,
                details={
                    "from": from_status.value,
                    "to": to_status.value,
                    "allowed": sorted(s.value for s in cls.get_valid_next_states(from_status)),
                },
            )
        raise Forbidden(reason, details={"from": from_status.value, "to": to_status.value})

    @classmethod
    def get_valid_next_states(
        cls, current_status: EscrowStatus, actor: Optional[ActorRole] = None
    ) -> Set[EscrowStatus]:
        """All valid next states, optionally restricted to one role"""
        moves = cls.VALID_TRANSITIONS.get(current_status, {})
        return {to for to, roles in moves.items() if actor is None or actor in roles}

    @classmethod
    def is_terminal_state(cls, status: EscrowStatus) -> bool:
        return status in cls.TERMINAL_STATES
