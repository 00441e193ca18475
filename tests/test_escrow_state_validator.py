"""
Escrow state transition validator tests
"""

import pytest

from models import ActorRole, EscrowStatus
from utils.escrow_state_validator import EscrowStateValidator
from utils.exception_handler import Forbidden, InvalidTransition, ValidationError


ALLOWED = {
    (EscrowStatus.HELD, EscrowStatus.APPROVED): {ActorRole.ADMIN},
    (EscrowStatus.HELD, EscrowStatus.RELEASED): {ActorRole.ADMIN},
    (EscrowStatus.HELD, EscrowStatus.REFUNDED): {ActorRole.ADMIN},
    (EscrowStatus.HELD, EscrowStatus.DISPUTED): {ActorRole.ADMIN, ActorRole.CLIENT},
    (EscrowStatus.HELD, EscrowStatus.CANCELLED): {ActorRole.CLIENT},
    (EscrowStatus.APPROVED, EscrowStatus.RELEASED): {ActorRole.ADMIN},
    (EscrowStatus.APPROVED, EscrowStatus.REFUNDED): {ActorRole.ADMIN},
    (EscrowStatus.DISPUTED, EscrowStatus.APPROVED): {ActorRole.ADMIN},
    (EscrowStatus.DISPUTED, EscrowStatus.RELEASED): {ActorRole.ADMIN},
    (EscrowStatus.DISPUTED, EscrowStatus.REFUNDED): {ActorRole.ADMIN},
}


class TestEscrowStateValidator:

    @pytest.mark.parametrize("from_status", list(EscrowStatus))
    @pytest.mark.parametrize("to_status", list(EscrowStatus))
    @pytest.mark.parametrize("actor", list(ActorRole))
    def test_full_transition_table(self, from_status, to_status, actor):
        if from_status == to_status:
            EscrowStateValidator.ensure_transition(from_status, to_status, actor)
            return

        roles = ALLOWED.get((from_status, to_status))
        if roles is None:
            with pytest.raises(InvalidTransition):
                EscrowStateValidator.ensure_transition(from_status, to_status, actor)
        elif actor not in roles:
            with pytest.raises(Forbidden):
                EscrowStateValidator.ensure_transition(from_status, to_status, actor)
        else:
            EscrowStateValidator.ensure_transition(from_status, to_status, actor)

    def test_terminal_states(self):
        assert {s for s in EscrowStatus if EscrowStateValidator.is_terminal_state(s)} == {
            EscrowStatus.RELEASED, EscrowStatus.REFUNDED, EscrowStatus.CANCELLED,
        }

    def test_valid_next_states_per_role(self):
        assert EscrowStateValidator.get_valid_next_states(EscrowStatus.HELD, ActorRole.CLIENT) == {
            EscrowStatus.DISPUTED, EscrowStatus.CANCELLED,
        }
        assert EscrowStateValidator.get_valid_next_states(EscrowStatus.RELEASED) == set()

    @pytest.mark.parametrize("raw", [" Approved ", "APPROVED", EscrowStatus.APPROVED])
    def test_parse_status_normalizes(self, raw):
        assert EscrowStateValidator.parse_status(raw) == EscrowStatus.APPROVED

    @pytest.mark.parametrize("raw", ["", None, "paid", 3])
    def test_parse_status_rejects_unknown(self, raw):
        with pytest.raises(ValidationError):
            EscrowStateValidator.parse_status(raw)

    def test_client_whitelist(self):
        EscrowStateValidator.check_requestable(EscrowStatus.CANCELLED, ActorRole.CLIENT)
        EscrowStateValidator.check_requestable(EscrowStatus.DISPUTED, ActorRole.CLIENT)
        for status in (EscrowStatus.APPROVED, EscrowStatus.RELEASED, EscrowStatus.REFUNDED, EscrowStatus.HELD):
            with pytest.raises(ValidationError):
                EscrowStateValidator.check_requestable(status, ActorRole.CLIENT)

    def test_admin_whitelist_excludes_held(self):
        with pytest.raises(ValidationError):
            EscrowStateValidator.check_requestable(EscrowStatus.HELD, ActorRole.ADMIN)
        EscrowStateValidator.check_requestable(EscrowStatus.CANCELLED, ActorRole.ADMIN)
