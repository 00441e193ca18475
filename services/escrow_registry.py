"""
Escrow Registry
Owns the escrow holds, enforces the status state machine and keeps the wallet
ledger consistent with hold lifecycle events:

- creation debits the ledger by the hold amount
- refunded / cancelled credit the amount back
- released leaves the ledger balance alone (funds paid out externally)

Every operation validates before it mutates, so a failure leaves both the
registry and the ledger untouched.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from models import ActivityType, ActorRole, CREDIT_BACK_STATUSES, FUNDS_AT_RISK_STATUSES, EscrowStatus
from services.escrow_state import EscrowHold, EscrowState, StatusChange
from services.ledger import Ledger
from utils.decimal_precision import MonetaryDecimal, Numeric, normalize_currency
from utils.escrow_state_validator import EscrowStateValidator
from utils.exception_handler import Forbidden, NotFound, ValidationError
from utils.helpers import generate_id, parse_datetime, utc_now
from utils.optimistic_locking import check_version
from utils.payment_methods import validate_payment_methods

logger = logging.getLogger(__name__)

FUNDS_RESERVED_NOTE = "Funds reserved"


def _role(value: Union[ActorRole, str]) -> ActorRole:
    if isinstance(value, ActorRole):
        return value
    try:
        return ActorRole(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown actor role: {value!r}")


class EscrowRegistry:
    """Escrow holds over an injected EscrowState, funded from the given Ledger"""

    def __init__(self, state: EscrowState, ledger: Ledger):
        self.state = state
        self.ledger = ledger

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_hold(
        self,
        client_token: str,
        platform: str,
        payment_methods: List[Dict[str, Any]],
        amount: Numeric,
        currency: str = "USD",
        notes: Optional[str] = None,
        expires_at: Optional[Union[datetime, str]] = None,
        actor: Union[ActorRole, str] = ActorRole.CLIENT,
    ) -> EscrowHold:
        """Reserve `amount` out of the wallet and record a new hold in `held`"""
        actor_role = _role(actor)
        if not client_token:
            raise ValidationError("A client token is required to create a hold")
        if not isinstance(platform, str) or not platform.strip():
            raise ValidationError("Platform is required")

        methods = validate_payment_methods(payment_methods)
        value = MonetaryDecimal.validate_positive(amount)
        code = normalize_currency(currency)
        expiry = parse_datetime(expires_at, "expiresAt")
        platform = platform.strip()

        hold_id = generate_id("escrow")

        # Raises InsufficientBalance before anything has been recorded
        self.ledger.debit(
            code,
            value,
            activity_type=ActivityType.HOLD,
            description=f"Hold created for {platform}",
            related_escrow_id=hold_id,
        )

        now = utc_now()
        hold = EscrowHold(
            id=hold_id,
            platform=platform,
            payment_methods=methods,
            amount=value,
            currency=code,
            notes=(notes or "").strip(),
            status=EscrowStatus.HELD,
            created_at=now,
            client_token=client_token,
            expires_at=expiry,
            status_history=[
                StatusChange(
                    status=EscrowStatus.HELD,
                    actor=actor_role.value,
                    timestamp=now,
                    note=FUNDS_RESERVED_NOTE,
                )
            ],
        )
        self.state.escrows.insert(0, hold)

        logger.info(f"🔒 HOLD_CREATED: {hold_id} {value} {code} on {platform}")
        return hold

    def transition(
        self,
        hold_id: str,
        requested_status: Union[EscrowStatus, str],
        actor_role: Union[ActorRole, str],
        note: Optional[str] = None,
        is_client_actor: Optional[bool] = None,
        client_token: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> EscrowHold:
        """
        Apply a status change to a hold.

        Client-scoped calls only see holds created with the same client token;
        anything else is reported as NotFound so existence does not leak.
        A request for the hold's current status is an idempotent no-op.
        """
        actor = _role(actor_role)
        if is_client_actor is None:
            is_client_actor = actor == ActorRole.CLIENT
        machine_role = ActorRole.CLIENT if is_client_actor else actor

        hold = self.find(hold_id)
        if hold is None or (is_client_actor and hold.client_token != client_token):
            raise NotFound(f"Escrow {hold_id} not found")

        target = EscrowStateValidator.parse_status(requested_status)

        if is_client_actor and hold.status == EscrowStatus.RELEASED:
            raise Forbidden("Released holds cannot be modified")

        if target == hold.status:
            logger.debug(f"HOLD_NOOP: {hold.id} already {target.value}")
            return hold

        check_version(hold, expected_version)
        EscrowStateValidator.ensure_transition(hold.status, target, machine_role, hold.id)

        previous = hold.status
        if target in CREDIT_BACK_STATUSES:
            description = (
                f"Client cancelled escrow {hold.id}"
                if target == EscrowStatus.CANCELLED
                else f"Funds returned for {hold.platform}"
            )
            self.ledger.credit(
                hold.currency,
                hold.amount,
                activity_type=ActivityType.REFUND,
                description=description,
                related_escrow_id=hold.id,
            )
        elif target == EscrowStatus.RELEASED:
            self.ledger.record_release(
                hold.currency, hold.amount, f"Funds released for {hold.platform}", hold.id
            )

        hold.status = target
        hold.status_history.insert(
            0,
            StatusChange(status=target, actor=actor.value, timestamp=utc_now(), note=(note or "").strip()),
        )
        hold.version += 1

        logger.info(
            f"🔄 HOLD_STATUS: {hold.id} {previous.value} -> {target.value} by {actor.value} (v{hold.version})"
        )
        return hold

    # ------------------------------------------------------------------
    # Read-only projections
    # ------------------------------------------------------------------

    def list_all(self) -> List[EscrowHold]:
        return list(self.state.escrows)

    def list_by_client(self, client_token: str) -> List[EscrowHold]:
        return [hold for hold in self.state.escrows if client_token and hold.client_token == client_token]

    def get_by_id(self, hold_id: str) -> EscrowHold:
        hold = self.find(hold_id)
        if hold is None:
            raise NotFound(f"Escrow {hold_id} not found")
        return hold

    def public_view(self, hold_id: str) -> Dict[str, Any]:
        return self.get_by_id(hold_id).public_dict()

    def funds_at_risk(self, currency: str):
        """Sum of amounts still reserved (held, approved, disputed) in a currency"""
        code = normalize_currency(currency)
        return MonetaryDecimal.add(
            0,
            *(
                hold.amount
                for hold in self.state.escrows
                if hold.currency == code
                and hold.status in FUNDS_AT_RISK_STATUSES
            ),
        )

    def find(self, hold_id: str) -> Optional[EscrowHold]:
        for hold in self.state.escrows:
            if hold.id == hold_id:
                return hold
        return None
