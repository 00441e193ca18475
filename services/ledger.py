"""
Wallet Ledger Service
Per-currency balances and the bounded activity trail.

The ledger is the only component allowed to change a balance. Every mutation
validates first and only then touches state, so a failed call leaves the
balances and the activity trail exactly as they were.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from config import Config
from models import ActivityType
from services.escrow_state import ActivityEntry, LedgerState
from utils.decimal_precision import MonetaryDecimal, Numeric, normalize_currency
from utils.exception_handler import InsufficientBalance
from utils.helpers import generate_id, utc_now

logger = logging.getLogger(__name__)


class Ledger:
    """Wallet ledger over an injected LedgerState"""

    def __init__(self, state: LedgerState, activity_limit: Optional[int] = None):
        self.state = state
        self.activity_limit = activity_limit or Config.ACTIVITY_LOG_LIMIT

    def get_balance(self, currency: str) -> Decimal:
        """Stored balance, or 0.00 for a currency never seen"""
        code = normalize_currency(currency)
        return self.state.balances.get(code, MonetaryDecimal.ZERO)

    def credit(
        self,
        currency: str,
        amount: Numeric,
        activity_type: ActivityType = ActivityType.DEPOSIT,
        description: str = "",
        related_escrow_id: Optional[str] = None,
    ) -> Decimal:
        code = normalize_currency(currency)
        value = MonetaryDecimal.validate_positive(amount)

        new_balance = MonetaryDecimal.add(self.get_balance(code), value)
        self.state.balances[code] = new_balance
        self.record_activity(self._entry(activity_type, value, code, description, related_escrow_id))

        logger.info(f"💰 LEDGER_CREDIT: +{value} {code} ({activity_type.value}) -> balance {new_balance}")
        return new_balance

    def debit(
        self,
        currency: str,
        amount: Numeric,
        activity_type: ActivityType = ActivityType.TRANSFER,
        description: str = "",
        related_escrow_id: Optional[str] = None,
    ) -> Decimal:
        code = normalize_currency(currency)
        value = MonetaryDecimal.validate_positive(amount)
        available = self.get_balance(code)

        if value > available:
            logger.warning(f"⚠️ LEDGER_INSUFFICIENT: debit {value} {code} > available {available}")
            raise InsufficientBalance(
                f"Insufficient {code} balance: {available} available, {value} requested",
                details={"currency": code, "available": str(available), "requested": str(value)},
            )

        new_balance = MonetaryDecimal.subtract(available, value)
        self.state.balances[code] = new_balance
        self.record_activity(self._entry(activity_type, value, code, description, related_escrow_id))

        logger.info(f"💸 LEDGER_DEBIT: -{value} {code} ({activity_type.value}) -> balance {new_balance}")
        return new_balance

    def record_activity(self, entry: ActivityEntry) -> ActivityEntry:
        """Prepend an entry and keep only the newest `activity_limit` entries"""
        self.state.activity.insert(0, entry)
        del self.state.activity[self.activity_limit:]
        return entry

    def record_release(self, currency: str, amount: Numeric, description: str, escrow_id: str) -> ActivityEntry:
        """Released funds leave the system: trail entry only, balance untouched"""
        entry = self._entry(
            ActivityType.RELEASE,
            MonetaryDecimal.validate_positive(amount),
            normalize_currency(currency),
            description,
            escrow_id,
        )
        return self.record_activity(entry)

    @property
    def latest_activity(self) -> Optional[ActivityEntry]:
        return self.state.activity[0] if self.state.activity else None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "balances": {
                code: MonetaryDecimal.to_wire(amount)
                for code, amount in sorted(self.state.balances.items())
            },
            "activity": [entry.to_dict() for entry in self.state.activity],
        }

    @staticmethod
    def _entry(activity_type, amount, currency, description, related_escrow_id) -> ActivityEntry:
        return ActivityEntry(
            id=generate_id("activity"),
            type=activity_type,
            amount=amount,
            currency=currency,
            description=description,
            timestamp=utc_now(),
            related_escrow_id=related_escrow_id,
        )
