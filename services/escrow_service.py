"""
Escrow Service
==============

Unit-of-work coordinator in front of the Ledger and EscrowRegistry.

Each mutating call runs under one lock:
1. snapshot the state
2. run the ledger / registry operation and record history, notifications
3. persist through the StateStore
4. on any failure restore the snapshot and re-raise

Notifications are dispatched and audit lines written only after the save
succeeded; neither can fail the operation. When the store itself reports a
version conflict the live state is reloaded from the store, so the next
request works against what another process committed.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

from config import Config
from models import ActivityType, ActorRole, EscrowStatus, NotificationTarget
from services.audit_logger import AuditLogger
from services.escrow_registry import EscrowRegistry
from services.escrow_state import ActivityEntry, EscrowHold, EscrowState, HistoryEntry, Notification
from services.ledger import Ledger
from services.notification_service import NotificationService
from services.state_store import StateStore
from utils.decimal_precision import MonetaryDecimal
from utils.escrow_state_validator import EscrowStateValidator
from utils.exception_handler import ConcurrentModification, EscrowError, Forbidden
from utils.helpers import generate_id

logger = logging.getLogger(__name__)


class EscrowService:
    def __init__(
        self,
        store: StateStore,
        audit_logger: Optional[AuditLogger] = None,
        state: Optional[EscrowState] = None,
    ):
        self.store = store
        self.state = state or EscrowState()
        self.ledger = Ledger(self.state.wallet)
        self.registry = EscrowRegistry(self.state, self.ledger)
        self.notifications = NotificationService(self.state)
        self.audit = audit_logger or AuditLogger()
        self._lock = threading.RLock()
        self._outbox: List[Notification] = []
        self._audit_queue: List[Dict[str, Any]] = []

    def bootstrap(self) -> "EscrowService":
        """Load the persisted state into the live state object"""
        with self._lock:
            self.state.restore(self.store.load())
        logger.info(
            f"🚀 ESCROW_SERVICE_READY: {len(self.state.escrows)} holds, "
            f"balances={self.ledger.snapshot()['balances']}"
        )
        return self

    @contextmanager
    def _unit_of_work(self, operation: str):
        with self._lock:
            snapshot = self.state.clone()
            self._outbox = []
            self._audit_queue = []
            saving = False
            try:
                yield
                saving = True
                self.store.save(self.state)
            except ConcurrentModification as e:
                if saving:
                    self.state.restore(self.store.load())
                    logger.warning(f"🔄 {operation.upper()}_CONFLICT: reloaded persisted state: {e.message}")
                else:
                    self.state.restore(snapshot)
                    logger.info(f"↩️ {operation.upper()}_REJECTED: {e.code}: {e.message}")
                raise
            except EscrowError as e:
                self.state.restore(snapshot)
                logger.info(f"↩️ {operation.upper()}_REJECTED: {e.code}: {e.message}")
                raise
            except Exception as e:
                self.state.restore(snapshot)
                logger.error(f"❌ {operation.upper()}_FAILED: state rolled back: {e}")
                raise
            outbox, audit_queue = self._outbox, self._audit_queue
            self._outbox, self._audit_queue = [], []

        for notification in outbox:
            self.notifications.dispatch(notification)
        for entry in audit_queue:
            self.audit.log_operation(**entry)

    def _notify(self, target: NotificationTarget, message: str, escrow_id=None, status=None) -> None:
        self._outbox.append(self.notifications.record(target, message, escrow_id=escrow_id, status=status))

    def _audit(self, action: str, actor: str, target_type: str, target_id=None, **details) -> None:
        self._audit_queue.append(
            {"action": action, "actor": actor, "target_type": target_type, "target_id": target_id, "details": details}
        )

    # ------------------------------------------------------------------
    # Wallet
    # ------------------------------------------------------------------

    def wallet(self) -> Dict[str, Any]:
        with self._lock:
            return self.ledger.snapshot()

    def deposit(
        self,
        amount,
        currency: str = "USD",
        source: str = "manual",
        actor: ActorRole = ActorRole.CLIENT,
    ) -> Tuple[Dict[str, Any], ActivityEntry]:
        with self._unit_of_work("deposit"):
            new_balance = self.ledger.credit(
                currency,
                amount,
                activity_type=ActivityType.DEPOSIT,
                description=f"{actor.value} deposit via {source or 'manual'}",
            )
            entry = self.ledger.latest_activity
            self._audit("wallet_deposit", actor.value, "wallet", entry.currency,
                        amount=str(entry.amount), balance=str(new_balance))
        return self.wallet(), entry

    def transfer(
        self,
        amount,
        currency: str = "USD",
        destination: str = "external",
        memo: str = "",
        actor: ActorRole = ActorRole.ADMIN,
    ) -> Tuple[Dict[str, Any], ActivityEntry]:
        if actor != ActorRole.ADMIN:
            raise Forbidden("Only admins may transfer funds out of the wallet")
        destination = destination or "external"
        description = f"Transfer to {destination}" + (f" ({memo})" if memo else "")
        with self._unit_of_work("transfer"):
            new_balance = self.ledger.debit(
                currency, amount, activity_type=ActivityType.TRANSFER, description=description
            )
            entry = self.ledger.latest_activity
            self._audit("wallet_transfer", actor.value, "wallet", entry.currency,
                        amount=str(entry.amount), destination=destination, balance=str(new_balance))
        return self.wallet(), entry

    # ------------------------------------------------------------------
    # Escrow holds
    # ------------------------------------------------------------------

    def create_hold(
        self,
        client_token: str,
        platform: str,
        payment_methods: List[Dict[str, Any]],
        amount,
        currency: str = "USD",
        notes: Optional[str] = None,
        expires_at=None,
    ) -> EscrowHold:
        with self._unit_of_work("create_hold"):
            hold = self.registry.create_hold(
                client_token, platform, payment_methods, amount, currency, notes, expires_at,
                actor=ActorRole.CLIENT,
            )
            self.state.history.insert(
                0,
                HistoryEntry(
                    id=generate_id("history"),
                    escrow_id=hold.id,
                    platform=hold.platform,
                    amount=hold.amount,
                    currency=hold.currency,
                    created_at=hold.created_at,
                ),
            )
            self._notify(
                NotificationTarget.ADMIN,
                f"New escrow created for {hold.platform}",
                escrow_id=hold.id,
                status=hold.status.value,
            )
            self._audit("escrow_created", ActorRole.CLIENT.value, "escrow", hold.id,
                        amount=MonetaryDecimal.to_wire(hold.amount), currency=hold.currency)
        return hold

    def admin_transition(
        self,
        hold_id: str,
        status,
        note: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> EscrowHold:
        target = EscrowStateValidator.parse_status(status)
        EscrowStateValidator.check_requestable(target, ActorRole.ADMIN)

        with self._unit_of_work("admin_transition"):
            before = self.registry.get_by_id(hold_id)
            previous, version = before.status, before.version
            hold = self.registry.transition(
                hold_id, target, ActorRole.ADMIN, note,
                is_client_actor=False, expected_version=expected_version,
            )
            if hold.version != version:
                recipient = (
                    NotificationTarget.SELLER
                    if target in (EscrowStatus.APPROVED, EscrowStatus.RELEASED)
                    else NotificationTarget.CLIENT
                )
                self._notify(recipient, f"Escrow {hold.id} marked as {target.value}",
                             escrow_id=hold.id, status=target.value)
                self._audit("escrow_status_changed", ActorRole.ADMIN.value, "escrow", hold.id,
                            previous=previous.value, status=target.value, note=note or "")
        if hold.version != version:
            self._log_settled(hold)
        return hold

    def client_transition(
        self,
        hold_id: str,
        status,
        client_token: str,
        note: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> EscrowHold:
        target = EscrowStateValidator.parse_status(status)
        EscrowStateValidator.check_requestable(target, ActorRole.CLIENT)

        with self._unit_of_work("client_transition"):
            known = self.registry.find(hold_id)
            version = known.version if known else None
            hold = self.registry.transition(
                hold_id, target, ActorRole.CLIENT, note,
                is_client_actor=True, client_token=client_token, expected_version=expected_version,
            )
            if hold.version != version:
                action = "flagged a dispute on" if target == EscrowStatus.DISPUTED else "cancelled"
                self._notify(NotificationTarget.ADMIN, f"Client {action} escrow {hold.id}",
                             escrow_id=hold.id, status=target.value)
                self._audit("escrow_status_changed", ActorRole.CLIENT.value, "escrow", hold.id,
                            status=target.value, note=note or "")
        if hold.version != version:
            self._log_settled(hold)
        return hold

    @staticmethod
    def _log_settled(hold: EscrowHold) -> None:
        if EscrowStateValidator.is_terminal_state(hold.status):
            logger.info(
                f"🏁 ESCROW_SETTLED: {hold.id} {hold.status.value} "
                f"{MonetaryDecimal.format_amount(hold.amount, hold.currency)}"
            )

    def list_escrows(self) -> List[EscrowHold]:
        with self._lock:
            return self.registry.list_all()

    def list_client_escrows(self, client_token: str) -> List[EscrowHold]:
        with self._lock:
            return self.registry.list_by_client(client_token)

    def get_escrow(self, hold_id: str) -> EscrowHold:
        with self._lock:
            return self.registry.get_by_id(hold_id)

    def public_escrow(self, hold_id: str) -> Dict[str, Any]:
        with self._lock:
            return self.registry.public_view(hold_id)

    # ------------------------------------------------------------------
    # History & notifications
    # ------------------------------------------------------------------

    def history(self, limit: Optional[int] = None) -> List[HistoryEntry]:
        with self._lock:
            return list(self.state.history[: limit or Config.HISTORY_LIMIT])

    def notifications_for(self, role: str) -> List[Notification]:
        with self._lock:
            return self.notifications.for_role(role)

    def mark_notification_read(self, notification_id: str, role: Optional[str] = None) -> Notification:
        with self._unit_of_work("mark_notification_read"):
            notification = self.notifications.mark_read(notification_id, role)
        return notification
