"""
EscrowService unit-of-work tests: rollback, notifications and audit fan-out
"""

from decimal import Decimal
from unittest.mock import Mock

import pytest

from models import ActorRole, EscrowStatus
from services.audit_logger import AuditLogger
from services.escrow_service import EscrowService
from services.state_store import InMemoryStateStore
from utils.exception_handler import (
    ConcurrentModification, Forbidden, InsufficientBalance, NotFound, ValidationError,
)

CLIENT = "client-session-1"
METHODS = [{"method": "paypal", "fields": {"email": "seller@example.com"}}]


class FailingStore(InMemoryStateStore):
    """Store whose next save raises"""

    def __init__(self):
        super().__init__()
        self.fail_next = False

    def save(self, state):
        if self.fail_next:
            self.fail_next = False
            raise IOError("disk full")
        super().save(state)


@pytest.fixture
def funded(service):
    service.deposit(100, "USD", source="bank")
    return service


class TestWalletOperations:

    def test_deposit_returns_wallet_and_entry(self, service):
        wallet, entry = service.deposit("25.5", "usd", source="card", actor=ActorRole.ADMIN)
        assert wallet["balances"] == {"USD": "25.50"}
        assert entry.description == "admin deposit via card"

    def test_transfer_is_admin_only(self, funded):
        with pytest.raises(Forbidden):
            funded.transfer(10, "USD", actor=ActorRole.CLIENT)

        wallet, entry = funded.transfer(10, "USD", destination="Seller bank", memo="trade 12")
        assert wallet["balances"]["USD"] == "90.00"
        assert entry.description == "Transfer to Seller bank (trade 12)"

    def test_failed_transfer_persists_nothing(self, funded, memory_store):
        saves = memory_store.save_count
        with pytest.raises(InsufficientBalance):
            funded.transfer(1000, "USD")
        assert memory_store.save_count == saves
        assert funded.wallet()["balances"]["USD"] == "100.00"


class TestHoldLifecycle:

    def test_create_records_history_and_admin_notification(self, funded):
        hold = funded.create_hold(CLIENT, "Binance P2P", METHODS, 40)

        assert funded.wallet()["balances"]["USD"] == "60.00"
        assert funded.history()[0].escrow_id == hold.id
        note = funded.notifications_for("admin")[0]
        assert note.message == "New escrow created for Binance P2P"
        assert note.escrow_id == hold.id
        assert funded.notifications_for("client") == []

    def test_admin_release_notifies_seller(self, funded):
        hold = funded.create_hold(CLIENT, "Paxful", METHODS, 40)
        funded.admin_transition(hold.id, "released")

        latest = funded.state.notifications[0]
        assert latest.target == "seller"
        assert latest.message == f"Escrow {hold.id} marked as released"

    def test_admin_refund_notifies_client(self, funded):
        hold = funded.create_hold(CLIENT, "Paxful", METHODS, 40)
        funded.admin_transition(hold.id, "refunded")

        assert funded.notifications_for("client")[0].message == f"Escrow {hold.id} marked as refunded"
        assert funded.wallet()["balances"]["USD"] == "100.00"

    def test_client_dispute_notifies_admin(self, funded):
        hold = funded.create_hold(CLIENT, "Paxful", METHODS, 40)
        funded.client_transition(hold.id, "disputed", CLIENT, note="no payment received")

        assert funded.notifications_for("admin")[0].message == f"Client flagged a dispute on escrow {hold.id}"

    def test_noop_transition_sends_nothing(self, funded):
        hold = funded.create_hold(CLIENT, "Paxful", METHODS, 40)
        funded.admin_transition(hold.id, "approved")
        count = len(funded.state.notifications)

        funded.admin_transition(hold.id, "approved")
        assert len(funded.state.notifications) == count

    def test_status_whitelists(self, funded):
        hold = funded.create_hold(CLIENT, "Paxful", METHODS, 40)
        with pytest.raises(ValidationError):
            funded.client_transition(hold.id, "released", CLIENT)
        with pytest.raises(ValidationError):
            funded.admin_transition(hold.id, "held")
        with pytest.raises(Forbidden):
            funded.admin_transition(hold.id, "cancelled")

    def test_foreign_client_cannot_see_hold(self, funded):
        hold = funded.create_hold(CLIENT, "Paxful", METHODS, 40)
        with pytest.raises(NotFound):
            funded.client_transition(hold.id, "cancelled", "someone-else")
        assert funded.list_client_escrows("someone-else") == []
        assert funded.get_escrow(hold.id).status == EscrowStatus.HELD

    def test_stale_version_rejected(self, funded):
        hold = funded.create_hold(CLIENT, "Paxful", METHODS, 40)
        funded.admin_transition(hold.id, "approved", expected_version=1)
        with pytest.raises(ConcurrentModification):
            funded.admin_transition(hold.id, "released", expected_version=1)

    def test_mark_notification_read(self, funded):
        funded.create_hold(CLIENT, "Paxful", METHODS, 40)
        note = funded.notifications_for("admin")[0]
        assert funded.mark_notification_read(note.id).read is True
        with pytest.raises(NotFound):
            funded.mark_notification_read("NT-missing")

    def test_mark_read_limited_to_visible_notifications(self, funded):
        funded.create_hold(CLIENT, "Paxful", METHODS, 40)
        note = funded.notifications_for("admin")[0]

        with pytest.raises(NotFound):
            funded.mark_notification_read(note.id, "client")
        assert note.read is False
        assert funded.mark_notification_read(note.id, "admin").read is True


class TestUnitOfWork:
    """A failed save rolls the live state back and suppresses side effects"""

    @pytest.fixture
    def failing(self):
        store = FailingStore()
        audit = Mock(spec=AuditLogger)
        service = EscrowService(store, audit).bootstrap()
        service.deposit(100, "USD")
        audit.reset_mock()
        return service, store, audit

    def test_create_hold_rolled_back(self, failing):
        service, store, audit = failing
        listener = Mock()
        service.notifications.subscribe(listener)
        store.fail_next = True

        with pytest.raises(IOError):
            service.create_hold(CLIENT, "Paxful", METHODS, 40)

        assert service.ledger.get_balance("USD") == Decimal("100.00")
        assert service.list_escrows() == []
        assert service.history() == []
        assert service.state.notifications == []
        listener.assert_not_called()
        audit.log_operation.assert_not_called()

    def test_transition_rolled_back(self, failing):
        service, store, audit = failing
        hold = service.create_hold(CLIENT, "Paxful", METHODS, 40)
        store.fail_next = True

        with pytest.raises(IOError):
            service.admin_transition(hold.id, "refunded")

        current = service.get_escrow(hold.id)
        assert current.status == EscrowStatus.HELD
        assert current.version == 1
        assert service.ledger.get_balance("USD") == Decimal("60.00")

    def test_ledger_reference_survives_rollback(self, failing):
        service, store, _ = failing
        store.fail_next = True
        with pytest.raises(IOError):
            service.deposit(5, "USD")

        service.deposit(5, "USD")
        assert service.ledger.state is service.state.wallet
        assert store.load().wallet.balances["USD"] == Decimal("105.00")

    def test_success_dispatches_and_audits(self, failing):
        service, _, audit = failing
        listener = Mock()
        service.notifications.subscribe(listener)

        hold = service.create_hold(CLIENT, "Paxful", METHODS, 40)

        listener.assert_called_once()
        assert listener.call_args[0][0].escrow_id == hold.id
        audit.log_operation.assert_called_once()
        assert audit.log_operation.call_args.kwargs["action"] == "escrow_created"

    def test_listener_errors_do_not_fail_operation(self, failing):
        service, _, _ = failing
        service.notifications.subscribe(Mock(side_effect=RuntimeError("socket closed")))

        hold = service.create_hold(CLIENT, "Paxful", METHODS, 40)
        assert service.get_escrow(hold.id).status == EscrowStatus.HELD

    def test_bootstrap_loads_persisted_state(self, failing):
        service, store, _ = failing
        service.create_hold(CLIENT, "Paxful", METHODS, 40)

        reloaded = EscrowService(store, Mock(spec=AuditLogger)).bootstrap()
        assert reloaded.wallet()["balances"] == {"USD": "60.00"}
        assert len(reloaded.list_client_escrows(CLIENT)) == 1
