"""
State Store Adapters
====================

Persistence for the combined escrow state. Every adapter implements

    load() -> EscrowState
    save(state: EscrowState) -> None

- InMemoryStateStore: tests and throwaway runs
- JsonFileStateStore: single JSON document, replaced atomically on each save
- SqlAlchemyStateStore: relational tables, one transaction per save, holds
  written with version-checked UPDATEs
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol, Set

import orjson
from sqlalchemy import delete, select, update
from sqlalchemy.orm import selectinload, sessionmaker

from config import Config
from database import managed_session
from models import (
    ActivityType, EscrowHistoryRecord, EscrowHoldRecord, EscrowStatus,
    EscrowStatusChange, NotificationRecord, WalletActivity, WalletBalance,
)
from services.escrow_state import (
    ActivityEntry, EscrowHold, EscrowState, HistoryEntry, LedgerState,
    Notification, StatusChange,
)
from utils.decimal_precision import MonetaryDecimal
from utils.exception_handler import ConcurrentModification
from utils.helpers import ensure_utc, utc_now
from utils.optimistic_locking import OptimisticLockManager

logger = logging.getLogger(__name__)


class StateStore(Protocol):
    def load(self) -> EscrowState: ...

    def save(self, state: EscrowState) -> None: ...


class InMemoryStateStore:
    """Keeps a private deep copy so callers can never alias persisted state"""

    def __init__(self, initial: Optional[EscrowState] = None):
        self._state = (initial or EscrowState()).clone()
        self.save_count = 0

    def load(self) -> EscrowState:
        return self._state.clone()

    def save(self, state: EscrowState) -> None:
        self._state = state.clone()
        self.save_count += 1


class JsonFileStateStore:
    """The whole state as one JSON document (amounts as 2dp strings)"""

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> EscrowState:
        if not self.path.exists():
            logger.warning(f"⚠️ JSON_STORE: {self.path} missing, initializing new datastore")
            state = EscrowState()
            self.save(state)
            return state

        raw = self.path.read_bytes()
        state = EscrowState.from_dict(orjson.loads(raw) if raw.strip() else {})
        logger.info(
            f"📂 JSON_STORE_LOADED: {len(state.escrows)} holds, "
            f"{len(state.wallet.balances)} currencies from {self.path}"
        )
        return state

    def save(self, state: EscrowState) -> None:
        payload = orjson.dumps(state.to_dict(), option=orjson.OPT_INDENT_2)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        # Write beside the target then swap, so a crash never leaves a torn file
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except Exception:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


class SqlAlchemyStateStore:
    """
    Relational store. Each save() is a single transaction: balance changes,
    log rewrites, new holds and version-checked hold updates commit together.

    Balances are written as deltas against what this process last saw, so
    several processes may share one database. Activity and notification logs
    are rewritten whole and the last writer wins.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self._hold_versions: Dict[str, int] = {}
        self._history_lengths: Dict[str, int] = {}
        self._history_ids: Set[str] = set()
        self._balances: Dict[str, object] = {}

    def load(self) -> EscrowState:
        with managed_session(self.session_factory) as session:
            balances = {
                row.currency: MonetaryDecimal.quantize(row.balance)
                for row in session.scalars(select(WalletBalance))
            }
            activity = [
                ActivityEntry(
                    id=row.id,
                    type=ActivityType(row.activity_type),
                    amount=MonetaryDecimal.quantize(row.amount),
                    currency=row.currency,
                    description=row.description,
                    timestamp=ensure_utc(row.timestamp),
                    related_escrow_id=row.related_escrow_id,
                )
                for row in session.scalars(select(WalletActivity).order_by(WalletActivity.position))
            ]
            holds = [
                self._hold_from_row(row)
                for row in session.scalars(
                    select(EscrowHoldRecord)
                    .options(selectinload(EscrowHoldRecord.status_history))
                    .order_by(EscrowHoldRecord.created_at.desc())
                )
            ]
            history = [
                HistoryEntry(
                    id=row.id,
                    escrow_id=row.escrow_id,
                    platform=row.platform,
                    amount=MonetaryDecimal.quantize(row.amount),
                    currency=row.currency,
                    created_at=ensure_utc(row.created_at),
                )
                for row in session.scalars(
                    select(EscrowHistoryRecord).order_by(EscrowHistoryRecord.created_at.desc())
                )
            ]
            notifications = [
                Notification(
                    id=row.id,
                    target=row.target,
                    message=row.message,
                    created_at=ensure_utc(row.created_at),
                    escrow_id=row.escrow_id,
                    status=row.status,
                    read=row.read,
                )
                for row in session.scalars(select(NotificationRecord).order_by(NotificationRecord.position))
            ]

        state = EscrowState(
            wallet=LedgerState(balances=balances, activity=activity),
            escrows=holds,
            history=history,
            notifications=notifications,
        )
        self._remember(state)
        logger.info(f"🗄️ SQL_STORE_LOADED: {len(holds)} holds, {len(balances)} currencies")
        return state

    def save(self, state: EscrowState) -> None:
        now = utc_now()
        with managed_session(self.session_factory) as session:
            lock_manager = OptimisticLockManager(session)

            for code, amount in state.wallet.balances.items():
                delta = amount - self._balances.get(code, 0)
                if delta:
                    self._apply_balance_delta(session, code, delta, now)

            session.execute(delete(WalletActivity))
            session.add_all(
                WalletActivity(
                    id=entry.id,
                    position=position,
                    activity_type=entry.type.value,
                    amount=entry.amount,
                    currency=entry.currency,
                    description=entry.description,
                    timestamp=entry.timestamp,
                    related_escrow_id=entry.related_escrow_id,
                )
                for position, entry in enumerate(state.wallet.activity)
            )

            for hold in state.escrows:
                known_version = self._hold_versions.get(hold.id)
                if known_version is None:
                    session.add(self._row_from_hold(hold))
                    session.add_all(self._history_rows(hold, start=0))
                elif hold.version != known_version:
                    lock_manager.versioned_update(
                        EscrowHoldRecord,
                        hold.id,
                        {"status": hold.status.value, "version": hold.version},
                        current_version=known_version,
                    )
                    session.add_all(self._history_rows(hold, start=self._history_lengths.get(hold.id, 0)))

            session.add_all(
                EscrowHistoryRecord(
                    id=entry.id,
                    escrow_id=entry.escrow_id,
                    platform=entry.platform,
                    amount=entry.amount,
                    currency=entry.currency,
                    created_at=entry.created_at,
                )
                for entry in state.history
                if entry.id not in self._history_ids
            )

            session.execute(delete(NotificationRecord))
            session.add_all(
                NotificationRecord(
                    id=item.id,
                    position=position,
                    target=item.target,
                    escrow_id=item.escrow_id,
                    status=item.status,
                    message=item.message,
                    created_at=item.created_at,
                    read=item.read,
                )
                for position, item in enumerate(state.notifications)
            )

            session.flush()
            # other processes may have moved balances since our last load
            state.wallet.balances.update(
                (row.currency, MonetaryDecimal.quantize(row.balance))
                for row in session.scalars(
                    select(WalletBalance).execution_options(populate_existing=True)
                )
            )

        self._remember(state)
        logger.debug(f"🗄️ SQL_STORE_SAVED: {len(state.escrows)} holds")

    @staticmethod
    def _apply_balance_delta(session, currency: str, delta, now) -> None:
        """
        Add delta to the stored balance in one guarded UPDATE.

        Raises:
            ConcurrentModification: the stored balance cannot absorb the delta
        """
        result = session.execute(
            update(WalletBalance)
            .where(WalletBalance.currency == currency, WalletBalance.balance + delta >= 0)
            .values(balance=WalletBalance.balance + delta, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            return

        if session.get(WalletBalance, currency) is None and delta > 0:
            session.add(WalletBalance(currency=currency, balance=delta, updated_at=now))
            return

        logger.warning(f"🔒 BALANCE_CONFLICT: {currency} cannot absorb {delta}")
        raise ConcurrentModification(
            f"{currency} balance was changed by another process",
            details={"currency": currency, "delta": MonetaryDecimal.to_wire(delta)},
        )

    def _remember(self, state: EscrowState) -> None:
        self._hold_versions = {hold.id: hold.version for hold in state.escrows}
        self._history_lengths = {hold.id: len(hold.status_history) for hold in state.escrows}
        self._history_ids = {entry.id for entry in state.history}
        self._balances = dict(state.wallet.balances)

    @staticmethod
    def _hold_from_row(row: EscrowHoldRecord) -> EscrowHold:
        return EscrowHold(
            id=row.id,
            platform=row.platform,
            payment_methods=list(row.payment_methods or []),
            amount=MonetaryDecimal.quantize(row.amount),
            currency=row.currency,
            notes=row.notes or "",
            status=EscrowStatus(row.status),
            created_at=ensure_utc(row.created_at),
            client_token=row.client_token,
            expires_at=ensure_utc(row.expires_at) if row.expires_at else None,
            # rows are oldest first, the domain list is newest first
            status_history=[
                StatusChange(
                    status=EscrowStatus(change.status),
                    actor=change.actor,
                    timestamp=ensure_utc(change.timestamp),
                    note=change.note,
                )
                for change in reversed(row.status_history)
            ],
            version=row.version,
        )

    @staticmethod
    def _row_from_hold(hold: EscrowHold) -> EscrowHoldRecord:
        return EscrowHoldRecord(
            id=hold.id,
            platform=hold.platform,
            payment_methods=hold.payment_methods,
            amount=hold.amount,
            currency=hold.currency,
            notes=hold.notes,
            status=hold.status.value,
            expires_at=hold.expires_at,
            created_at=hold.created_at,
            client_token=hold.client_token,
            version=hold.version,
        )

    @staticmethod
    def _history_rows(hold: EscrowHold, start: int):
        oldest_first = list(reversed(hold.status_history))
        return [
            EscrowStatusChange(
                escrow_id=hold.id,
                sequence=sequence,
                status=change.status.value,
                actor=change.actor,
                note=change.note,
                timestamp=change.timestamp,
            )
            for sequence, change in enumerate(oldest_first)
            if sequence >= start
        ]


def build_state_store(backend: Optional[str] = None) -> StateStore:
    """Pick the adapter named by STORAGE_BACKEND"""
    backend = (backend or Config.STORAGE_BACKEND).lower()
    if backend == "memory":
        return InMemoryStateStore()
    if backend == "json":
        return JsonFileStateStore(Config.DATA_STORE_PATH)
    if backend == "sql":
        from database import SessionLocal, create_tables

        create_tables()
        return SqlAlchemyStateStore(SessionLocal)
    raise ValueError(f"Unknown STORAGE_BACKEND: {backend!r}")
