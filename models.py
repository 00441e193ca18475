"""
Escrow Hold Coordinator - Database Schema
=========================================

Relational layout for the wallet ledger and escrow holds:
- Per-currency wallet balances with a bounded activity trail
- Escrow holds with an append-only status history and optimistic version
- Hold creation history and role-targeted notifications

The in-memory domain objects live in services/escrow_state.py; these tables
are only touched through services/state_store.py.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from sqlalchemy import (
    Integer, String, Numeric, DateTime, Boolean, Text, JSON,
    ForeignKey, Index, CheckConstraint, UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class EscrowStatus(Enum):
    """Escrow hold lifecycle states"""
    HELD = "held"
    APPROVED = "approved"
    RELEASED = "released"
    REFUNDED = "refunded"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


class ActorRole(Enum):
    """Roles that can act on the ledger and holds"""
    ADMIN = "admin"
    CLIENT = "client"


class ActivityType(Enum):
    """Wallet activity entry kinds"""
    DEPOSIT = "deposit"
    TRANSFER = "transfer"
    HOLD = "hold"
    RELEASE = "release"
    REFUND = "refund"


class NotificationTarget(Enum):
    ADMIN = "admin"
    CLIENT = "client"
    SELLER = "seller"
    ALL = "all"


# Statuses whose amount is still reserved out of the wallet balance
FUNDS_AT_RISK_STATUSES = frozenset({
    EscrowStatus.HELD,
    EscrowStatus.APPROVED,
    EscrowStatus.DISPUTED,
})

# Statuses that credit the hold amount back to the wallet
CREDIT_BACK_STATUSES = frozenset({
    EscrowStatus.REFUNDED,
    EscrowStatus.CANCELLED,
})

_STATUS_VALUES = ", ".join(f"'{status.value}'" for status in EscrowStatus)


# ============================================================================
# WALLET LEDGER
# ============================================================================

class WalletBalance(Base):
    """Per-currency wallet balance"""
    __tablename__ = 'wallet_balances'

    currency: Mapped[str] = mapped_column(String(10), primary_key=True)  # USD, EUR, USDT, ...
    balance: Mapped[Decimal] = mapped_column(Numeric(20, 2), default=0, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint('balance >= 0', name='ck_wallet_balance_non_negative'),
    )


class WalletActivity(Base):
    """Bounded wallet activity trail (newest first by position)"""
    __tablename__ = 'wallet_activity'

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)  # 0 = newest
    activity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    related_escrow_id: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    __table_args__ = (
        Index('ix_wallet_activity_position', 'position'),
        CheckConstraint('amount > 0', name='ck_wallet_activity_amount_positive'),
    )


# ============================================================================
# ESCROW HOLDS
# ============================================================================

class EscrowHoldRecord(Base):
    """Escrow hold funded from the wallet ledger"""
    __tablename__ = 'escrow_holds'

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    platform: Mapped[str] = mapped_column(String(100), nullable=False)
    payment_methods: Mapped[list] = mapped_column(JSON, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=EscrowStatus.HELD.value, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    client_token: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    # Optimistic concurrency counter, bumped on every applied transition
    version: Mapped[int] = mapped_column(Integer, default=1, server_default="1", nullable=False)

    status_history: Mapped[list["EscrowStatusChange"]] = relationship(
        "EscrowStatusChange",
        back_populates="hold",
        order_by="EscrowStatusChange.sequence",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name='ck_escrow_hold_status_valid'),
        CheckConstraint('amount > 0', name='ck_escrow_hold_amount_positive'),
        Index('ix_escrow_holds_status_created', 'status', 'created_at'),
    )


class EscrowStatusChange(Base):
    """Append-only status history row (sequence 0 = oldest)"""
    __tablename__ = 'escrow_status_history'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    escrow_id: Mapped[str] = mapped_column(String(40), ForeignKey('escrow_holds.id'), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(String(20), nullable=False)
    note: Mapped[str] = mapped_column(Text, default="", nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    hold: Mapped["EscrowHoldRecord"] = relationship("EscrowHoldRecord", back_populates="status_history")

    __table_args__ = (
        UniqueConstraint('escrow_id', 'sequence', name='uq_escrow_status_sequence'),
    )


class EscrowHistoryRecord(Base):
    """Hold creation summary shown on the history page"""
    __tablename__ = 'escrow_history'

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    escrow_id: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class NotificationRecord(Base):
    """Role-targeted notification (bounded, newest first by position)"""
    __tablename__ = 'notifications'

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    target: Mapped[str] = mapped_column(String(20), nullable=False)
    escrow_id: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        CheckConstraint("target IN ('admin', 'client', 'seller', 'all')", name='ck_notification_target_valid'),
        Index('ix_notifications_target_position', 'target', 'position'),
    )
