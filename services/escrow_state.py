"""
Escrow State Objects
====================

Plain in-memory records owned by the Ledger and EscrowRegistry. EscrowState is
the single store object handed to both services and to the persistence adapters
(services/state_store.py); nothing here is module-global.
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from models import ActivityType, EscrowStatus
from utils.decimal_precision import MonetaryDecimal
from utils.helpers import parse_datetime, to_iso

logger = logging.getLogger(__name__)


@dataclass
class ActivityEntry:
    id: str
    type: ActivityType
    amount: Decimal
    currency: str
    description: str
    timestamp: datetime
    related_escrow_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "type": self.type.value,
            "amount": MonetaryDecimal.to_wire(self.amount),
            "currency": self.currency,
            "description": self.description,
            "timestamp": to_iso(self.timestamp),
        }
        if self.related_escrow_id:
            data["relatedEscrowId"] = self.related_escrow_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivityEntry":
        return cls(
            id=data["id"],
            type=ActivityType(data["type"]),
            amount=MonetaryDecimal.quantize(data["amount"]),
            currency=data["currency"],
            description=data.get("description", ""),
            timestamp=parse_datetime(data["timestamp"]),
            related_escrow_id=data.get("relatedEscrowId"),
        )


@dataclass
class StatusChange:
    status: EscrowStatus
    actor: str
    timestamp: datetime
    note: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "actor": self.actor,
            "timestamp": to_iso(self.timestamp),
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatusChange":
        return cls(
            status=EscrowStatus(data["status"]),
            actor=data["actor"],
            timestamp=parse_datetime(data["timestamp"]),
            note=data.get("note", ""),
        )


@dataclass
class EscrowHold:
    """A payment hold reserved out of the wallet ledger"""

    id: str
    platform: str
    payment_methods: List[Dict[str, Any]]
    amount: Decimal
    currency: str
    notes: str
    status: EscrowStatus
    created_at: datetime
    client_token: str
    expires_at: Optional[datetime] = None
    status_history: List[StatusChange] = field(default_factory=list)  # newest first
    version: int = 1

    def public_dict(self) -> Dict[str, Any]:
        """Projection safe to show on a share link: no client token, no version"""
        return {
            "id": self.id,
            "platform": self.platform,
            "paymentMethods": copy.deepcopy(self.payment_methods),
            "amount": MonetaryDecimal.to_wire(self.amount),
            "currency": self.currency,
            "notes": self.notes,
            "status": self.status.value,
            "expiresAt": to_iso(self.expires_at),
            "createdAt": to_iso(self.created_at),
            "statusHistory": [change.to_dict() for change in self.status_history],
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.public_dict()
        data["clientToken"] = self.client_token
        data["version"] = self.version
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EscrowHold":
        return cls(
            id=data["id"],
            platform=data["platform"],
            payment_methods=copy.deepcopy(data.get("paymentMethods") or []),
            amount=MonetaryDecimal.quantize(data["amount"]),
            currency=data["currency"],
            notes=data.get("notes") or "",
            status=EscrowStatus(data["status"]),
            created_at=parse_datetime(data["createdAt"]),
            client_token=data.get("clientToken") or "",
            expires_at=parse_datetime(data.get("expiresAt")),
            status_history=[StatusChange.from_dict(item) for item in data.get("statusHistory", [])],
            version=int(data.get("version", 1)),
        )


@dataclass
class HistoryEntry:
    id: str
    escrow_id: str
    platform: str
    amount: Decimal
    currency: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "escrowId": self.escrow_id,
            "platform": self.platform,
            "amount": MonetaryDecimal.to_wire(self.amount),
            "currency": self.currency,
            "createdAt": to_iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        return cls(
            id=data["id"],
            escrow_id=data["escrowId"],
            platform=data["platform"],
            amount=MonetaryDecimal.quantize(data["amount"]),
            currency=data["currency"],
            created_at=parse_datetime(data["createdAt"]),
        )


@dataclass
class Notification:
    id: str
    target: str
    message: str
    created_at: datetime
    escrow_id: Optional[str] = None
    status: Optional[str] = None
    read: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "target": self.target,
            "escrowId": self.escrow_id,
            "status": self.status,
            "message": self.message,
            "createdAt": to_iso(self.created_at),
            "read": self.read,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Notification":
        return cls(
            id=data["id"],
            target=data["target"],
            message=data.get("message", ""),
            created_at=parse_datetime(data["createdAt"]),
            escrow_id=data.get("escrowId"),
            status=data.get("status"),
            read=bool(data.get("read", False)),
        )


@dataclass
class LedgerState:
    balances: Dict[str, Decimal] = field(default_factory=dict)
    activity: List[ActivityEntry] = field(default_factory=list)  # newest first


@dataclass
class EscrowState:
    """Everything that gets persisted after a mutation"""

    wallet: LedgerState = field(default_factory=LedgerState)
    escrows: List[EscrowHold] = field(default_factory=list)  # newest first
    history: List[HistoryEntry] = field(default_factory=list)  # newest first
    notifications: List[Notification] = field(default_factory=list)  # newest first

    def clone(self) -> "EscrowState":
        return copy.deepcopy(self)

    def restore(self, snapshot: "EscrowState") -> None:
        """Roll this object back in place so existing references stay valid"""
        self.wallet.balances = snapshot.wallet.balances
        self.wallet.activity = snapshot.wallet.activity
        self.escrows = snapshot.escrows
        self.history = snapshot.history
        self.notifications = snapshot.notifications

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wallet": {
                "balances": {
                    code: MonetaryDecimal.to_wire(amount)
                    for code, amount in sorted(self.wallet.balances.items())
                },
                "activity": [entry.to_dict() for entry in self.wallet.activity],
            },
            "escrows": [hold.to_dict() for hold in self.escrows],
            "history": [entry.to_dict() for entry in self.history],
            "notifications": [item.to_dict() for item in self.notifications],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EscrowState":
        data = data or {}
        wallet = data.get("wallet") or {}
        return cls(
            wallet=LedgerState(
                balances={
                    code.upper(): MonetaryDecimal.quantize(amount)
                    for code, amount in (wallet.get("balances") or {}).items()
                },
                activity=[ActivityEntry.from_dict(item) for item in wallet.get("activity") or []],
            ),
            escrows=[EscrowHold.from_dict(item) for item in data.get("escrows") or []],
            history=[HistoryEntry.from_dict(item) for item in data.get("history") or []],
            notifications=[Notification.from_dict(item) for item in data.get("notifications") or []],
        )
