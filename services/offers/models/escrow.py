"""
Escrow Database Models
======================

SQLAlchemy ORM models for escrow records and settlement tasks.

``escrow_records`` is keyed by offer id, so a second funding request for
the same offer cannot create a second record. ``settlement_tasks`` holds
pending ledger work and survives restarts.

Version: 0.1.0
"""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Column,
    Enum as SQLEnum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from shared.blockchain import LedgerRequestKind
from shared.database.postgres import Base, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _values(enum_cls: type[Enum]) -> list[str]:
    return [m.value for m in enum_cls]


class EscrowStatus(str, Enum):
    """Ledger-side status of a funding or settlement request."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class EscrowRecordModel(Base):
    """
    SQLAlchemy model for escrow records.

    Created once per offer by the funding request; updated only by
    confirmation handling and queue reconciliation.
    """

    __tablename__ = "escrow_records"

    offer_id = Column(String(64), primary_key=True)

    amount = Column(BigInteger, nullable=False)
    destination = Column(String(128), nullable=False)

    # Funding leg
    ledger_handle = Column(String(128))
    status = Column(
        SQLEnum(EscrowStatus, native_enum=False, length=16, values_callable=_values),
        nullable=False,
        default=EscrowStatus.PENDING,
    )

    # Settlement leg
    settlement_handle = Column(String(128))
    settlement_status = Column(
        SQLEnum(EscrowStatus, native_enum=False, length=16, values_callable=_values),
    )

    last_error = Column(Text)

    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    def handle_for(self, kind: LedgerRequestKind) -> str | None:
        if kind == LedgerRequestKind.FUND:
            return self.ledger_handle
        return self.settlement_handle

    def status_for(self, kind: LedgerRequestKind) -> EscrowStatus | None:
        if kind == LedgerRequestKind.FUND:
            return self.status
        return self.settlement_status

    def set_leg(
        self,
        kind: LedgerRequestKind,
        status: EscrowStatus,
        handle: str | None = None,
    ) -> None:
        if kind == LedgerRequestKind.FUND:
            self.status = status
            if handle:
                self.ledger_handle = handle
        else:
            self.settlement_status = status
            if handle:
                self.settlement_handle = handle


class SettlementTaskModel(Base):
    """SQLAlchemy model for pending ledger work."""

    __tablename__ = "settlement_tasks"
    __table_args__ = (
        UniqueConstraint("offer_id", "kind", name="uq_settlement_task_offer_kind"),
        Index("ix_settlement_tasks_due", "next_retry_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    offer_id = Column(String(64), nullable=False)
    kind = Column(
        SQLEnum(LedgerRequestKind, native_enum=False, length=16, values_callable=_values),
        nullable=False,
    )

    attempt_count = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False)
    next_retry_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    last_error = Column(Text)

    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    @property
    def exhausted(self) -> bool:
        return self.attempt_count >= self.max_attempts
