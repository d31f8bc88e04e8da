"""Leave ledger ORM models: LeaveGrant, LeaveConsumption, LeavePolicy, CompanyCalendarDay."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_ledger.common.audit import AuditMixin, utcnow
from leave_ledger.common.constants import ConsumptionState, MinUnit
from leave_ledger.database import Base

HOURS = sa.Numeric(10, 4)


class LeaveGrant(Base):
    """A batch of entitlement hours. Balance is derived from its consumptions."""

    __tablename__ = "leave_grants"
    __table_args__ = (
        sa.CheckConstraint("quantity >= 0", name="ck_leave_grant_quantity"),
        sa.Index("ix_leave_grants_owner", "user_id", "leave_type_id", "granted_on"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    leave_type_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(HOURS, nullable=False)
    granted_on: Mapped[date] = mapped_column(sa.Date, nullable=False)
    expires_on: Mapped[Optional[date]] = mapped_column(sa.Date)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )

    # Relationships
    consumptions: Mapped[list[LeaveConsumption]] = relationship(
        back_populates="grant"
    )

    def __repr__(self) -> str:
        return f"<LeaveGrant {self.id} {self.quantity}h granted {self.granted_on}>"


class LeaveConsumption(Base, AuditMixin):
    """Hours drawn from one grant for one request on one date."""

    __tablename__ = "leave_consumptions"
    __table_args__ = (
        sa.CheckConstraint("quantity > 0", name="ck_leave_consumption_quantity"),
        sa.Index("ix_leave_consumptions_request", "request_id"),
        sa.Index("ix_leave_consumptions_grant_state", "grant_id", "state"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    grant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_grants.id"), nullable=False
    )
    request_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    consumed_on: Mapped[date] = mapped_column(sa.Date, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(HOURS, nullable=False)
    state: Mapped[ConsumptionState] = mapped_column(
        sa.Enum(ConsumptionState, name="consumption_state"),
        nullable=False,
    )
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)

    # Relationships
    grant: Mapped[LeaveGrant] = relationship(back_populates="consumptions")

    def __repr__(self) -> str:
        return (
            f"<LeaveConsumption {self.request_id} {self.consumed_on} "
            f"{self.quantity}h {self.state.value}>"
        )


class LeavePolicy(Base):
    """Per-company booking rules for a leave type; company_id NULL is the default row."""

    __tablename__ = "leave_policies"
    __table_args__ = (
        sa.UniqueConstraint(
            "company_id", "leave_type_id", name="uq_leave_policy_company_type"
        ),
        sa.Index(
            "uq_leave_policy_default_type",
            "leave_type_id",
            unique=True,
            postgresql_where=sa.text("company_id IS NULL"),
            sqlite_where=sa.text("company_id IS NULL"),
        ),
        sa.CheckConstraint(
            "min_unit IN ('1h', '0.5d', '1d')", name="ck_leave_policy_min_unit"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    leave_type_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    business_day_only: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.true()
    )
    blackout_dates: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)
    allow_negative: Mapped[bool] = mapped_column(
        sa.Boolean, default=False, server_default=sa.false()
    )
    min_unit: Mapped[str] = mapped_column(
        sa.String(4), default=MinUnit.one_hour.value, nullable=False
    )
    day_hours: Mapped[Decimal] = mapped_column(
        sa.Numeric(4, 2), default=Decimal("8"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.true()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=utcnow,
        server_default=sa.func.now(),
        onupdate=utcnow,
    )


class CompanyCalendarDay(Base):
    """Explicit business-day override for one company date."""

    __tablename__ = "company_calendar_days"
    __table_args__ = (
        sa.UniqueConstraint("company_id", "calendar_date", name="uq_company_calendar_day"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    company_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    calendar_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    is_business_day: Mapped[bool] = mapped_column(sa.Boolean, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(sa.Text)
