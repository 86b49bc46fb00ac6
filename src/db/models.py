"""SQLAlchemy ORM models for compliance engine state."""

from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


class TenantDB(Base):
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    name: Mapped[str] = mapped_column(String, default="")
    region: Mapped[str] = mapped_column(String, default="AU")
    settings: Mapped[dict] = mapped_column(JSONType, default=dict)
    status: Mapped[str] = mapped_column(String, default="active", index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class CustomerDB(Base):
    __tablename__ = "customers"
    __table_args__ = (UniqueConstraint("tenant_id", "customer_id"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    customer_id: Mapped[str] = mapped_column(String, index=True)
    first_name: Mapped[str] = mapped_column(String, default="")
    last_name: Mapped[str] = mapped_column(String, default="")
    date_of_birth: Mapped[str | None] = mapped_column(String, nullable=True)
    country: Mapped[str | None] = mapped_column(String, nullable=True)
    risk_level: Mapped[str] = mapped_column(String, default="low")
    is_pep: Mapped[bool] = mapped_column(Boolean, default=False)
    is_sanctioned: Mapped[bool] = mapped_column(Boolean, default=False)
    verification_status: Mapped[str] = mapped_column(String, default="unverified")
    requires_edd: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    ocdd_last_review_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    ocdd_next_review_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class TransactionDB(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    transaction_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    customer_id: Mapped[str] = mapped_column(String, index=True)
    amount: Mapped[float] = mapped_column(Float)
    currency: Mapped[str] = mapped_column(String)
    amount_local: Mapped[float | None] = mapped_column(Float, nullable=True)
    direction: Mapped[str] = mapped_column(String, default="outgoing")
    transaction_type: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    requires_ttr: Mapped[bool] = mapped_column(Boolean, default=False)
    ttr_reference: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    risk_score: Mapped[float] = mapped_column(Float, default=0.0)
    risk_level: Mapped[str] = mapped_column(String, default="low")
    risk_factors: Mapped[list] = mapped_column(JSONType, default=list)
    flagged_for_review: Mapped[bool] = mapped_column(Boolean, default=False)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class PendingReportDB(Base):
    __tablename__ = "pending_reports"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    report_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    report_type: Mapped[str] = mapped_column(String, index=True)
    entity_id: Mapped[str] = mapped_column(String)
    customer_id: Mapped[str | None] = mapped_column(String, nullable=True)
    reference: Mapped[str | None] = mapped_column(String, nullable=True)
    deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String, default="pending", index=True)
    amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class PepScreeningDB(Base):
    __tablename__ = "pep_screenings"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    screening_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    customer_id: Mapped[str] = mapped_column(String, index=True)
    is_pep: Mapped[bool] = mapped_column(Boolean, default=False)
    screened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class SanctionsScreeningDB(Base):
    __tablename__ = "sanctions_screenings"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    screening_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    customer_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    screened_first_name: Mapped[str] = mapped_column(String, default="")
    screened_last_name: Mapped[str] = mapped_column(String, default="")
    screened_dob: Mapped[str | None] = mapped_column(String, nullable=True)
    screened_country: Mapped[str | None] = mapped_column(String, nullable=True)
    is_match: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    match_score: Mapped[float] = mapped_column(Float, default=0.0)
    matched_entities: Mapped[list] = mapped_column(JSONType, default=list)
    status: Mapped[str] = mapped_column(String, default="clear")
    screening_sources: Mapped[list] = mapped_column(JSONType, default=list)
    screened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)


class OCDDScheduleDB(Base):
    __tablename__ = "ocdd_schedules"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    schedule_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    customer_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    schedule_type: Mapped[str] = mapped_column(String, default="periodic_review")
    schedule_name: Mapped[str] = mapped_column(String, default="Periodic review")
    auto_screen_sanctions: Mapped[bool] = mapped_column(Boolean, default=True)
    auto_screen_pep: Mapped[bool] = mapped_column(Boolean, default=True)
    auto_check_documents: Mapped[bool] = mapped_column(Boolean, default=True)
    low_risk_frequency_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    medium_risk_frequency_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    high_risk_frequency_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    next_scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    last_executed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_result: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default="active", index=True)
    execution_count: Mapped[int] = mapped_column(Integer, default=0)
    consecutive_failures: Mapped[int] = mapped_column(Integer, default=0)


class OCDDExecutionDB(Base):
    """Append-only: rows are inserted once and never updated."""

    __tablename__ = "ocdd_executions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    execution_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    schedule_id: Mapped[str] = mapped_column(String, index=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    customer_id: Mapped[str | None] = mapped_column(String, nullable=True)
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    result: Mapped[str] = mapped_column(String, index=True)
    checks_performed: Mapped[list] = mapped_column(JSONType, default=list)
    findings: Mapped[list] = mapped_column(JSONType, default=list)
    executed_by: Mapped[str] = mapped_column(String, default="system")


class AlertMarkerDB(Base):
    __tablename__ = "alert_markers"
    __table_args__ = (UniqueConstraint("tenant_id", "alert_type", "day"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    alert_type: Mapped[str] = mapped_column(String)
    day: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class AuditLogDB(Base):
    """Append-only audit trail. ``tenant_id`` is null for system-level entries."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    action_type: Mapped[str] = mapped_column(String, index=True)
    entity_type: Mapped[str] = mapped_column(String)
    entity_id: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str] = mapped_column(String, default="")
    metadata_: Mapped[dict] = mapped_column("metadata", JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
