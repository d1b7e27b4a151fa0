"""
SQLAlchemy Database Models

Stores the reconciled catalog and the audit trail of reconciliation runs:
- Establishments keyed by provider external id
- Position-ordered menu items and photos per establishment
- Run headers and the append-only per-input outcome log

Author: Khalil_Bannouri
Version: 1.0.0
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from reconciler.database import Base
from reconciler.pipeline.types import MatchType, OutcomeStatus, RunMode, RunStatus


class Establishment(Base):
    """
    A reconciled bar or restaurant.

    `external_id` is unique when present. Records created without one get
    an application-generated `record_key` instead; names are never used as
    a merge key.
    """
    __tablename__ = "establishments"

    # Primary Key
    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # =========================================================================
    # IDENTITY
    # =========================================================================
    record_key = Column(String(255), unique=True, nullable=False)
    external_id = Column(String(255), unique=True, nullable=True)
    source = Column(String(50), nullable=True)  # google, wolt, mock

    # =========================================================================
    # VENUE DETAILS
    # =========================================================================
    name = Column(String(255), nullable=False, index=True)
    address = Column(String(500), nullable=True)
    phone = Column(String(50), nullable=True)
    rating = Column(Float, nullable=True)
    review_count = Column(Integer, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Establishment(id={self.id}, name={self.name}, external_id={self.external_id})>"


class MenuItem(Base):
    """One menu line; `position` is its index in the source menu."""
    __tablename__ = "menu_items"
    __table_args__ = (
        UniqueConstraint("establishment_id", "position", name="uq_menu_items_position"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    establishment_id = Column(
        Integer,
        ForeignKey("establishments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")
    category = Column(String(255), nullable=True)
    image_url = Column(String(1000), nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<MenuItem(establishment_id={self.establishment_id}, position={self.position}, name={self.name})>"


class EstablishmentPhoto(Base):
    """One venue photo; `position` is its index in the provider's photo list."""
    __tablename__ = "establishment_photos"
    __table_args__ = (
        UniqueConstraint("establishment_id", "position", name="uq_establishment_photos_position"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    establishment_id = Column(
        Integer,
        ForeignKey("establishments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False)

    source_url = Column(String(1000), nullable=False)
    reference = Column(String(1000), nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    is_enhanced = Column(Boolean, default=False, nullable=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<EstablishmentPhoto(establishment_id={self.establishment_id}, position={self.position})>"


class ReconciliationRun(Base):
    """Header row of one reconciliation run."""
    __tablename__ = "reconciliation_runs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    run_id = Column(String(36), unique=True, nullable=False, index=True)
    mode = Column(Enum(RunMode), nullable=False)
    status = Column(Enum(RunStatus), default=RunStatus.RUNNING, nullable=False, index=True)

    total_inputs = Column(Integer, nullable=False, default=0)
    config = Column(Text, nullable=True)   # JSON of the RunConfig
    summary = Column(Text, nullable=True)  # JSON of the RunSummary

    started_at = Column(DateTime(timezone=True), server_default=func.now())
    finished_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<ReconciliationRun(run_id={self.run_id}, mode={self.mode}, status={self.status})>"


class RunOutcomeRecord(Base):
    """Append-only outcome of one input name in one run."""
    __tablename__ = "run_outcomes"
    __table_args__ = (
        Index("ix_run_outcomes_mode_input", "mode", "input_name"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    run_id = Column(
        String(36),
        ForeignKey("reconciliation_runs.run_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    mode = Column(Enum(RunMode), nullable=False)
    input_name = Column(String(255), nullable=False)
    status = Column(Enum(OutcomeStatus), nullable=False)

    items_written = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    external_id = Column(String(255), nullable=True)
    match_type = Column(Enum(MatchType), nullable=True)
    score = Column(Float, nullable=True)
    establishment_id = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<RunOutcomeRecord(run_id={self.run_id}, input={self.input_name}, status={self.status})>"
