"""
Framework catalog models — frameworks, their hierarchical controls,
cross-framework control mappings and evidence attached to controls.
"""
from datetime import datetime
from enum import StrEnum

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, utcnow


class MappingType(StrEnum):
    EQUIVALENT = "EQUIVALENT"
    PARTIAL = "PARTIAL"
    SUPERSET = "SUPERSET"
    SUBSET = "SUBSET"
    RELATED = "RELATED"


class MappingConfidence(StrEnum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Framework(Base):
    __tablename__ = "frameworks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    short_name: Mapped[str] = mapped_column(String(50), nullable=False)
    version: Mapped[str | None] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    controls: Mapped[list["Control"]] = relationship(
        back_populates="framework", order_by="Control.sort_order",
    )


class Control(Base):
    __tablename__ = "controls"
    __table_args__ = (
        UniqueConstraint("framework_id", "code", name="uq_controls_framework_code"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    framework_id: Mapped[int] = mapped_column(
        ForeignKey("frameworks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("controls.id"))
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    # Hierarchical numbering, e.g. "A.5", "A.5.1"
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    framework: Mapped["Framework"] = relationship(back_populates="controls")


class ControlMapping(Base):
    """Declared equivalence between controls of two different frameworks."""

    __tablename__ = "control_mappings"
    __table_args__ = (
        UniqueConstraint("source_control_id", "target_control_id", name="uq_control_mapping_pair"),
        Index("ix_cm_source_fw", "source_framework_id"),
        Index("ix_cm_target_fw", "target_framework_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_control_id: Mapped[int] = mapped_column(
        ForeignKey("controls.id", ondelete="CASCADE"), nullable=False,
    )
    target_control_id: Mapped[int] = mapped_column(
        ForeignKey("controls.id", ondelete="CASCADE"), nullable=False,
    )
    # Denormalised from the controls for framework-level filtering
    source_framework_id: Mapped[int] = mapped_column(ForeignKey("frameworks.id"), nullable=False)
    target_framework_id: Mapped[int] = mapped_column(ForeignKey("frameworks.id"), nullable=False)

    mapping_type: Mapped[str] = mapped_column(String(20), default=MappingType.EQUIVALENT, nullable=False)
    confidence: Mapped[str] = mapped_column(String(10), default=MappingConfidence.MEDIUM, nullable=False)
    bidirectional: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    rationale: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Evidence(Base):
    __tablename__ = "evidence"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="PENDING", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class ControlEvidence(Base):
    __tablename__ = "control_evidence"

    control_id: Mapped[int] = mapped_column(
        ForeignKey("controls.id", ondelete="CASCADE"), primary_key=True,
    )
    evidence_id: Mapped[int] = mapped_column(
        ForeignKey("evidence.id", ondelete="CASCADE"), primary_key=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
