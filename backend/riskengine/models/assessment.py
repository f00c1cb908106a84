from datetime import datetime
from enum import StrEnum

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, utcnow


class AssessmentStatus(StrEnum):
    DRAFT = "DRAFT"
    IN_PROGRESS = "IN_PROGRESS"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    ARCHIVED = "ARCHIVED"


# Statuses that count toward a framework's total_assessments in gap analysis
COUNTED_ASSESSMENT_STATUSES = frozenset({
    AssessmentStatus.IN_PROGRESS,
    AssessmentStatus.APPROVED,
    AssessmentStatus.COMPLETED,
})


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Assessment(Base):
    """Scopes a set of risks to one framework and one AI system."""

    __tablename__ = "assessments"
    __table_args__ = (
        Index("ix_assessments_org_framework", "organization_id", "framework_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    framework_id: Mapped[int] = mapped_column(ForeignKey("frameworks.id"), nullable=False)
    ai_system_name: Mapped[str] = mapped_column(String(200), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default=AssessmentStatus.DRAFT, nullable=False)
    # DRAFT | IN_PROGRESS | UNDER_REVIEW | APPROVED | COMPLETED | CANCELLED | ARCHIVED

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False,
    )

    risks: Mapped[list["Risk"]] = relationship(back_populates="assessment")
