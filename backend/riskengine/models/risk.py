from datetime import datetime
from enum import StrEnum

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, utcnow


class RiskCategory(StrEnum):
    BIAS_FAIRNESS = "BIAS_FAIRNESS"
    PRIVACY = "PRIVACY"
    SECURITY = "SECURITY"
    RELIABILITY = "RELIABILITY"
    TRANSPARENCY = "TRANSPARENCY"
    ACCOUNTABILITY = "ACCOUNTABILITY"
    SAFETY = "SAFETY"
    OTHER = "OTHER"


class TreatmentStatus(StrEnum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    MITIGATING = "MITIGATING"
    TRANSFERRED = "TRANSFERRED"
    AVOIDED = "AVOIDED"
    COMPLETED = "COMPLETED"


class ScoreSource(StrEnum):
    INITIAL = "INITIAL"
    MANUAL = "MANUAL"
    CONTROL_CHANGE = "CONTROL_CHANGE"
    AUTO_RECALC = "AUTO_RECALC"


class Risk(Base):
    __tablename__ = "risks"
    __table_args__ = (
        CheckConstraint("likelihood BETWEEN 1 AND 5", name="ck_risks_likelihood"),
        CheckConstraint("impact BETWEEN 1 AND 5", name="ck_risks_impact"),
        CheckConstraint("residual_score BETWEEN 0 AND inherent_score", name="ck_risks_residual"),
        CheckConstraint("control_effectiveness BETWEEN 0 AND 100", name="ck_risks_effectiveness"),
        Index("ix_risks_rating", "likelihood", "impact"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    assessment_id: Mapped[int] = mapped_column(
        ForeignKey("assessments.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str] = mapped_column(String(30), default=RiskCategory.OTHER, nullable=False)
    treatment_status: Mapped[str] = mapped_column(
        String(20), default=TreatmentStatus.PENDING, nullable=False,
    )

    # ── Scoring ──
    likelihood: Mapped[int] = mapped_column(Integer, nullable=False)
    impact: Mapped[int] = mapped_column(Integer, nullable=False)
    inherent_score: Mapped[int] = mapped_column(Integer, nullable=False)
    # likelihood * impact, 1–25
    residual_score: Mapped[int] = mapped_column(Integer, nullable=False)
    target_score: Mapped[int | None] = mapped_column(Integer)
    control_effectiveness: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False,
    )

    assessment: Mapped["Assessment"] = relationship(back_populates="risks")
    controls: Mapped[list["RiskControl"]] = relationship(
        back_populates="risk", cascade="all, delete-orphan",
    )


class RiskControl(Base):
    """Link between a risk and a framework control, with its own effectiveness."""

    __tablename__ = "risk_controls"
    __table_args__ = (
        CheckConstraint("effectiveness BETWEEN 0 AND 100", name="ck_risk_controls_effectiveness"),
    )

    risk_id: Mapped[int] = mapped_column(
        ForeignKey("risks.id", ondelete="CASCADE"), primary_key=True,
    )
    control_id: Mapped[int] = mapped_column(
        ForeignKey("controls.id", ondelete="CASCADE"), primary_key=True, index=True,
    )
    effectiveness: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    risk: Mapped["Risk"] = relationship(back_populates="controls")


class RiskScoreHistory(Base):
    """Append-only score snapshot; rows are inserted, never updated or deleted."""

    __tablename__ = "risk_score_history"
    __table_args__ = (
        Index("ix_rsh_risk_recorded", "risk_id", "recorded_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    risk_id: Mapped[int] = mapped_column(
        ForeignKey("risks.id", ondelete="CASCADE"), nullable=False,
    )
    inherent_score: Mapped[int] = mapped_column(Integer, nullable=False)
    residual_score: Mapped[int] = mapped_column(Integer, nullable=False)
    target_score: Mapped[int | None] = mapped_column(Integer)
    control_effectiveness: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)
    # INITIAL | MANUAL | CONTROL_CHANGE | AUTO_RECALC
    note: Mapped[str | None] = mapped_column(Text)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
