"""Plain records exchanged with the storage collaborator.

Finders return these instead of ORM rows so the engine never holds a session;
``from_attributes`` lets the SQL store validate them straight from mapped rows.
"""
from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel

from riskengine.errors import ValidationError
from riskengine.models.assessment import AssessmentStatus
from riskengine.models.base import to_naive_utc
from riskengine.models.framework import MappingConfidence, MappingType
from riskengine.models.risk import RiskCategory, ScoreSource, TreatmentStatus

MAX_HISTORY_LIMIT = 100


class RiskRecord(BaseModel):
    id: int
    assessment_id: int
    title: str
    category: RiskCategory = RiskCategory.OTHER
    treatment_status: TreatmentStatus = TreatmentStatus.PENDING
    likelihood: int
    impact: int
    inherent_score: int
    residual_score: int
    target_score: int | None = None
    control_effectiveness: int = 0

    model_config = {"from_attributes": True}


class RiskControlRecord(BaseModel):
    risk_id: int
    control_id: int
    effectiveness: int

    model_config = {"from_attributes": True}


class ScoreSnapshot(BaseModel):
    """Scoring attributes of a risk at one instant."""

    inherent_score: int
    residual_score: int
    target_score: int | None = None
    control_effectiveness: int

    model_config = {"frozen": True}


class ScoreHistoryEntry(BaseModel):
    id: int
    risk_id: int
    inherent_score: int
    residual_score: int
    target_score: int | None = None
    control_effectiveness: int
    source: ScoreSource
    note: str | None = None
    recorded_at: datetime

    model_config = {"from_attributes": True, "frozen": True}


class FrameworkRecord(BaseModel):
    id: int
    name: str
    short_name: str
    version: str | None = None

    model_config = {"from_attributes": True}


class ControlRecord(BaseModel):
    id: int
    framework_id: int
    parent_id: int | None = None
    code: str
    title: str
    sort_order: int = 0

    model_config = {"from_attributes": True}


class ControlMappingRecord(BaseModel):
    id: int
    source_control_id: int
    target_control_id: int
    source_framework_id: int
    target_framework_id: int
    mapping_type: MappingType = MappingType.EQUIVALENT
    confidence: MappingConfidence = MappingConfidence.MEDIUM
    bidirectional: bool = True

    model_config = {"from_attributes": True}


class AssessmentRecord(BaseModel):
    id: int
    organization_id: int
    framework_id: int
    ai_system_name: str
    title: str
    status: AssessmentStatus

    model_config = {"from_attributes": True}


class EvidenceLink(BaseModel):
    control_id: int
    evidence_id: int

    model_config = {"from_attributes": True}


@dataclass(frozen=True)
class HistoryWindow:
    """Bounds of a history read: inclusive time range plus a row cap."""

    start: datetime | None = None
    end: datetime | None = None
    limit: int = MAX_HISTORY_LIMIT

    def __post_init__(self):
        if self.start is not None:
            object.__setattr__(self, "start", to_naive_utc(self.start))
        if self.end is not None:
            object.__setattr__(self, "end", to_naive_utc(self.end))
        if self.limit < 1:
            raise ValidationError("limit", "must be at least 1")
        if self.limit > MAX_HISTORY_LIMIT:
            object.__setattr__(self, "limit", MAX_HISTORY_LIMIT)
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValidationError("start", "must not be after end")

    def contains(self, moment: datetime) -> bool:
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True


@dataclass(frozen=True)
class RiskFilter:
    organization_id: int | None = None
    category: RiskCategory | None = None
    treatment_status: TreatmentStatus | None = None
    assessment_ids: tuple[int, ...] | None = None
    likelihood: int | None = None
    impact: int | None = None
    risk_ids: tuple[int, ...] | None = field(default=None)
