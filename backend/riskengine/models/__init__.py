from .base import Base
from .assessment import Assessment, AssessmentStatus, Organization, COUNTED_ASSESSMENT_STATUSES
from .framework import (
    Control,
    ControlEvidence,
    ControlMapping,
    Evidence,
    Framework,
    MappingConfidence,
    MappingType,
)
from .risk import Risk, RiskCategory, RiskControl, RiskScoreHistory, ScoreSource, TreatmentStatus
