from pydantic import BaseModel, Field

from riskengine.models.risk import RiskCategory, TreatmentStatus
from riskengine.schemas.scoring import RiskLevel, RiskVelocity

LIKELIHOOD_LABELS = ["Rare", "Unlikely", "Possible", "Likely", "Almost Certain"]
IMPACT_LABELS = ["Insignificant", "Minor", "Moderate", "Major", "Catastrophic"]


class HeatmapDimensions(BaseModel):
    likelihood: list[str] = LIKELIHOOD_LABELS
    impact: list[str] = IMPACT_LABELS


class RiskHeatmap(BaseModel):
    matrix: list[list[int]]
    # matrix[likelihood - 1][impact - 1]
    total_risks: int
    max_count: int
    dimensions: HeatmapDimensions = Field(default_factory=HeatmapDimensions)


class CellRisk(BaseModel):
    id: int
    title: str
    category: RiskCategory
    residual_score: int
    risk_level: RiskLevel
    treatment_status: TreatmentStatus
    assessment_id: int
    velocity: RiskVelocity | None = None


class HeatmapCell(BaseModel):
    likelihood: int
    impact: int
    count: int
    risks: list[CellRisk]
