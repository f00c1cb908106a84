"""Pydantic schemas for the cross-framework gap analysis."""
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel

from riskengine.models.framework import MappingConfidence, MappingType


class ControlStatus(StrEnum):
    # at least one linked risk from a counted assessment
    COVERED = "COVERED"
    EVIDENCED = "EVIDENCED"
    # silenced by a mapping from a covered control in another requested framework
    MAPPED = "MAPPED"
    GAP = "GAP"


class ComplianceStatus(StrEnum):
    # tiers of the mean effectiveness of the control's risk links
    COMPLIANT = "COMPLIANT"
    PARTIAL = "PARTIAL"
    NON_COMPLIANT = "NON_COMPLIANT"
    NOT_ASSESSED = "NOT_ASSESSED"


class MatrixStatus(StrEnum):
    MAPPED = "MAPPED"
    PARTIAL = "PARTIAL"
    UNMAPPED = "UNMAPPED"


class MatrixGranularity(StrEnum):
    FRAMEWORK = "framework"
    CONTROL = "control"


class MappedControlRef(BaseModel):
    control_id: int
    control_code: str
    framework_id: int
    mapping_type: MappingType
    confidence: MappingConfidence


class ControlCoverage(BaseModel):
    control_id: int
    control_code: str
    control_title: str
    linked_risks: int
    evidence_count: int
    status: ControlStatus
    effectiveness: int | None = None
    compliance_status: ComplianceStatus


class FrameworkScore(BaseModel):
    id: int
    name: str
    short_name: str
    total_controls: int
    covered_controls: int
    evidenced_controls: int
    mapped_controls: int
    gap_controls: int
    total_assessments: int
    compliance_percentage: int
    compliant_controls: int
    partial_controls: int
    non_compliant_controls: int
    not_assessed_controls: int
    # (compliant × 100 + partial × 50) / total
    compliance_score: int
    controls: list[ControlCoverage]


class FrameworkGap(BaseModel):
    control_id: int
    control_code: str
    control_title: str
    framework_id: int
    framework_name: str
    # the framework has at least one counted assessment
    has_assessment: bool
    mapped_controls: list[MappedControlRef]


class MatrixCell(BaseModel):
    status: MatrixStatus
    mapping_count: int


class GapAnalysisResult(BaseModel):
    frameworks: list[FrameworkScore]
    gaps: list[FrameworkGap]
    granularity: MatrixGranularity
    matrix: dict[int, dict[int, MatrixCell]]
    generated_at: datetime


class MappedDetail(BaseModel):
    source_code: str
    source_title: str
    target_code: str
    target_title: str
    mapping_type: MappingType
    confidence: MappingConfidence


class UnmappedDetail(BaseModel):
    code: str
    title: str


class DirectionCoverage(BaseModel):
    source_id: int
    source_name: str
    target_id: int
    target_name: str
    total_source_controls: int
    mapped_controls: int
    unmapped_controls: int
    coverage_percentage: int
    mapped_details: list[MappedDetail]
    unmapped_details: list[UnmappedDetail]


class PairwiseComparison(BaseModel):
    source_to_target: DirectionCoverage
    target_to_source: DirectionCoverage
    generated_at: datetime
