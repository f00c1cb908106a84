"""In-process implementation of the storage collaborator.

Used by the test suite and for embedding the engine without a database.
Score history lives in a ``ScoreHistoryLedger`` so it obeys the same
append-only ordering rules as the SQL store.
"""
import logging
from collections.abc import Callable, Sequence
from datetime import datetime

from riskengine.errors import NotFoundError
from riskengine.models.assessment import AssessmentStatus
from riskengine.models.base import utcnow
from riskengine.models.framework import MappingConfidence, MappingType
from riskengine.models.risk import RiskCategory, ScoreSource, TreatmentStatus
from riskengine.schemas.records import (
    AssessmentRecord,
    ControlMappingRecord,
    ControlRecord,
    EvidenceLink,
    FrameworkRecord,
    HistoryWindow,
    RiskControlRecord,
    RiskFilter,
    RiskRecord,
    ScoreHistoryEntry,
    ScoreSnapshot,
)
from riskengine.services.score_history import ScoreHistoryLedger
from riskengine.services.score_model import residual_score, validate_effectiveness, validate_rating

logger = logging.getLogger(__name__)


class MemoryRiskStore:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.history = ScoreHistoryLedger(clock)
        self._frameworks: dict[int, FrameworkRecord] = {}
        self._controls: dict[int, ControlRecord] = {}
        self._mappings: dict[int, ControlMappingRecord] = {}
        self._assessments: dict[int, AssessmentRecord] = {}
        self._risks: dict[int, RiskRecord] = {}
        self._risk_controls: dict[tuple[int, int], RiskControlRecord] = {}
        self._evidence: dict[tuple[int, int], int] = {}  # (control, evidence) -> organization
        self._ids: dict[str, int] = {}

    def _next_id(self, kind: str) -> int:
        self._ids[kind] = self._ids.get(kind, 0) + 1
        return self._ids[kind]

    # ── Seeding ──

    def add_framework(self, name: str, short_name: str | None = None, version: str | None = None) -> FrameworkRecord:
        fw = FrameworkRecord(
            id=self._next_id("framework"), name=name, short_name=short_name or name, version=version,
        )
        self._frameworks[fw.id] = fw
        return fw

    def add_control(
        self,
        framework_id: int,
        code: str,
        title: str | None = None,
        parent_id: int | None = None,
        sort_order: int = 0,
    ) -> ControlRecord:
        if framework_id not in self._frameworks:
            raise NotFoundError("Framework", framework_id)
        control = ControlRecord(
            id=self._next_id("control"),
            framework_id=framework_id,
            parent_id=parent_id,
            code=code,
            title=title or code,
            sort_order=sort_order,
        )
        self._controls[control.id] = control
        return control

    def add_mapping(
        self,
        source_control_id: int,
        target_control_id: int,
        mapping_type: MappingType = MappingType.EQUIVALENT,
        confidence: MappingConfidence = MappingConfidence.MEDIUM,
        bidirectional: bool = True,
    ) -> ControlMappingRecord:
        source = self._controls[source_control_id]
        target = self._controls[target_control_id]
        mapping = ControlMappingRecord(
            id=self._next_id("mapping"),
            source_control_id=source.id,
            target_control_id=target.id,
            source_framework_id=source.framework_id,
            target_framework_id=target.framework_id,
            mapping_type=mapping_type,
            confidence=confidence,
            bidirectional=bidirectional,
        )
        self._mappings[mapping.id] = mapping
        return mapping

    def add_assessment(
        self,
        organization_id: int,
        framework_id: int,
        status: AssessmentStatus = AssessmentStatus.IN_PROGRESS,
        ai_system_name: str = "AI system",
        title: str | None = None,
    ) -> AssessmentRecord:
        assessment = AssessmentRecord(
            id=self._next_id("assessment"),
            organization_id=organization_id,
            framework_id=framework_id,
            ai_system_name=ai_system_name,
            title=title or f"Assessment of {ai_system_name}",
            status=status,
        )
        self._assessments[assessment.id] = assessment
        return assessment

    def add_risk(
        self,
        assessment_id: int,
        likelihood: int,
        impact: int,
        title: str | None = None,
        category: RiskCategory = RiskCategory.OTHER,
        treatment_status: TreatmentStatus = TreatmentStatus.PENDING,
        control_effectiveness: int = 0,
        target_score: int | None = None,
    ) -> RiskRecord:
        """Insert a risk with derived scores; ratings are stored as given."""
        if assessment_id not in self._assessments:
            raise NotFoundError("Assessment", assessment_id)
        risk_id = self._next_id("risk")
        inherent = likelihood * impact
        if 1 <= likelihood <= 5 and 1 <= impact <= 5:
            residual = residual_score(inherent, control_effectiveness)
        else:
            residual = inherent
        risk = RiskRecord(
            id=risk_id,
            assessment_id=assessment_id,
            title=title or f"Risk {risk_id}",
            category=category,
            treatment_status=treatment_status,
            likelihood=likelihood,
            impact=impact,
            inherent_score=inherent,
            residual_score=residual,
            target_score=target_score,
            control_effectiveness=control_effectiveness,
        )
        self._risks[risk.id] = risk
        return risk

    def link_control(self, risk_id: int, control_id: int, effectiveness: int = 0) -> RiskControlRecord:
        if risk_id not in self._risks:
            raise NotFoundError("Risk", risk_id)
        if control_id not in self._controls:
            raise NotFoundError("Control", control_id)
        validate_effectiveness(effectiveness)
        link = RiskControlRecord(risk_id=risk_id, control_id=control_id, effectiveness=effectiveness)
        self._risk_controls[(risk_id, control_id)] = link
        return link

    def attach_evidence(self, control_id: int, organization_id: int, evidence_id: int | None = None) -> EvidenceLink:
        if control_id not in self._controls:
            raise NotFoundError("Control", control_id)
        evidence_id = evidence_id or self._next_id("evidence")
        self._evidence[(control_id, evidence_id)] = organization_id
        return EvidenceLink(control_id=control_id, evidence_id=evidence_id)

    async def ping(self) -> None:
        return None

    # ── Risks ──

    def _matches(self, risk: RiskRecord, f: RiskFilter) -> bool:
        if f.organization_id is not None:
            assessment = self._assessments.get(risk.assessment_id)
            if assessment is None or assessment.organization_id != f.organization_id:
                return False
        if f.category is not None and risk.category != f.category:
            return False
        if f.treatment_status is not None and risk.treatment_status != f.treatment_status:
            return False
        if f.assessment_ids is not None and risk.assessment_id not in f.assessment_ids:
            return False
        if f.risk_ids is not None and risk.id not in f.risk_ids:
            return False
        if f.likelihood is not None and risk.likelihood != f.likelihood:
            return False
        if f.impact is not None and risk.impact != f.impact:
            return False
        return True

    async def find_risks(self, risk_filter: RiskFilter, limit: int | None = None) -> list[RiskRecord]:
        rows = sorted(
            (r for r in self._risks.values() if self._matches(r, risk_filter)),
            key=lambda r: (-r.residual_score, r.id),
        )
        if limit is not None:
            rows = rows[:limit]
        return [r.model_copy() for r in rows]

    async def get_risk(self, risk_id: int) -> RiskRecord | None:
        risk = self._risks.get(risk_id)
        return risk.model_copy() if risk else None

    async def find_risk_controls(self, risk_ids: Sequence[int]) -> list[RiskControlRecord]:
        wanted = set(risk_ids)
        return [
            link.model_copy()
            for _, link in sorted(self._risk_controls.items())
            if link.risk_id in wanted
        ]

    async def record_score_change(
        self,
        risk_id: int,
        likelihood: int,
        impact: int,
        snapshot: ScoreSnapshot,
        source: ScoreSource,
        note: str | None = None,
    ) -> ScoreHistoryEntry:
        risk = self._risks.get(risk_id)
        if risk is None:
            raise NotFoundError("Risk", risk_id)
        validate_rating(likelihood, "likelihood")
        validate_rating(impact, "impact")
        entry = self.history.append(risk_id, snapshot, source, note)
        self._risks[risk_id] = risk.model_copy(update={
            "likelihood": likelihood,
            "impact": impact,
            **snapshot.model_dump(),
        })
        logger.info("Risk %s rescored (%s): residual=%s", risk_id, source, snapshot.residual_score)
        return entry

    # ── Score history ──

    async def append_score_history(
        self,
        risk_id: int,
        snapshot: ScoreSnapshot,
        source: ScoreSource,
        note: str | None = None,
        recorded_at: datetime | None = None,
    ) -> ScoreHistoryEntry:
        if risk_id not in self._risks:
            raise NotFoundError("Risk", risk_id)
        return self.history.append(risk_id, snapshot, source, note, recorded_at)

    async def read_score_history(self, risk_id: int, window: HistoryWindow) -> list[ScoreHistoryEntry]:
        return list(self.history.read(risk_id, window))

    async def read_score_history_endpoints(
        self, risk_ids: Sequence[int], window: HistoryWindow,
    ) -> dict[int, list[ScoreHistoryEntry]]:
        return {k: list(v) for k, v in self.history.endpoints(risk_ids, window).items()}

    # ── Framework catalog ──

    async def find_frameworks(self, framework_ids: Sequence[int]) -> list[FrameworkRecord]:
        return [self._frameworks[i].model_copy() for i in sorted(set(framework_ids)) if i in self._frameworks]

    async def find_controls(self, framework_ids: Sequence[int]) -> list[ControlRecord]:
        wanted = set(framework_ids)
        rows = [c for c in self._controls.values() if c.framework_id in wanted]
        rows.sort(key=lambda c: (c.sort_order, c.code, c.id))
        return [c.model_copy() for c in rows]

    async def find_control_mappings(self, control_ids: Sequence[int]) -> list[ControlMappingRecord]:
        wanted = set(control_ids)
        return [
            m.model_copy()
            for _, m in sorted(self._mappings.items())
            if m.source_control_id in wanted or m.target_control_id in wanted
        ]

    async def find_assessments(
        self, framework_ids: Sequence[int], organization_id: int,
    ) -> list[AssessmentRecord]:
        wanted = set(framework_ids)
        return [
            a.model_copy()
            for _, a in sorted(self._assessments.items())
            if a.framework_id in wanted and a.organization_id == organization_id
        ]

    async def find_evidence(
        self, control_ids: Sequence[int], organization_id: int | None = None,
    ) -> list[EvidenceLink]:
        wanted = set(control_ids)
        return [
            EvidenceLink(control_id=control_id, evidence_id=evidence_id)
            for (control_id, evidence_id), org in sorted(self._evidence.items())
            if control_id in wanted and (organization_id is None or org == organization_id)
        ]
