"""
Cross-framework gap analysis.

For each requested framework, every control is classified from data loaded
once per call:

- COVERED   — at least one risk from a counted assessment of that framework
              links to the control
- EVIDENCED — no linked risk, but evidence is attached
- MAPPED    — neither, but an inbound mapping comes from a directly covered
              control of another requested framework
- GAP       — none of the above

Independently, each control gets a compliance tier from the mean
effectiveness of its counted risk links: COMPLIANT at 80 or more, PARTIAL at
50 or more, NON_COMPLIANT below that, NOT_ASSESSED without links.

Mappings are turned into a ``MappingGraph`` up front, so the MAPPED rule and
the overlap matrix are pure traversals with no further queries.
"""
import asyncio
import logging
from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import Decimal

from riskengine.errors import NotFoundError, ValidationError
from riskengine.models.assessment import COUNTED_ASSESSMENT_STATUSES
from riskengine.models.base import utcnow
from riskengine.models.framework import MappingConfidence, MappingType
from riskengine.repository.base import RiskStore
from riskengine.schemas.gap_analysis import (
    ComplianceStatus,
    ControlCoverage,
    ControlStatus,
    DirectionCoverage,
    FrameworkGap,
    FrameworkScore,
    GapAnalysisResult,
    MappedControlRef,
    MappedDetail,
    MatrixCell,
    MatrixGranularity,
    MatrixStatus,
    PairwiseComparison,
    UnmappedDetail,
)
from riskengine.schemas.records import ControlMappingRecord, ControlRecord, FrameworkRecord, RiskFilter
from riskengine.services.effectiveness import aggregate_effectiveness
from riskengine.services.score_model import round_half_up

logger = logging.getLogger(__name__)

MAX_FRAMEWORKS = 10
COMPLIANT_THRESHOLD = 80
PARTIAL_THRESHOLD = 50

_STATUS_RANK = {MatrixStatus.UNMAPPED: 0, MatrixStatus.PARTIAL: 1, MatrixStatus.MAPPED: 2}


def validate_framework_ids(framework_ids: Iterable[int], max_frameworks: int = MAX_FRAMEWORKS) -> list[int]:
    ids = list(framework_ids)
    if not ids:
        raise ValidationError("framework_ids", f"between 1 and {max_frameworks} framework ids required")
    if len(ids) > max_frameworks:
        raise ValidationError(
            "framework_ids", f"maximum {max_frameworks} frameworks allowed, got {len(ids)}",
        )
    if len(set(ids)) != len(ids):
        raise ValidationError("framework_ids", "must not contain duplicates")
    return ids


def mapping_strength(m: ControlMappingRecord) -> MatrixStatus:
    if m.mapping_type == MappingType.EQUIVALENT:
        return MatrixStatus.MAPPED
    if m.mapping_type == MappingType.PARTIAL:
        return MatrixStatus.PARTIAL
    return MatrixStatus.MAPPED if m.confidence == MappingConfidence.HIGH else MatrixStatus.PARTIAL


def _stronger(a: MatrixStatus, b: MatrixStatus) -> MatrixStatus:
    return a if _STATUS_RANK[a] >= _STATUS_RANK[b] else b


def _percentage(part: int, whole: int) -> int:
    if whole == 0:
        return 0
    return round_half_up(Decimal(part * 100) / Decimal(whole))


def compliance_status(effectiveness: int | None) -> ComplianceStatus:
    if effectiveness is None:
        return ComplianceStatus.NOT_ASSESSED
    if effectiveness >= COMPLIANT_THRESHOLD:
        return ComplianceStatus.COMPLIANT
    if effectiveness >= PARTIAL_THRESHOLD:
        return ComplianceStatus.PARTIAL
    return ComplianceStatus.NON_COMPLIANT


def _compliance_score(compliant: int, partial: int, total: int) -> int:
    if total == 0:
        return 0
    return round_half_up(Decimal(compliant * 100 + partial * 50) / Decimal(total))


class MappingGraph:
    """Control id → equivalent control ids, restricted to the requested frameworks."""

    def __init__(self, mappings: Iterable[ControlMappingRecord], framework_ids: Iterable[int]):
        scope = set(framework_ids)
        unique = {m.id: m for m in mappings}
        self.mappings: list[ControlMappingRecord] = [
            m for _, m in sorted(unique.items())
            if m.source_framework_id in scope
            and m.target_framework_id in scope
            and m.source_framework_id != m.target_framework_id
        ]
        self._inbound: dict[int, list[tuple[int, ControlMappingRecord]]] = defaultdict(list)
        for m in self.mappings:
            self._inbound[m.target_control_id].append((m.source_control_id, m))
            if m.bidirectional:
                self._inbound[m.source_control_id].append((m.target_control_id, m))

    def inbound(self, control_id: int) -> list[tuple[int, ControlMappingRecord]]:
        return self._inbound.get(control_id, [])

    def equivalents(self, control_id: int) -> set[int]:
        return {other for other, _ in self.inbound(control_id)}


def _in_catalog(
    mappings: Iterable[ControlMappingRecord], control_index: dict[int, ControlRecord],
) -> list[ControlMappingRecord]:
    """Mappings with both ends among the loaded controls.

    Framework ids are re-read from the controls, since the ids stored on a
    mapping row can be stale.
    """
    return [
        m.model_copy(update={
            "source_framework_id": control_index[m.source_control_id].framework_id,
            "target_framework_id": control_index[m.target_control_id].framework_id,
        })
        for m in mappings
        if m.source_control_id in control_index and m.target_control_id in control_index
    ]


def _controls_by_framework(
    framework_ids: Sequence[int], controls: Iterable[ControlRecord],
) -> dict[int, list[ControlRecord]]:
    grouped: dict[int, list[ControlRecord]] = {fid: [] for fid in framework_ids}
    for c in controls:
        if c.framework_id in grouped:
            grouped[c.framework_id].append(c)
    for items in grouped.values():
        items.sort(key=lambda c: (c.sort_order, c.code, c.id))
    return grouped


def _resolve_frameworks(
    framework_ids: Sequence[int], frameworks: Iterable[FrameworkRecord],
) -> dict[int, FrameworkRecord]:
    by_id = {f.id: f for f in frameworks}
    for fid in framework_ids:
        if fid not in by_id:
            raise NotFoundError("Framework", fid)
    return by_id


def _build_matrix(
    framework_ids: Sequence[int],
    controls_by_fw: dict[int, list[ControlRecord]],
    graph: MappingGraph,
    granularity: MatrixGranularity,
) -> dict[int, dict[int, MatrixCell]]:
    if granularity == MatrixGranularity.FRAMEWORK:
        rows = {a: [b for b in framework_ids if b != a] for a in framework_ids}
    else:
        rows = {
            c.id: [b for b in framework_ids if b != fid]
            for fid in framework_ids
            for c in controls_by_fw[fid]
        }
    matrix = {
        row: {col: MatrixCell(status=MatrixStatus.UNMAPPED, mapping_count=0) for col in cols}
        for row, cols in rows.items()
    }

    for m in graph.mappings:
        status = mapping_strength(m)
        if granularity == MatrixGranularity.FRAMEWORK:
            pairs = [
                (m.source_framework_id, m.target_framework_id),
                (m.target_framework_id, m.source_framework_id),
            ]
        else:
            pairs = [
                (m.source_control_id, m.target_framework_id),
                (m.target_control_id, m.source_framework_id),
            ]
        for row, col in pairs:
            cell = matrix.get(row, {}).get(col)
            if cell is None:
                continue
            matrix[row][col] = MatrixCell(
                status=_stronger(cell.status, status),
                mapping_count=cell.mapping_count + 1,
            )
    return matrix


async def analyze_gaps(
    store: RiskStore,
    organization_id: int,
    framework_ids: Sequence[int],
    granularity: MatrixGranularity | str = MatrixGranularity.FRAMEWORK,
    max_frameworks: int = MAX_FRAMEWORKS,
    now: datetime | None = None,
) -> GapAnalysisResult:
    """Compliance matrix and uncovered controls for 1..``max_frameworks`` frameworks."""
    ids = validate_framework_ids(framework_ids, max_frameworks)
    try:
        granularity = MatrixGranularity(granularity)
    except ValueError:
        raise ValidationError(
            "granularity", f"must be one of {', '.join(g.value for g in MatrixGranularity)}",
        ) from None

    frameworks, controls, assessments = await asyncio.gather(
        store.find_frameworks(ids),
        store.find_controls(ids),
        store.find_assessments(ids, organization_id),
    )
    framework_by_id = _resolve_frameworks(ids, frameworks)
    controls_by_fw = _controls_by_framework(ids, controls)
    control_index = {c.id: c for fid in ids for c in controls_by_fw[fid]}
    position = {cid: i for i, cid in enumerate(control_index)}

    counted = [
        a for a in assessments
        if a.status in COUNTED_ASSESSMENT_STATUSES
        and a.organization_id == organization_id
        and a.framework_id in framework_by_id
    ]
    assessment_framework = {a.id: a.framework_id for a in counted}
    total_assessments = Counter(a.framework_id for a in counted)

    risks = []
    if assessment_framework:
        risks = await store.find_risks(RiskFilter(
            organization_id=organization_id, assessment_ids=tuple(assessment_framework),
        ))
    risk_framework = {
        r.id: assessment_framework[r.assessment_id]
        for r in risks if r.assessment_id in assessment_framework
    }

    control_ids = list(control_index)
    links, evidence, mappings = await asyncio.gather(
        store.find_risk_controls(list(risk_framework)),
        store.find_evidence(control_ids, organization_id),
        store.find_control_mappings(control_ids),
    )

    linked_risks: dict[int, set[int]] = defaultdict(set)
    link_effectiveness: dict[int, list[int]] = defaultdict(list)
    for link in links:
        control = control_index.get(link.control_id)
        # Only risks assessed under the control's own framework count
        if control is not None and risk_framework.get(link.risk_id) == control.framework_id:
            linked_risks[link.control_id].add(link.risk_id)
            link_effectiveness[link.control_id].append(link.effectiveness)

    evidence_items: dict[int, set[int]] = defaultdict(set)
    for e in evidence:
        if e.control_id in control_index:
            evidence_items[e.control_id].add(e.evidence_id)

    directly_covered = {cid for cid in control_ids if linked_risks.get(cid) or evidence_items.get(cid)}
    graph = MappingGraph(_in_catalog(mappings, control_index), ids)

    scores: list[FrameworkScore] = []
    gaps: list[FrameworkGap] = []
    for fid in ids:
        framework = framework_by_id[fid]
        rows: list[ControlCoverage] = []
        tally: Counter = Counter()
        tiers: Counter = Counter()
        for c in controls_by_fw[fid]:
            n_risks = len(linked_risks.get(c.id, ()))
            n_evidence = len(evidence_items.get(c.id, ()))
            if n_risks:
                status = ControlStatus.COVERED
            elif n_evidence:
                status = ControlStatus.EVIDENCED
            elif any(
                other in directly_covered and control_index[other].framework_id != fid
                for other in graph.equivalents(c.id)
            ):
                status = ControlStatus.MAPPED
            else:
                status = ControlStatus.GAP
                inbound = sorted(graph.inbound(c.id), key=lambda pair: (position[pair[0]], pair[1].id))
                gaps.append(FrameworkGap(
                    control_id=c.id,
                    control_code=c.code,
                    control_title=c.title,
                    framework_id=fid,
                    framework_name=framework.name,
                    has_assessment=total_assessments[fid] > 0,
                    mapped_controls=[
                        MappedControlRef(
                            control_id=other,
                            control_code=control_index[other].code,
                            framework_id=control_index[other].framework_id,
                            mapping_type=m.mapping_type,
                            confidence=m.confidence,
                        )
                        for other, m in inbound
                    ],
                ))
            effectiveness = (
                aggregate_effectiveness(link_effectiveness[c.id]) if c.id in link_effectiveness else None
            )
            tier = compliance_status(effectiveness)
            tally[status] += 1
            tiers[tier] += 1
            rows.append(ControlCoverage(
                control_id=c.id,
                control_code=c.code,
                control_title=c.title,
                linked_risks=n_risks,
                evidence_count=n_evidence,
                status=status,
                effectiveness=effectiveness,
                compliance_status=tier,
            ))

        total = len(rows)
        scores.append(FrameworkScore(
            id=framework.id,
            name=framework.name,
            short_name=framework.short_name,
            total_controls=total,
            covered_controls=tally[ControlStatus.COVERED],
            evidenced_controls=tally[ControlStatus.EVIDENCED],
            mapped_controls=tally[ControlStatus.MAPPED],
            gap_controls=tally[ControlStatus.GAP],
            total_assessments=total_assessments[fid],
            compliance_percentage=_percentage(tally[ControlStatus.COVERED], total),
            compliant_controls=tiers[ComplianceStatus.COMPLIANT],
            partial_controls=tiers[ComplianceStatus.PARTIAL],
            non_compliant_controls=tiers[ComplianceStatus.NON_COMPLIANT],
            not_assessed_controls=tiers[ComplianceStatus.NOT_ASSESSED],
            compliance_score=_compliance_score(
                tiers[ComplianceStatus.COMPLIANT], tiers[ComplianceStatus.PARTIAL], total,
            ),
            controls=rows,
        ))

    logger.debug(
        "Gap analysis org=%s frameworks=%s: %d controls, %d gaps, %d mappings in scope",
        organization_id, ids, len(control_index), len(gaps), len(graph.mappings),
    )
    return GapAnalysisResult(
        frameworks=scores,
        gaps=gaps,
        granularity=granularity,
        matrix=_build_matrix(ids, controls_by_fw, graph, granularity),
        generated_at=now or utcnow(),
    )


# ═══ Pairwise comparison ═══


def _direction_coverage(
    source: FrameworkRecord,
    target: FrameworkRecord,
    source_controls: list[ControlRecord],
    graph: MappingGraph,
    control_index: dict[int, ControlRecord],
) -> DirectionCoverage:
    # Parent controls are headings; score leaf controls when the catalog has any
    leaves = [c for c in source_controls if c.parent_id is not None]
    effective = leaves or source_controls

    mapped: list[MappedDetail] = []
    unmapped: list[UnmappedDetail] = []
    for control in effective:
        match = None
        for m in graph.mappings:
            if m.source_control_id == control.id and m.target_framework_id == target.id:
                match = (m, control_index[m.target_control_id])
            elif m.target_control_id == control.id and m.source_framework_id == target.id:
                match = (m, control_index[m.source_control_id])
            if match:
                break
        if match is None:
            unmapped.append(UnmappedDetail(code=control.code, title=control.title))
            continue
        m, other = match
        mapped.append(MappedDetail(
            source_code=control.code,
            source_title=control.title,
            target_code=other.code,
            target_title=other.title,
            mapping_type=m.mapping_type,
            confidence=m.confidence,
        ))

    return DirectionCoverage(
        source_id=source.id,
        source_name=source.name,
        target_id=target.id,
        target_name=target.name,
        total_source_controls=len(effective),
        mapped_controls=len(mapped),
        unmapped_controls=len(unmapped),
        coverage_percentage=_percentage(len(mapped), len(effective)),
        mapped_details=mapped,
        unmapped_details=unmapped,
    )


async def compare_frameworks(
    store: RiskStore,
    source_id: int,
    target_id: int,
    now: datetime | None = None,
) -> PairwiseComparison:
    """Directional mapping coverage between two frameworks, both ways."""
    if source_id == target_id:
        raise ValidationError("target_id", "source and target must be different frameworks")
    ids = [source_id, target_id]

    frameworks, controls = await asyncio.gather(store.find_frameworks(ids), store.find_controls(ids))
    framework_by_id = _resolve_frameworks(ids, frameworks)
    controls_by_fw = _controls_by_framework(ids, controls)
    control_index = {c.id: c for fid in ids for c in controls_by_fw[fid]}

    mappings = await store.find_control_mappings(list(control_index))
    graph = MappingGraph(_in_catalog(mappings, control_index), ids)

    source, target = framework_by_id[source_id], framework_by_id[target_id]
    return PairwiseComparison(
        source_to_target=_direction_coverage(source, target, controls_by_fw[source_id], graph, control_index),
        target_to_source=_direction_coverage(target, source, controls_by_fw[target_id], graph, control_index),
        generated_at=now or utcnow(),
    )
