"""Cross-framework gap analysis and pairwise comparison."""
from datetime import datetime
from unittest.mock import patch

import pytest

from riskengine.errors import NotFoundError, ValidationError
from riskengine.models.assessment import AssessmentStatus
from riskengine.models.framework import MappingConfidence, MappingType
from riskengine.schemas.gap_analysis import ComplianceStatus, ControlStatus, MatrixStatus
from riskengine.schemas.records import ControlMappingRecord
from riskengine.services.gap_analysis import (
    analyze_gaps,
    compare_frameworks,
    compliance_status,
    mapping_strength,
)

NOW = datetime(2026, 3, 1, 12, 0, 0)
ORG = 1


@pytest.fixture
def catalog(store):
    """
    A: a1 (risk) · a2 (evidence) · a3 (nothing)
    B: b1 · b2
    Mappings: a1 ↔ b1 EQUIVALENT, b2 → a3 PARTIAL (one-way)
    """
    fw_a = store.add_framework("ISO/IEC 42001", "ISO42001")
    fw_b = store.add_framework("NIST AI RMF", "NIST-AI")
    a1 = store.add_control(fw_a.id, "A.1", sort_order=1)
    a2 = store.add_control(fw_a.id, "A.2", sort_order=2)
    a3 = store.add_control(fw_a.id, "A.3", sort_order=3)
    b1 = store.add_control(fw_b.id, "GOVERN-1", sort_order=1)
    b2 = store.add_control(fw_b.id, "MAP-1", sort_order=2)

    store.add_mapping(a1.id, b1.id, MappingType.EQUIVALENT, MappingConfidence.HIGH)
    store.add_mapping(b2.id, a3.id, MappingType.PARTIAL, MappingConfidence.MEDIUM, bidirectional=False)

    assessment = store.add_assessment(ORG, fw_a.id, AssessmentStatus.IN_PROGRESS)
    risk = store.add_risk(assessment.id, 4, 4, title="Unfair outcomes")
    store.link_control(risk.id, a1.id, 60)
    store.attach_evidence(a2.id, ORG)

    return {
        "fw_a": fw_a.id, "fw_b": fw_b.id,
        "a1": a1.id, "a2": a2.id, "a3": a3.id, "b1": b1.id, "b2": b2.id,
    }


def _statuses(result, framework_id):
    fw = next(f for f in result.frameworks if f.id == framework_id)
    return {c.control_code: c.status for c in fw.controls}


# ── Validation ──

@pytest.mark.asyncio
async def test_rejects_empty_framework_list(store):
    with pytest.raises(ValidationError) as exc:
        await analyze_gaps(store, ORG, [])
    assert exc.value.field == "framework_ids"


@pytest.mark.asyncio
async def test_rejects_more_than_ten_frameworks(store):
    with pytest.raises(ValidationError):
        await analyze_gaps(store, ORG, list(range(1, 12)))


@pytest.mark.asyncio
async def test_accepts_exactly_ten_frameworks(store):
    ids = [store.add_framework(f"F{i}").id for i in range(10)]
    result = await analyze_gaps(store, ORG, ids)
    assert len(result.frameworks) == 10


@pytest.mark.asyncio
async def test_rejects_duplicate_framework_ids(store, catalog):
    with pytest.raises(ValidationError):
        await analyze_gaps(store, ORG, [catalog["fw_a"], catalog["fw_a"]])


@pytest.mark.asyncio
async def test_unknown_framework(store, catalog):
    with pytest.raises(NotFoundError) as exc:
        await analyze_gaps(store, ORG, [catalog["fw_a"], 999])
    assert exc.value.identifier == 999


@pytest.mark.asyncio
async def test_rejects_unknown_granularity(store, catalog):
    with pytest.raises(ValidationError) as exc:
        await analyze_gaps(store, ORG, [catalog["fw_a"]], granularity="domain")
    assert exc.value.field == "granularity"


# ── Control status ──

@pytest.mark.asyncio
async def test_control_statuses(store, catalog):
    result = await analyze_gaps(store, ORG, [catalog["fw_a"], catalog["fw_b"]])

    assert _statuses(result, catalog["fw_a"]) == {
        "A.1": ControlStatus.COVERED,
        "A.2": ControlStatus.EVIDENCED,
        "A.3": ControlStatus.GAP,
    }
    assert _statuses(result, catalog["fw_b"]) == {
        "GOVERN-1": ControlStatus.MAPPED,
        "MAP-1": ControlStatus.GAP,
    }


@pytest.mark.asyncio
async def test_framework_scores(store, catalog):
    result = await analyze_gaps(store, ORG, [catalog["fw_a"], catalog["fw_b"]])
    fw_a, fw_b = result.frameworks

    assert (fw_a.total_controls, fw_a.covered_controls, fw_a.evidenced_controls, fw_a.gap_controls) == (3, 1, 1, 1)
    assert fw_a.compliance_percentage == 33
    assert fw_a.total_assessments == 1
    assert fw_b.mapped_controls == 1
    # MAPPED controls do not count toward compliance
    assert fw_b.compliance_percentage == 0
    assert fw_b.total_assessments == 0


@pytest.mark.asyncio
async def test_gap_lists_inbound_mappings(store, catalog):
    result = await analyze_gaps(store, ORG, [catalog["fw_a"], catalog["fw_b"]])

    by_code = {g.control_code: g for g in result.gaps}
    assert set(by_code) == {"A.3", "MAP-1"}
    a3 = by_code["A.3"]
    assert a3.framework_name == "ISO/IEC 42001"
    assert [m.control_code for m in a3.mapped_controls] == ["MAP-1"]
    assert a3.mapped_controls[0].mapping_type == MappingType.PARTIAL
    # One-way mapping b2 → a3 gives MAP-1 no inbound edge
    assert by_code["MAP-1"].mapped_controls == []


@pytest.mark.asyncio
async def test_output_follows_requested_order(store, catalog):
    result = await analyze_gaps(store, ORG, [catalog["fw_b"], catalog["fw_a"]])
    assert [f.id for f in result.frameworks] == [catalog["fw_b"], catalog["fw_a"]]
    assert list(result.matrix) == [catalog["fw_b"], catalog["fw_a"]]


@pytest.mark.asyncio
async def test_mapping_only_silences_within_requested_frameworks(store, catalog):
    result = await analyze_gaps(store, ORG, [catalog["fw_b"]])
    assert _statuses(result, catalog["fw_b"])["GOVERN-1"] == ControlStatus.GAP


@pytest.mark.asyncio
async def test_mapping_silencing_is_not_transitive(store, catalog):
    fw_c = store.add_framework("EU AI Act", "EUAIA")
    c1 = store.add_control(fw_c.id, "Art.9")
    # b1 is only MAPPED, not directly covered
    store.add_mapping(catalog["b1"], c1.id)

    result = await analyze_gaps(store, ORG, [catalog["fw_a"], catalog["fw_b"], fw_c.id])
    assert _statuses(result, fw_c.id)["Art.9"] == ControlStatus.GAP


@pytest.mark.asyncio
async def test_evidence_mapping_silences_gap(store, catalog):
    store.add_mapping(catalog["a2"], catalog["b2"], MappingType.RELATED, MappingConfidence.LOW)
    result = await analyze_gaps(store, ORG, [catalog["fw_a"], catalog["fw_b"]])
    assert _statuses(result, catalog["fw_b"])["MAP-1"] == ControlStatus.MAPPED


@pytest.mark.asyncio
async def test_uncounted_assessments_do_not_cover(store, catalog):
    for status in (AssessmentStatus.CANCELLED, AssessmentStatus.DRAFT, AssessmentStatus.ARCHIVED):
        assessment = store.add_assessment(ORG, catalog["fw_a"], status)
        risk = store.add_risk(assessment.id, 3, 3)
        store.link_control(risk.id, catalog["a3"], 20)

    result = await analyze_gaps(store, ORG, [catalog["fw_a"]])

    assert _statuses(result, catalog["fw_a"])["A.3"] == ControlStatus.GAP
    assert result.frameworks[0].total_assessments == 1


@pytest.mark.asyncio
async def test_completed_and_approved_assessments_count(store, catalog):
    for status in (AssessmentStatus.COMPLETED, AssessmentStatus.APPROVED):
        store.add_assessment(ORG, catalog["fw_a"], status)
    result = await analyze_gaps(store, ORG, [catalog["fw_a"]])
    assert result.frameworks[0].total_assessments == 3


@pytest.mark.asyncio
async def test_linked_risks_scoped_to_control_framework(store, catalog):
    # A risk assessed under B but linked to a control of A
    assessment_b = store.add_assessment(ORG, catalog["fw_b"], AssessmentStatus.IN_PROGRESS)
    risk = store.add_risk(assessment_b.id, 2, 2)
    store.link_control(risk.id, catalog["a3"], 10)

    result = await analyze_gaps(store, ORG, [catalog["fw_a"], catalog["fw_b"]])

    a3 = next(c for c in result.frameworks[0].controls if c.control_code == "A.3")
    assert a3.linked_risks == 0
    assert a3.status == ControlStatus.GAP


@pytest.mark.asyncio
async def test_linked_risks_count_distinct_risks(store, catalog):
    assessment = store.add_assessment(ORG, catalog["fw_a"], AssessmentStatus.COMPLETED)
    for _ in range(2):
        risk = store.add_risk(assessment.id, 2, 3)
        store.link_control(risk.id, catalog["a1"], 40)

    result = await analyze_gaps(store, ORG, [catalog["fw_a"]])
    assert result.frameworks[0].controls[0].linked_risks == 3


@pytest.mark.asyncio
async def test_other_organizations_are_ignored(store, catalog):
    other = store.add_assessment(2, catalog["fw_a"], AssessmentStatus.IN_PROGRESS)
    risk = store.add_risk(other.id, 5, 5)
    store.link_control(risk.id, catalog["a3"], 90)
    store.attach_evidence(catalog["a3"], organization_id=2)

    result = await analyze_gaps(store, ORG, [catalog["fw_a"]])
    assert _statuses(result, catalog["fw_a"])["A.3"] == ControlStatus.GAP


@pytest.mark.asyncio
async def test_framework_without_controls(store):
    empty = store.add_framework("Draft standard", "DRAFT")
    result = await analyze_gaps(store, ORG, [empty.id])
    fw = result.frameworks[0]
    assert fw.total_controls == 0
    assert fw.compliance_percentage == 0
    assert result.gaps == []
    assert (fw.not_assessed_controls, fw.compliance_score) == (0, 0)


# ── Compliance tiers ──

@pytest.mark.parametrize("effectiveness,expected", [
    (None, ComplianceStatus.NOT_ASSESSED),
    (0, ComplianceStatus.NON_COMPLIANT),
    (49, ComplianceStatus.NON_COMPLIANT),
    (50, ComplianceStatus.PARTIAL),
    (79, ComplianceStatus.PARTIAL),
    (80, ComplianceStatus.COMPLIANT),
    (100, ComplianceStatus.COMPLIANT),
])
def test_compliance_status_thresholds(effectiveness, expected):
    assert compliance_status(effectiveness) == expected


@pytest.mark.asyncio
async def test_compliance_tiers_follow_link_effectiveness(store, catalog):
    assessment = store.add_assessment(ORG, catalog["fw_a"], AssessmentStatus.APPROVED)
    for control, effectiveness in (("a2", 85), ("a3", 20)):
        risk = store.add_risk(assessment.id, 3, 3)
        store.link_control(risk.id, catalog[control], effectiveness)

    result = await analyze_gaps(store, ORG, [catalog["fw_a"], catalog["fw_b"]])
    fw_a, fw_b = result.frameworks

    tiers = {c.control_code: (c.effectiveness, c.compliance_status) for c in fw_a.controls}
    assert tiers == {
        "A.1": (60, ComplianceStatus.PARTIAL),
        "A.2": (85, ComplianceStatus.COMPLIANT),
        "A.3": (20, ComplianceStatus.NON_COMPLIANT),
    }
    assert (
        fw_a.compliant_controls, fw_a.partial_controls,
        fw_a.non_compliant_controls, fw_a.not_assessed_controls,
    ) == (1, 1, 1, 0)
    # (1 × 100 + 1 × 50) / 3
    assert fw_a.compliance_score == 50
    assert fw_a.compliance_percentage == 100

    # GOVERN-1 is MAPPED but has no links of its own
    assert fw_b.not_assessed_controls == 2
    assert fw_b.compliance_score == 0
    assert all(c.effectiveness is None for c in fw_b.controls)


@pytest.mark.asyncio
async def test_control_effectiveness_is_mean_of_counted_links(store, catalog):
    completed = store.add_assessment(ORG, catalog["fw_a"], AssessmentStatus.COMPLETED)
    store.link_control(store.add_risk(completed.id, 2, 2).id, catalog["a1"], 100)
    cancelled = store.add_assessment(ORG, catalog["fw_a"], AssessmentStatus.CANCELLED)
    store.link_control(store.add_risk(cancelled.id, 2, 2).id, catalog["a1"], 0)

    result = await analyze_gaps(store, ORG, [catalog["fw_a"]])

    a1 = result.frameworks[0].controls[0]
    assert a1.effectiveness == 80
    assert a1.compliance_status == ComplianceStatus.COMPLIANT


@pytest.mark.asyncio
async def test_gaps_report_whether_framework_was_assessed(store, catalog):
    result = await analyze_gaps(store, ORG, [catalog["fw_a"], catalog["fw_b"]])
    by_code = {g.control_code: g for g in result.gaps}
    assert by_code["A.3"].has_assessment is True
    assert by_code["MAP-1"].has_assessment is False


# ── Stale mapping rows ──

def _serve_stale(store, mapping, **stale_fields):
    stale = mapping.model_copy(update=stale_fields)
    real_find = store.find_control_mappings

    async def find_with_stale_row(control_ids):
        return [stale if m.id == mapping.id else m for m in await real_find(control_ids)]

    return patch.object(store, "find_control_mappings", side_effect=find_with_stale_row)


@pytest.mark.asyncio
async def test_mapping_to_control_outside_requested_frameworks_is_ignored(store, catalog):
    fw_c = store.add_framework("EU AI Act", "EUAIA")
    c1 = store.add_control(fw_c.id, "Art.9")
    mapping = store.add_mapping(c1.id, catalog["a3"])

    # row claims the source sits in B, but Art.9 belongs to C
    with _serve_stale(store, mapping, source_framework_id=catalog["fw_b"]):
        result = await analyze_gaps(store, ORG, [catalog["fw_a"], catalog["fw_b"]])

    a3 = next(g for g in result.gaps if g.control_code == "A.3")
    assert [m.control_code for m in a3.mapped_controls] == ["MAP-1"]


@pytest.mark.asyncio
async def test_mapping_framework_ids_come_from_controls(store, catalog):
    mapping = store.add_mapping(catalog["a2"], catalog["b2"], MappingType.RELATED, MappingConfidence.LOW)

    with _serve_stale(store, mapping, source_framework_id=catalog["fw_b"], target_framework_id=catalog["fw_a"]):
        result = await analyze_gaps(
            store, ORG, [catalog["fw_a"], catalog["fw_b"]], granularity="control",
        )

    assert _statuses(result, catalog["fw_b"])["MAP-1"] == ControlStatus.MAPPED
    assert result.matrix[catalog["a2"]][catalog["fw_b"]].status == MatrixStatus.PARTIAL
    assert result.matrix[catalog["b2"]][catalog["fw_a"]].status == MatrixStatus.PARTIAL


# ── Matrix ──

@pytest.mark.asyncio
async def test_framework_matrix(store, catalog):
    fw_a, fw_b = catalog["fw_a"], catalog["fw_b"]
    result = await analyze_gaps(store, ORG, [fw_a, fw_b])

    assert set(result.matrix[fw_a]) == {fw_b}
    cell = result.matrix[fw_a][fw_b]
    # EQUIVALENT beats PARTIAL
    assert cell.status == MatrixStatus.MAPPED
    assert cell.mapping_count == 2
    assert result.matrix[fw_b][fw_a] == cell


@pytest.mark.asyncio
async def test_framework_matrix_unmapped_pair(store, catalog):
    fw_c = store.add_framework("EU AI Act", "EUAIA")
    store.add_control(fw_c.id, "Art.9")
    result = await analyze_gaps(store, ORG, [catalog["fw_a"], fw_c.id])
    cell = result.matrix[catalog["fw_a"]][fw_c.id]
    assert cell.status == MatrixStatus.UNMAPPED
    assert cell.mapping_count == 0


@pytest.mark.asyncio
async def test_control_matrix(store, catalog):
    fw_a, fw_b = catalog["fw_a"], catalog["fw_b"]
    result = await analyze_gaps(store, ORG, [fw_a, fw_b], granularity="control")

    assert result.granularity == "control"
    assert set(result.matrix) == {catalog[k] for k in ("a1", "a2", "a3", "b1", "b2")}
    assert result.matrix[catalog["a1"]][fw_b].status == MatrixStatus.MAPPED
    assert result.matrix[catalog["b1"]][fw_a].status == MatrixStatus.MAPPED
    assert result.matrix[catalog["a3"]][fw_b].status == MatrixStatus.PARTIAL
    assert result.matrix[catalog["b2"]][fw_a].status == MatrixStatus.PARTIAL
    assert result.matrix[catalog["a2"]][fw_b].status == MatrixStatus.UNMAPPED


@pytest.mark.parametrize("mapping_type,confidence,expected", [
    (MappingType.EQUIVALENT, MappingConfidence.LOW, MatrixStatus.MAPPED),
    (MappingType.PARTIAL, MappingConfidence.HIGH, MatrixStatus.PARTIAL),
    (MappingType.SUPERSET, MappingConfidence.HIGH, MatrixStatus.MAPPED),
    (MappingType.RELATED, MappingConfidence.MEDIUM, MatrixStatus.PARTIAL),
])
def test_mapping_strength(mapping_type, confidence, expected):
    m = ControlMappingRecord(
        id=1, source_control_id=1, target_control_id=2, source_framework_id=1, target_framework_id=2,
        mapping_type=mapping_type, confidence=confidence,
    )
    assert mapping_strength(m) == expected


# ── Determinism and reads ──

@pytest.mark.asyncio
async def test_identical_inputs_give_identical_results(store, catalog):
    ids = [catalog["fw_a"], catalog["fw_b"]]
    first = await analyze_gaps(store, ORG, ids, now=NOW)
    second = await analyze_gaps(store, ORG, ids, now=NOW)
    assert first == second
    assert first.generated_at == NOW


@pytest.mark.asyncio
async def test_loads_catalog_once_per_call(store, catalog):
    with patch.object(store, "find_controls", wraps=store.find_controls) as controls, \
            patch.object(store, "find_control_mappings", wraps=store.find_control_mappings) as mappings:
        await analyze_gaps(store, ORG, [catalog["fw_a"], catalog["fw_b"]])

    assert controls.await_count == 1
    assert mappings.await_count == 1


# ── Pairwise ──

@pytest.fixture
def pair(store):
    fw_p = store.add_framework("ISO/IEC 42001", "ISO42001")
    fw_q = store.add_framework("NIST AI RMF", "NIST-AI")
    heading = store.add_control(fw_p.id, "A", sort_order=0)
    p1 = store.add_control(fw_p.id, "A.1", parent_id=heading.id, sort_order=1)
    store.add_control(fw_p.id, "A.2", parent_id=heading.id, sort_order=2)
    q1 = store.add_control(fw_q.id, "GOVERN-1")
    store.add_mapping(p1.id, q1.id, MappingType.RELATED, MappingConfidence.LOW)
    return fw_p.id, fw_q.id


@pytest.mark.asyncio
async def test_pairwise_uses_leaf_controls(store, pair):
    fw_p, fw_q = pair
    result = await compare_frameworks(store, fw_p, fw_q, now=NOW)

    forward = result.source_to_target
    assert forward.total_source_controls == 2
    assert forward.mapped_controls == 1
    assert forward.coverage_percentage == 50
    assert forward.mapped_details[0].target_code == "GOVERN-1"
    assert [u.code for u in forward.unmapped_details] == ["A.2"]

    backward = result.target_to_source
    # No parent/child structure in Q: every control counts
    assert backward.total_source_controls == 1
    assert backward.coverage_percentage == 100
    assert backward.mapped_details[0].target_code == "A.1"


@pytest.mark.asyncio
async def test_pairwise_rejects_same_framework(store, pair):
    with pytest.raises(ValidationError):
        await compare_frameworks(store, pair[0], pair[0])


@pytest.mark.asyncio
async def test_pairwise_unknown_framework(store, pair):
    with pytest.raises(NotFoundError):
        await compare_frameworks(store, pair[0], 404)
