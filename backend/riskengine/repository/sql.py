"""SQLAlchemy implementation of the storage collaborator.

Each finder opens its own session from the factory, so reads for independent
keys can be awaited concurrently without sharing an ``AsyncSession``.
``SqlRiskStore.from_url`` builds the engine and the factory together.
"""
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy import func, or_, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskengine.database import build_engine, build_sessionmaker
from riskengine.errors import NotFoundError, StorageError, ValidationError
from riskengine.models.assessment import Assessment
from riskengine.models.base import to_naive_utc, utcnow
from riskengine.models.framework import Control, ControlEvidence, ControlMapping, Evidence, Framework
from riskengine.models.risk import Risk, RiskControl, RiskScoreHistory, ScoreSource
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

logger = logging.getLogger(__name__)


class SqlRiskStore:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    @classmethod
    def from_url(cls, url: str | None = None, **engine_kwargs) -> "SqlRiskStore":
        """Store over a fresh engine for ``url`` (defaults to ``DATABASE_URL``)."""
        return cls(build_sessionmaker(build_engine(url, **engine_kwargs)))

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessionmaker() as s:
                yield s
        except SQLAlchemyError as exc:
            logger.exception("Storage failure during %s", operation)
            raise StorageError(f"{operation} failed") from exc

    async def ping(self) -> None:
        async with self._session("ping") as s:
            await s.execute(text("SELECT 1"))

    # ── Risks ──

    async def find_risks(self, risk_filter: RiskFilter, limit: int | None = None) -> list[RiskRecord]:
        q = select(Risk)
        if risk_filter.organization_id is not None:
            q = q.join(Assessment, Risk.assessment_id == Assessment.id).where(
                Assessment.organization_id == risk_filter.organization_id,
            )
        if risk_filter.category is not None:
            q = q.where(Risk.category == risk_filter.category)
        if risk_filter.treatment_status is not None:
            q = q.where(Risk.treatment_status == risk_filter.treatment_status)
        if risk_filter.assessment_ids is not None:
            if not risk_filter.assessment_ids:
                return []
            q = q.where(Risk.assessment_id.in_(risk_filter.assessment_ids))
        if risk_filter.risk_ids is not None:
            if not risk_filter.risk_ids:
                return []
            q = q.where(Risk.id.in_(risk_filter.risk_ids))
        if risk_filter.likelihood is not None:
            q = q.where(Risk.likelihood == risk_filter.likelihood)
        if risk_filter.impact is not None:
            q = q.where(Risk.impact == risk_filter.impact)
        q = q.order_by(Risk.residual_score.desc(), Risk.id)
        if limit is not None:
            q = q.limit(limit)

        async with self._session("find_risks") as s:
            rows = (await s.execute(q)).scalars().all()
            return [RiskRecord.model_validate(r) for r in rows]

    async def get_risk(self, risk_id: int) -> RiskRecord | None:
        async with self._session("get_risk") as s:
            risk = await s.get(Risk, risk_id)
            return RiskRecord.model_validate(risk) if risk else None

    async def find_risk_controls(self, risk_ids: Sequence[int]) -> list[RiskControlRecord]:
        if not risk_ids:
            return []
        q = (
            select(RiskControl)
            .where(RiskControl.risk_id.in_(list(risk_ids)))
            .order_by(RiskControl.risk_id, RiskControl.control_id)
        )
        async with self._session("find_risk_controls") as s:
            rows = (await s.execute(q)).scalars().all()
            return [RiskControlRecord.model_validate(r) for r in rows]

    async def record_score_change(
        self,
        risk_id: int,
        likelihood: int,
        impact: int,
        snapshot: ScoreSnapshot,
        source: ScoreSource,
        note: str | None = None,
    ) -> ScoreHistoryEntry:
        async with self._session("record_score_change") as s:
            risk = await s.get(Risk, risk_id)
            if not risk:
                raise NotFoundError("Risk", risk_id)
            risk.likelihood = likelihood
            risk.impact = impact
            risk.inherent_score = snapshot.inherent_score
            risk.residual_score = snapshot.residual_score
            risk.target_score = snapshot.target_score
            risk.control_effectiveness = snapshot.control_effectiveness
            row = await self._insert_history(s, risk_id, snapshot, source, note, None)
            entry = ScoreHistoryEntry.model_validate(row)
            await s.commit()
        logger.info("Risk %s rescored (%s): residual=%s", risk_id, source, snapshot.residual_score)
        return entry

    # ── Score history (append-only) ──

    async def append_score_history(
        self,
        risk_id: int,
        snapshot: ScoreSnapshot,
        source: ScoreSource,
        note: str | None = None,
        recorded_at: datetime | None = None,
    ) -> ScoreHistoryEntry:
        async with self._session("append_score_history") as s:
            row = await self._insert_history(s, risk_id, snapshot, source, note, recorded_at)
            entry = ScoreHistoryEntry.model_validate(row)
            await s.commit()
        return entry

    async def _insert_history(
        self,
        s: AsyncSession,
        risk_id: int,
        snapshot: ScoreSnapshot,
        source: ScoreSource,
        note: str | None,
        recorded_at: datetime | None,
    ) -> RiskScoreHistory:
        latest_q = select(func.max(RiskScoreHistory.recorded_at)).where(
            RiskScoreHistory.risk_id == risk_id,
        )
        latest = (await s.execute(latest_q)).scalar()
        if recorded_at is None:
            recorded_at = utcnow()
            if latest is not None and recorded_at < latest:
                recorded_at = latest
        else:
            recorded_at = to_naive_utc(recorded_at)
            if latest is not None and recorded_at < latest:
                raise ValidationError(
                    "recorded_at", f"must not precede the latest snapshot ({latest.isoformat()})",
                )

        row = RiskScoreHistory(
            risk_id=risk_id,
            inherent_score=snapshot.inherent_score,
            residual_score=snapshot.residual_score,
            target_score=snapshot.target_score,
            control_effectiveness=snapshot.control_effectiveness,
            source=source,
            note=note,
            recorded_at=recorded_at,
        )
        s.add(row)
        await s.flush()
        return row

    @staticmethod
    def _window_clauses(window: HistoryWindow) -> list:
        clauses = []
        if window.start is not None:
            clauses.append(RiskScoreHistory.recorded_at >= window.start)
        if window.end is not None:
            clauses.append(RiskScoreHistory.recorded_at <= window.end)
        return clauses

    async def read_score_history(self, risk_id: int, window: HistoryWindow) -> list[ScoreHistoryEntry]:
        q = (
            select(RiskScoreHistory)
            .where(RiskScoreHistory.risk_id == risk_id, *self._window_clauses(window))
            .order_by(RiskScoreHistory.recorded_at, RiskScoreHistory.id)
            .limit(window.limit)
        )
        async with self._session("read_score_history") as s:
            rows = (await s.execute(q)).scalars().all()
            return [ScoreHistoryEntry.model_validate(r) for r in rows]

    async def read_score_history_endpoints(
        self, risk_ids: Sequence[int], window: HistoryWindow,
    ) -> dict[int, list[ScoreHistoryEntry]]:
        if not risk_ids:
            return {}
        h = RiskScoreHistory
        # rank each risk's rows from both ends; rank 1 is the earliest or the latest
        ranked = (
            select(
                h.id,
                func.row_number().over(
                    partition_by=h.risk_id, order_by=(h.recorded_at, h.id),
                ).label("first_rank"),
                func.row_number().over(
                    partition_by=h.risk_id, order_by=(h.recorded_at.desc(), h.id.desc()),
                ).label("last_rank"),
            )
            .where(h.risk_id.in_(list(risk_ids)), *self._window_clauses(window))
            .subquery()
        )
        q = (
            select(h)
            .join(ranked, ranked.c.id == h.id)
            .where(or_(ranked.c.first_rank == 1, ranked.c.last_rank == 1))
            .order_by(h.risk_id, h.recorded_at, h.id)
        )
        async with self._session("read_score_history_endpoints") as s:
            rows = (await s.execute(q)).scalars().all()
            grouped: dict[int, list[ScoreHistoryEntry]] = {}
            for r in rows:
                grouped.setdefault(r.risk_id, []).append(ScoreHistoryEntry.model_validate(r))
            return grouped

    # ── Framework catalog ──

    async def find_frameworks(self, framework_ids: Sequence[int]) -> list[FrameworkRecord]:
        if not framework_ids:
            return []
        q = select(Framework).where(Framework.id.in_(list(framework_ids))).order_by(Framework.id)
        async with self._session("find_frameworks") as s:
            rows = (await s.execute(q)).scalars().all()
            return [FrameworkRecord.model_validate(r) for r in rows]

    async def find_controls(self, framework_ids: Sequence[int]) -> list[ControlRecord]:
        if not framework_ids:
            return []
        q = (
            select(Control)
            .where(Control.framework_id.in_(list(framework_ids)))
            .order_by(Control.sort_order, Control.code, Control.id)
        )
        async with self._session("find_controls") as s:
            rows = (await s.execute(q)).scalars().all()
            return [ControlRecord.model_validate(r) for r in rows]

    async def find_control_mappings(self, control_ids: Sequence[int]) -> list[ControlMappingRecord]:
        if not control_ids:
            return []
        ids = list(control_ids)
        q = (
            select(ControlMapping)
            .where(or_(
                ControlMapping.source_control_id.in_(ids),
                ControlMapping.target_control_id.in_(ids),
            ))
            .order_by(ControlMapping.id)
        )
        async with self._session("find_control_mappings") as s:
            rows = (await s.execute(q)).scalars().all()
            return [ControlMappingRecord.model_validate(r) for r in rows]

    async def find_assessments(
        self, framework_ids: Sequence[int], organization_id: int,
    ) -> list[AssessmentRecord]:
        if not framework_ids:
            return []
        q = (
            select(Assessment)
            .where(
                Assessment.framework_id.in_(list(framework_ids)),
                Assessment.organization_id == organization_id,
            )
            .order_by(Assessment.id)
        )
        async with self._session("find_assessments") as s:
            rows = (await s.execute(q)).scalars().all()
            return [AssessmentRecord.model_validate(r) for r in rows]

    async def find_evidence(
        self, control_ids: Sequence[int], organization_id: int | None = None,
    ) -> list[EvidenceLink]:
        if not control_ids:
            return []
        q = select(ControlEvidence).where(ControlEvidence.control_id.in_(list(control_ids)))
        if organization_id is not None:
            q = q.join(Evidence, ControlEvidence.evidence_id == Evidence.id).where(
                Evidence.organization_id == organization_id,
            )
        q = q.order_by(ControlEvidence.control_id, ControlEvidence.evidence_id)
        async with self._session("find_evidence") as s:
            rows = (await s.execute(q)).scalars().all()
            return [EvidenceLink.model_validate(r) for r in rows]
