"""
Score history ledger.

History is an append-only event log per risk: each mutation of a risk's
scoring attributes produces a new immutable ``ScoreHistoryEntry``; nothing is
ever rewritten. ``ScoreHistoryLedger`` is the in-process arena that enforces
non-decreasing ``recorded_at`` per risk; the SQL store enforces the same rule
inside the insert transaction.
"""
import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import datetime

from riskengine.errors import NotFoundError, ValidationError
from riskengine.models.base import to_naive_utc, utcnow
from riskengine.models.risk import ScoreSource
from riskengine.repository.base import RiskStore
from riskengine.schemas.records import HistoryWindow, ScoreHistoryEntry, ScoreSnapshot
from riskengine.schemas.scoring import RiskHistoryReport
from riskengine.services.score_model import risk_level
from riskengine.services.velocity import calculate_velocity

logger = logging.getLogger(__name__)


class ScoreHistoryLedger:
    """Arena of immutable score snapshots keyed by risk id."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._entries: dict[int, list[ScoreHistoryEntry]] = {}
        self._next_id = 1

    def __len__(self) -> int:
        return sum(len(v) for v in self._entries.values())

    def latest(self, risk_id: int) -> ScoreHistoryEntry | None:
        entries = self._entries.get(risk_id)
        return entries[-1] if entries else None

    def append(
        self,
        risk_id: int,
        snapshot: ScoreSnapshot,
        source: ScoreSource,
        note: str | None = None,
        recorded_at: datetime | None = None,
    ) -> ScoreHistoryEntry:
        last = self.latest(risk_id)
        if recorded_at is None:
            recorded_at = self._clock()
            # A clock step backwards must not break ordering
            if last is not None and recorded_at < last.recorded_at:
                recorded_at = last.recorded_at
        else:
            recorded_at = to_naive_utc(recorded_at)
            if last is not None and recorded_at < last.recorded_at:
                raise ValidationError(
                    "recorded_at",
                    f"must not precede the latest snapshot ({last.recorded_at.isoformat()})",
                )

        entry = ScoreHistoryEntry(
            id=self._next_id,
            risk_id=risk_id,
            inherent_score=snapshot.inherent_score,
            residual_score=snapshot.residual_score,
            target_score=snapshot.target_score,
            control_effectiveness=snapshot.control_effectiveness,
            source=source,
            note=note,
            recorded_at=recorded_at,
        )
        self._next_id += 1
        self._entries.setdefault(risk_id, []).append(entry)
        return entry

    def read(self, risk_id: int, window: HistoryWindow = HistoryWindow()) -> tuple[ScoreHistoryEntry, ...]:
        matching = [e for e in self._entries.get(risk_id, ()) if window.contains(e.recorded_at)]
        return tuple(matching[:window.limit])

    def endpoints(
        self, risk_ids: Iterable[int], window: HistoryWindow = HistoryWindow(),
    ) -> dict[int, tuple[ScoreHistoryEntry, ...]]:
        """Earliest and latest entry per risk inside the window; the row cap does not apply."""
        result = {}
        for risk_id in dict.fromkeys(risk_ids):
            matching = [e for e in self._entries.get(risk_id, ()) if window.contains(e.recorded_at)]
            if len(matching) == 1:
                result[risk_id] = (matching[0],)
            elif matching:
                result[risk_id] = (matching[0], matching[-1])
        return result


async def append_snapshot(
    store: RiskStore,
    risk_id: int,
    snapshot: ScoreSnapshot,
    source: ScoreSource,
    note: str | None = None,
) -> ScoreHistoryEntry:
    entry = await store.append_score_history(risk_id, snapshot, source, note)
    logger.info(
        "Appended %s snapshot for risk %s (inherent=%s residual=%s)",
        source, risk_id, snapshot.inherent_score, snapshot.residual_score,
    )
    return entry


async def read_history(
    store: RiskStore, risk_id: int, window: HistoryWindow | None = None,
) -> list[ScoreHistoryEntry]:
    """Ascending history of one risk; callers wanting newest-first reverse it."""
    return await store.read_score_history(risk_id, window or HistoryWindow())


async def get_risk_history(
    store: RiskStore,
    risk_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
) -> RiskHistoryReport:
    """Current scores, windowed history and the velocity over that window.

    ``limit`` caps the returned rows only; velocity spans every snapshot
    between ``start`` and ``end``.
    """
    window = HistoryWindow(start=start, end=end, limit=limit)
    risk = await store.get_risk(risk_id)
    if not risk:
        raise NotFoundError("Risk", risk_id)

    history, endpoints = await asyncio.gather(
        read_history(store, risk_id, window),
        store.read_score_history_endpoints([risk_id], window),
    )
    return RiskHistoryReport(
        risk_id=risk.id,
        risk_title=risk.title,
        current_scores=ScoreSnapshot(
            inherent_score=risk.inherent_score,
            residual_score=risk.residual_score,
            target_score=risk.target_score,
            control_effectiveness=risk.control_effectiveness,
        ),
        risk_level=risk_level(risk.residual_score),
        history=history,
        velocity=calculate_velocity(endpoints.get(risk_id, ())),
        total=len(history),
    )
