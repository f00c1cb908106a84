"""The contract the engine requires from its storage collaborator."""
from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from riskengine.models.risk import ScoreSource
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


class RiskStore(Protocol):
    """Typed finders over the relational store.

    Every finder returns plain records; an empty id sequence returns an empty
    result. Implementations raise ``StorageError`` on I/O failure.
    """

    async def ping(self) -> None:
        """Raise ``StorageError`` when the backing store is unreachable."""
        ...

    async def find_risks(self, risk_filter: RiskFilter, limit: int | None = None) -> list[RiskRecord]:
        """Risks matching the filter, highest residual score first, then by id."""
        ...

    async def get_risk(self, risk_id: int) -> RiskRecord | None: ...

    async def find_risk_controls(self, risk_ids: Sequence[int]) -> list[RiskControlRecord]: ...

    async def record_score_change(
        self,
        risk_id: int,
        likelihood: int,
        impact: int,
        snapshot: ScoreSnapshot,
        source: ScoreSource,
        note: str | None = None,
    ) -> ScoreHistoryEntry:
        """Update the risk's scoring columns and append the matching snapshot atomically."""
        ...

    async def append_score_history(
        self,
        risk_id: int,
        snapshot: ScoreSnapshot,
        source: ScoreSource,
        note: str | None = None,
        recorded_at: datetime | None = None,
    ) -> ScoreHistoryEntry:
        """Insert one snapshot. Never updates an existing row."""
        ...

    async def read_score_history(self, risk_id: int, window: HistoryWindow) -> list[ScoreHistoryEntry]:
        """Snapshots in the window, ascending by ``recorded_at``, at most ``window.limit``."""
        ...

    async def read_score_history_endpoints(
        self, risk_ids: Sequence[int], window: HistoryWindow,
    ) -> dict[int, list[ScoreHistoryEntry]]:
        """Earliest and latest snapshot per risk in the window, in one round trip.

        ``window.limit`` does not apply. A risk with one snapshot maps to a
        single entry; risks without snapshots are omitted.
        """
        ...

    async def find_frameworks(self, framework_ids: Sequence[int]) -> list[FrameworkRecord]: ...

    async def find_controls(self, framework_ids: Sequence[int]) -> list[ControlRecord]:
        """Controls of the frameworks ordered by ``sort_order`` then ``code``."""
        ...

    async def find_control_mappings(self, control_ids: Sequence[int]) -> list[ControlMappingRecord]:
        """Mappings whose source or target control is in ``control_ids``."""
        ...

    async def find_assessments(
        self, framework_ids: Sequence[int], organization_id: int,
    ) -> list[AssessmentRecord]: ...

    async def find_evidence(
        self, control_ids: Sequence[int], organization_id: int | None = None,
    ) -> list[EvidenceLink]: ...
