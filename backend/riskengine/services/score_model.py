"""Fixed risk score model: inherent = likelihood × impact, residual after controls."""
from decimal import ROUND_HALF_UP, Decimal
from numbers import Real

from riskengine.errors import ValidationError
from riskengine.schemas.records import ScoreSnapshot
from riskengine.schemas.scoring import RiskLevel

RATING_MIN = 1
RATING_MAX = 5
EFFECTIVENESS_MIN = 0
EFFECTIVENESS_MAX = 100
MAX_SCORE = RATING_MAX * RATING_MAX


def round_half_up(value) -> int:
    """Round to the nearest integer, halves away from zero (2.5 -> 3)."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_rating(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, f"must be an integer between {RATING_MIN} and {RATING_MAX}")
    if value < RATING_MIN or value > RATING_MAX:
        raise ValidationError(field, f"must be between {RATING_MIN} and {RATING_MAX}, got {value}")
    return value


def validate_effectiveness(value, field: str = "effectiveness") -> Real | Decimal:
    if isinstance(value, bool) or not isinstance(value, (Real, Decimal)):
        raise ValidationError(
            field, f"must be a number between {EFFECTIVENESS_MIN} and {EFFECTIVENESS_MAX}",
        )
    if value != value:
        raise ValidationError(field, "must not be NaN")
    if value < EFFECTIVENESS_MIN or value > EFFECTIVENESS_MAX:
        raise ValidationError(
            field, f"must be between {EFFECTIVENESS_MIN} and {EFFECTIVENESS_MAX}, got {value}",
        )
    return value


def inherent_score(likelihood: int, impact: int) -> int:
    validate_rating(likelihood, "likelihood")
    validate_rating(impact, "impact")
    return likelihood * impact


def residual_score(inherent: int, effectiveness) -> int:
    """``round(inherent * (1 - effectiveness / 100))`` clamped to ``[0, inherent]``."""
    if isinstance(inherent, bool) or not isinstance(inherent, int) or inherent < 0:
        raise ValidationError("inherent_score", "must be a non-negative integer")
    validate_effectiveness(effectiveness)

    # Decimal keeps identical inputs producing identical outputs
    remaining = Decimal(inherent) * (Decimal(100) - Decimal(str(effectiveness))) / Decimal(100)
    return max(0, min(inherent, round_half_up(remaining)))


def risk_level(score: int) -> RiskLevel:
    if score >= 17:
        return RiskLevel.CRITICAL
    if score >= 10:
        return RiskLevel.HIGH
    if score >= 5:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def score_risk(
    likelihood: int,
    impact: int,
    effectiveness: int = 0,
    target_score: int | None = None,
) -> ScoreSnapshot:
    inherent = inherent_score(likelihood, impact)
    return ScoreSnapshot(
        inherent_score=inherent,
        residual_score=residual_score(inherent, effectiveness),
        target_score=target_score,
        control_effectiveness=effectiveness,
    )
