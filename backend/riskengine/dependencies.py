"""FastAPI dependencies shared by the routers."""
from riskengine.cache import ResultCache, TTLCache
from riskengine.config import settings
from riskengine.errors import ValidationError
from riskengine.repository.base import RiskStore
from riskengine.repository.sql import SqlRiskStore

_store = SqlRiskStore.from_url(settings.DATABASE_URL)
_gap_cache = TTLCache(
    ttl_seconds=settings.GAP_CACHE_TTL_SECONDS,
    max_entries=settings.GAP_CACHE_MAX_ENTRIES,
)


def get_store() -> RiskStore:
    return _store


def get_gap_cache() -> ResultCache:
    return _gap_cache


def parse_id_list(raw: str, field: str) -> list[int]:
    """Comma-separated ids, e.g. ``'1,2,3'``; blanks are ignored."""
    ids: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError:
            raise ValidationError(field, f"invalid id {part!r}") from None
    return ids
