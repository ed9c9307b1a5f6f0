from typing import Dict, List, Optional
from datetime import datetime

from app.schemas.base import PascalModel


class CacheStatistics(PascalModel):
    connected: bool
    hits: int
    misses: int
    errors: int
    hit_ratio: float
    operations: Dict[str, int]
    reset_at: datetime
    total_keys: Optional[int] = None


class CacheKeysResponse(PascalModel):
    pattern: str
    count: int
    keys: List[str]


class CacheInvalidationResponse(PascalModel):
    message: str
    removed: int = 0


class WarmupResponse(PascalModel):
    message: str
    warmed_keys: List[str]
