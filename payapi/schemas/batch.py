from typing import List

from pydantic import BaseModel, Field


class StalePendingSweepResult(BaseModel):
    """오래된 pending 감사 로그 점검 결과"""

    flagged: int = 0
    audit_log_ids: List[int] = Field(default_factory=list)


class IdempotencyCleanupResult(BaseModel):
    deleted: int = 0
