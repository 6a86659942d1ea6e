from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class RenewalOutcome(str, Enum):
    RENEWED = "renewed"  # 포인트 차감 성공, 다음 결제일 +1개월
    GRACE_STARTED = "grace_started"  # 첫 실패 - 유예 시작
    IN_GRACE = "in_grace"  # 유예 기간 내 재실패
    CANCELLED = "cancelled"  # 유예 기간 경과 - 해지
    SKIPPED = "skipped"  # 갱신 대상 아님 (잠금 후 재확인) 또는 플랜 없음/가격 오류
    ERROR = "error"  # 처리 중 예외 (다음 배치에서 재시도)


class RenewalDetail(BaseModel):
    subscription_id: int
    user_id: int
    outcome: RenewalOutcome
    audit_log_id: Optional[int] = None
    error: Optional[str] = None


class RenewalBatchResult(BaseModel):
    """구독 갱신 배치 결과"""

    processed: int = 0
    renewed: int = 0
    grace_started: int = 0
    in_grace: int = 0
    cancelled: int = 0
    skipped: int = 0
    failed: int = 0
    details: List[RenewalDetail] = Field(default_factory=list)

    def record(self, detail: RenewalDetail) -> None:
        self.processed += 1
        self.details.append(detail)
        if detail.outcome == RenewalOutcome.RENEWED:
            self.renewed += 1
        elif detail.outcome == RenewalOutcome.GRACE_STARTED:
            self.grace_started += 1
        elif detail.outcome == RenewalOutcome.IN_GRACE:
            self.in_grace += 1
        elif detail.outcome == RenewalOutcome.CANCELLED:
            self.cancelled += 1
        elif detail.outcome == RenewalOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
