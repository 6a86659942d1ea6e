import logging
from typing import List

from sqlalchemy.orm import Session

from payapi.repositories.points_repository import PointsRepository
from payapi.schemas.points import (
    PointBalanceResponse,
    PointPackageResponse,
    PointsIntegrityCheckResponse,
    PointTransactionsResponse,
)

logger = logging.getLogger(__name__)


class PointService:
    """포인트 조회 관련 비즈니스 로직 (적립/차감은 결제 흐름에서만 발생)"""

    MAX_PAGE_SIZE = 100

    def __init__(self, db: Session):
        self.db = db
        self.points_repo = PointsRepository(db)

    def get_balance(self, user_id: int) -> PointBalanceResponse:
        """사용자 포인트 잔액 조회

        Args:
            user_id: 사용자 ID

        Returns:
            PointBalanceResponse: 잔액, 누적 적립, 누적 사용
        """
        balance = self.points_repo.get_balance(user_id)
        logger.info(f"Retrieved balance for user {user_id}: {balance.balance}")
        return balance

    def get_transactions(
        self, user_id: int, limit: int = 20, offset: int = 0
    ) -> PointTransactionsResponse:
        """사용자 포인트 거래 내역 조회

        Args:
            user_id: 사용자 ID
            limit: 페이지 크기 (최대 100)
            offset: 오프셋
        """
        limit = max(1, min(limit, self.MAX_PAGE_SIZE))
        offset = max(0, offset)
        result = self.points_repo.get_transactions(user_id, limit=limit, offset=offset)
        logger.info(
            f"Retrieved transactions for user {user_id}: {result.total_count} entries"
        )
        return result

    def get_packages(self) -> List[PointPackageResponse]:
        return self.points_repo.list_packages(active_only=True)

    def verify_user_integrity(self, user_id: int) -> PointsIntegrityCheckResponse:
        result = self.points_repo.verify_integrity_for_user(user_id)
        if result.status != "OK":
            logger.error(
                f"Point integrity mismatch for user {user_id}: "
                f"balance={result.balance}, ledger_sum={result.sum_of_transactions}"
            )
        return result

    def verify_global_integrity(self) -> PointsIntegrityCheckResponse:
        result = self.points_repo.verify_global_integrity()
        if result.status != "OK":
            logger.error(
                f"Point integrity mismatch for {len(result.mismatched_user_ids)} users: "
                f"{result.mismatched_user_ids[:20]}"
            )
        return result
