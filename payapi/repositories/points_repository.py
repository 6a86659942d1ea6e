"""
포인트 리포지토리 - 잔액 행과 원장에 대한 모든 데이터베이스 작업

핵심 특징:
- 차감은 `balance >= :amount` 조건부 UPDATE 한 번으로 처리하여, 잔액 조회와
  검증과 쓰기 사이에 다른 요청이 끼어들 수 없습니다 (영향 행 수 0 = 잔액 부족)
- 모든 변동은 원장(PointTransaction)에 부호 포함 금액과 거래 후 잔액으로 기록
- commit 하지 않습니다. 호출한 서비스의 트랜잭션에 포함됩니다
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from payapi.core.exceptions import InsufficientBalanceError
from payapi.models.points import (
    PointBalance,
    PointPackage,
    PointTransaction,
    PointTransactionType,
)
from payapi.repositories.base import BaseRepository
from payapi.schemas.points import (
    LedgerWriteResult,
    PointBalanceResponse,
    PointPackageResponse,
    PointsIntegrityCheckResponse,
    PointTransactionEntry,
    PointTransactionsResponse,
)


class PointsRepository(BaseRepository[PointTransaction, PointTransactionEntry]):
    """
    포인트 리포지토리

    주요 기능:
    1. 원자적 차감 - 조건부 UPDATE 로 동시 차감 시 초과 사용 방지
    2. 완전한 감사 추적 - 모든 포인트 변동을 원장에 기록
    3. 정합성 검증 - 잔액 행 vs 원장 합계
    """

    def __init__(self, db: Session):
        super().__init__(PointTransaction, PointTransactionEntry, db)

    def get_balance(self, user_id: int) -> PointBalanceResponse:
        """
        사용자의 현재 포인트 잔액 조회

        잔액 행이 아직 없으면 (첫 적립 전) 0 으로 응답합니다.
        """
        row = (
            self.db.query(PointBalance)
            .filter(PointBalance.user_id == user_id)
            .populate_existing()
            .first()
        )
        if row is None:
            return PointBalanceResponse(balance=0, total_purchased=0, total_spent=0)
        return PointBalanceResponse.model_validate(row)

    def _ensure_balance_row(self, user_id: int) -> None:
        """잔액 행이 없으면 0 으로 생성 (동시 생성 시 충돌 무시)"""
        dialect = self.db.get_bind().dialect.name
        values = dict(user_id=user_id, balance=0, total_purchased=0, total_spent=0)

        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            exists = (
                self.db.query(PointBalance.id)
                .filter(PointBalance.user_id == user_id)
                .first()
            )
            if exists is None:
                self.db.add(PointBalance(**values))
                self.db.flush()
            return

        stmt = (
            insert(PointBalance)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
        self.db.execute(stmt)

    def _read_balance(self, user_id: int) -> int:
        return (
            self.db.query(PointBalance.balance)
            .filter(PointBalance.user_id == user_id)
            .scalar()
        )

    def _append(
        self,
        user_id: int,
        kind: PointTransactionType,
        amount: int,
        balance_after: int,
        reference_id: Optional[int],
        description: Optional[str],
        external_ref: Optional[str] = None,
    ) -> LedgerWriteResult:
        entry = PointTransaction(
            user_id=user_id,
            type=kind.value,
            amount=amount,
            balance_after=balance_after,
            reference_id=reference_id,
            description=description,
            stripe_payment_intent_id=external_ref,
        )
        self.db.add(entry)
        self.db.flush()
        return LedgerWriteResult(
            transaction_id=entry.id, amount=amount, balance_after=balance_after
        )

    def credit(
        self,
        user_id: int,
        amount: int,
        kind: PointTransactionType,
        description: str,
        reference_id: Optional[int] = None,
        external_ref: Optional[str] = None,
    ) -> LedgerWriteResult:
        """
        포인트 적립 - 항상 성공

        Args:
            user_id: 사용자 ID
            amount: 적립 포인트 (양수)
            kind: 거래 유형
            description: 거래 설명
            reference_id: 결제 감사 로그 ID
            external_ref: Stripe PaymentIntent ID (포인트 구매 시)
        """
        if amount <= 0:
            raise ValueError(f"credit amount must be positive: {amount}")

        self._ensure_balance_row(user_id)
        self.db.query(PointBalance).filter(PointBalance.user_id == user_id).update(
            {
                PointBalance.balance: PointBalance.balance + amount,
                PointBalance.total_purchased: PointBalance.total_purchased + amount,
                PointBalance.updated_at: func.now(),
            },
            synchronize_session=False,
        )
        balance_after = self._read_balance(user_id)
        return self._append(
            user_id, kind, amount, balance_after, reference_id, description, external_ref
        )

    def debit(
        self,
        user_id: int,
        amount: int,
        kind: PointTransactionType,
        reference_id: Optional[int],
        description: str,
    ) -> LedgerWriteResult:
        """
        포인트 차감 - 잔액 검증과 쓰기를 하나의 조건부 UPDATE 로 수행

        Raises:
            InsufficientBalanceError: amount > 현재 잔액 (행이 갱신되지 않음)
        """
        if amount <= 0:
            raise ValueError(f"debit amount must be positive: {amount}")

        updated = (
            self.db.query(PointBalance)
            .filter(PointBalance.user_id == user_id, PointBalance.balance >= amount)
            .update(
                {
                    PointBalance.balance: PointBalance.balance - amount,
                    PointBalance.total_spent: PointBalance.total_spent + amount,
                    PointBalance.updated_at: func.now(),
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            available = self._read_balance(user_id) or 0
            raise InsufficientBalanceError(
                f"Insufficient balance. Required: {amount}, Available: {available}",
                details={"required": amount, "available": available},
            )

        balance_after = self._read_balance(user_id)
        return self._append(
            user_id, kind, -amount, balance_after, reference_id, description
        )

    def get_transactions(
        self, user_id: int, limit: int = 20, offset: int = 0
    ) -> PointTransactionsResponse:
        """사용자 포인트 거래 내역 조회 (최신순, 페이징)"""
        base = self.db.query(PointTransaction).filter(
            PointTransaction.user_id == user_id
        )
        total_count = base.count()
        rows = (
            base.order_by(desc(PointTransaction.created_at), desc(PointTransaction.id))
            .limit(limit)
            .offset(offset)
            .all()
        )
        return PointTransactionsResponse(
            transactions=[self._to_schema(row) for row in rows],
            total_count=total_count,
            has_next=offset + limit < total_count,
        )

    def find_by_reference(
        self, reference_id: int, kind: Optional[PointTransactionType] = None
    ) -> list[PointTransactionEntry]:
        query = self.db.query(PointTransaction).filter(
            PointTransaction.reference_id == reference_id
        )
        if kind is not None:
            query = query.filter(PointTransaction.type == kind.value)
        return [self._to_schema(row) for row in query.order_by(PointTransaction.id)]

    def list_packages(self, active_only: bool = True) -> list[PointPackageResponse]:
        query = self.db.query(PointPackage)
        if active_only:
            query = query.filter(PointPackage.is_active.is_(True))
        rows = query.order_by(PointPackage.display_order, PointPackage.id).all()
        return [PointPackageResponse.model_validate(row) for row in rows]

    def get_package(self, package_id: int) -> Optional[PointPackageResponse]:
        row = self.db.query(PointPackage).filter(PointPackage.id == package_id).first()
        return PointPackageResponse.model_validate(row) if row else None

    def verify_integrity_for_user(self, user_id: int) -> PointsIntegrityCheckResponse:
        """
        특정 사용자의 포인트 정합성 검증

        검증 방식:
        1. 원장 amount 합계 == 잔액 행 balance
        2. balance == total_purchased - total_spent
        """
        balance = self.get_balance(user_id)
        ledger_sum = (
            self.db.query(func.coalesce(func.sum(PointTransaction.amount), 0))
            .filter(PointTransaction.user_id == user_id)
            .scalar()
        )

        ok = ledger_sum == balance.balance and balance.balance == (
            balance.total_purchased - balance.total_spent
        )
        return PointsIntegrityCheckResponse(
            status="OK" if ok else "MISMATCH",
            user_id=user_id,
            balance=balance.balance,
            sum_of_transactions=ledger_sum,
            total_purchased=balance.total_purchased,
            total_spent=balance.total_spent,
            mismatched_user_ids=[] if ok else [user_id],
            verified_at=datetime.now(timezone.utc),
        )

    def verify_global_integrity(self) -> PointsIntegrityCheckResponse:
        """
        전체 사용자 포인트 정합성 검증

        사용자별 원장 합계와 잔액 행을 비교하여 불일치 사용자 목록을 반환합니다.
        대량 데이터에서는 시간이 걸리므로 배치/관리자 전용입니다.
        """
        ledger_sums = (
            self.db.query(
                PointTransaction.user_id,
                func.sum(PointTransaction.amount).label("ledger_sum"),
            )
            .group_by(PointTransaction.user_id)
            .subquery()
        )
        rows = (
            self.db.query(
                PointBalance.user_id,
                PointBalance.balance,
                PointBalance.total_purchased,
                PointBalance.total_spent,
                func.coalesce(ledger_sums.c.ledger_sum, 0),
            )
            .outerjoin(ledger_sums, ledger_sums.c.user_id == PointBalance.user_id)
            .all()
        )

        mismatched = [
            user_id
            for user_id, balance, purchased, spent, ledger_sum in rows
            if balance != ledger_sum or balance != purchased - spent
        ]
        return PointsIntegrityCheckResponse(
            status="OK" if not mismatched else "MISMATCH",
            user_count=len(rows),
            mismatched_user_ids=mismatched,
            verified_at=datetime.now(timezone.utc),
        )
