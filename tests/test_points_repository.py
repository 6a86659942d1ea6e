import pytest
from sqlalchemy import create_engine

from payapi.core.exceptions import InsufficientBalanceError
from payapi.database.connection import Database
from payapi.models.points import PointBalance, PointTransaction, PointTransactionType
from payapi.models.user import User
from payapi.repositories.points_repository import PointsRepository


@pytest.fixture
def repo(db):
    return PointsRepository(db)


class TestPointsLedger:
    """포인트 잔액/원장 테스트"""

    def test_balance_is_zero_before_first_credit(self, repo, seed):
        """첫 적립 전 잔액 조회"""
        balance = repo.get_balance(seed.buyer.id)

        assert balance.balance == 0
        assert balance.total_purchased == 0
        assert balance.total_spent == 0

    def test_credit_creates_balance_row_and_ledger_entry(self, db, repo, seed):
        """적립 시 잔액 행 생성 + 원장 기록"""
        # When
        entry = repo.credit(
            seed.buyer.id,
            1000,
            PointTransactionType.PURCHASE,
            description="Point purchase",
            reference_id=42,
            external_ref="pi_123",
        )
        db.commit()

        # Then
        assert entry.amount == 1000
        assert entry.balance_after == 1000
        balance = repo.get_balance(seed.buyer.id)
        assert balance.balance == 1000
        assert balance.total_purchased == 1000

        row = db.query(PointTransaction).filter(PointTransaction.id == entry.transaction_id).one()
        assert row.reference_id == 42
        assert row.stripe_payment_intent_id == "pi_123"

    def test_debit_records_negative_amount(self, db, repo, seed):
        """차감은 음수 금액과 거래 후 잔액으로 기록"""
        # Given
        repo.credit(seed.buyer.id, 1000, PointTransactionType.PURCHASE, description="top-up")

        # When
        entry = repo.debit(
            seed.buyer.id, 300, PointTransactionType.POST_PURCHASE, reference_id=7, description="post"
        )
        db.commit()

        # Then
        assert entry.amount == -300
        assert entry.balance_after == 700
        balance = repo.get_balance(seed.buyer.id)
        assert balance.balance == 700
        assert balance.total_spent == 300

    def test_debit_more_than_balance_changes_nothing(self, db, repo, seed):
        """잔액 부족 차감은 잔액과 원장을 건드리지 않음"""
        # Given
        repo.credit(seed.buyer.id, 500, PointTransactionType.PURCHASE, description="top-up")
        db.commit()

        # When / Then
        with pytest.raises(InsufficientBalanceError) as exc_info:
            repo.debit(
                seed.buyer.id, 501, PointTransactionType.TIP, reference_id=None, description="tip"
            )
        assert exc_info.value.details == {"required": 501, "available": 500}

        db.rollback()
        assert repo.get_balance(seed.buyer.id).balance == 500
        assert (
            db.query(PointTransaction)
            .filter(PointTransaction.user_id == seed.buyer.id)
            .count()
            == 1
        )

    def test_debit_without_balance_row(self, repo, seed):
        """잔액 행이 없는 사용자의 차감"""
        with pytest.raises(InsufficientBalanceError) as exc_info:
            repo.debit(
                seed.other.id, 1, PointTransactionType.TIP, reference_id=None, description="tip"
            )
        assert exc_info.value.details["available"] == 0

    @pytest.mark.parametrize("amount", [0, -10])
    def test_non_positive_amounts_rejected(self, repo, seed, amount):
        with pytest.raises(ValueError):
            repo.credit(seed.buyer.id, amount, PointTransactionType.PURCHASE, description="x")
        with pytest.raises(ValueError):
            repo.debit(
                seed.buyer.id, amount, PointTransactionType.TIP, reference_id=None, description="x"
            )

    def test_transactions_newest_first_with_paging(self, db, repo, seed):
        """거래 내역 최신순 페이징"""
        # Given
        for amount in (100, 200, 300):
            repo.credit(seed.buyer.id, amount, PointTransactionType.PURCHASE, description="top-up")
        db.commit()

        # When
        page = repo.get_transactions(seed.buyer.id, limit=2, offset=0)

        # Then
        assert page.total_count == 3
        assert page.has_next is True
        assert [t.amount for t in page.transactions] == [300, 200]


class TestPointsIntegrity:
    """잔액 행 vs 원장 합계 검증"""

    def test_user_integrity_ok(self, db, repo, seed):
        # Given
        repo.credit(seed.buyer.id, 1000, PointTransactionType.PURCHASE, description="top-up")
        repo.debit(seed.buyer.id, 400, PointTransactionType.TIP, reference_id=None, description="tip")
        db.commit()

        # When
        result = repo.verify_integrity_for_user(seed.buyer.id)

        # Then
        assert result.status == "OK"
        assert result.balance == 600
        assert result.sum_of_transactions == 600

    def test_global_integrity_detects_tampered_balance(self, db, repo, seed):
        """원장을 거치지 않은 잔액 변경 탐지"""
        # Given
        repo.credit(seed.buyer.id, 1000, PointTransactionType.PURCHASE, description="top-up")
        repo.credit(seed.other.id, 500, PointTransactionType.PURCHASE, description="top-up")
        db.query(PointBalance).filter(PointBalance.user_id == seed.other.id).update(
            {PointBalance.balance: 9999}, synchronize_session=False
        )
        db.commit()

        # When
        result = repo.verify_global_integrity()

        # Then
        assert result.status == "MISMATCH"
        assert result.user_count == 2
        assert result.mismatched_user_ids == [seed.other.id]


class TestConcurrentDebit:
    """잔액 확인 후 다른 세션이 먼저 차감하는 경우"""

    @pytest.fixture
    def file_database(self, tmp_path):
        # 세션마다 별도 커넥션이 필요하므로 파일 기반 sqlite 사용
        database = Database(engine=create_engine(f"sqlite:///{tmp_path / 'ledger.db'}"))
        database.create_all()
        yield database
        database.dispose()

    def test_second_debit_fails_after_competing_debit(self, file_database):
        # Given: 잔액 500
        with file_database.session_scope() as setup:
            user = User(email="race@payapi.dev", nickname="race")
            setup.add(user)
            setup.flush()
            user_id = user.id
            PointsRepository(setup).credit(
                user_id, 500, PointTransactionType.PURCHASE, description="top-up"
            )

        first_session = file_database.session()
        second_session = file_database.session()
        first, second = PointsRepository(first_session), PointsRepository(second_session)
        try:
            # 두 요청 모두 잔액 확인 단계에서는 500 을 봄
            assert first.get_balance(user_id).balance >= 400
            assert second.get_balance(user_id).balance >= 400

            # When
            first.debit(user_id, 400, PointTransactionType.TIP, reference_id=1, description="tip")
            first_session.commit()

            with pytest.raises(InsufficientBalanceError) as exc_info:
                second.debit(
                    user_id, 400, PointTransactionType.TIP, reference_id=2, description="tip"
                )
            second_session.rollback()
        finally:
            first_session.close()
            second_session.close()

        # Then
        assert exc_info.value.details == {"required": 400, "available": 100}
        with file_database.session_scope() as check:
            result = PointsRepository(check).verify_integrity_for_user(user_id)
        assert result.status == "OK"
        assert result.balance == 100
        assert result.sum_of_transactions == 100
        assert result.total_spent == 400
