"""
멱등성 가드 - 동일 키로 들어온 작업을 최대 1회 실행

상태별 동작:
- 키 없음 (또는 만료): pending 으로 기록 후 실행, 결과를 completed 로 캐시
- pending: 처리 중인 요청이 있으므로 즉시 Conflict (대기하지 않음)
- completed: 캐시된 결과를 그대로 반환 (fn 실행 안 함)
- failed: pending 으로 되돌리고 재시도
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payapi.config import Settings
from payapi.core.exceptions import IdempotencyConflictError
from payapi.models.idempotency import IdempotencyStatus
from payapi.repositories.idempotency_repository import IdempotencyRepository
from payapi.utils.date_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)


def generate_idempotency_key(
    operation_type: str, user_id: int, *identifiers, now: Optional[datetime] = None
) -> str:
    """
    기본 멱등성 키: {작업}_{사용자}_{식별자...}_{unix 초}

    같은 초 안의 중복 클릭만 묶이므로, 더 긴 구간의 재시도를 묶으려면
    클라이언트가 Idempotency-Key 를 직접 보내야 합니다.
    """
    now = now or utc_now()
    parts = [operation_type, str(user_id), *(str(i) for i in identifiers), str(int(now.timestamp()))]
    return "_".join(parts)


class IdempotencyService:
    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings
        self.repo = IdempotencyRepository(db)

    @property
    def ttl(self) -> timedelta:
        return timedelta(hours=self.settings.IDEMPOTENCY_KEY_TTL_HOURS)

    def run(
        self,
        key: str,
        operation_type: str,
        user_id: int,
        fn: Callable[[], ResultT],
        result_schema: Type[ResultT],
    ) -> ResultT:
        """
        fn 을 key 기준으로 최대 1회 실행

        fn 은 자체적으로 commit 하는 서비스 메서드여도 됩니다. 가드의 상태 기록은
        fn 실행 전후로 각각 commit 됩니다.

        Raises:
            IdempotencyConflictError: 같은 키가 처리 중이거나, 다른 사용자 또는 다른 작업의 키
        """
        now = utc_now()
        record = self.repo.get_by_key(key)

        if record is not None and ensure_utc(record.expires_at) <= now:
            logger.info(f"Idempotency key expired, treating as new: {key}")
            self.repo.delete_key(key)
            self.db.commit()
            record = None

        if record is not None:
            if record.user_id != user_id:
                raise IdempotencyConflictError(
                    "Idempotency key belongs to another request",
                    details={"key": key},
                )
            if record.operation_type != operation_type:
                raise IdempotencyConflictError(
                    "Idempotency key was used for a different operation",
                    details={"key": key, "operation_type": record.operation_type},
                )
            if record.status == IdempotencyStatus.PENDING:
                raise IdempotencyConflictError(details={"key": key})
            if record.status == IdempotencyStatus.COMPLETED:
                logger.info(f"Idempotent replay for key {key}")
                return result_schema.model_validate(record.result_data)

            # failed -> pending (동시에 두 요청이 재시도하면 하나만 성공)
            claimed = self.repo.claim_failed(key, expires_at=now + self.ttl)
            self.db.commit()
            if not claimed:
                raise IdempotencyConflictError(details={"key": key})
            logger.info(f"Retrying failed operation for key {key}")
        else:
            try:
                self.repo.insert_pending(key, operation_type, user_id, now + self.ttl)
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                raise IdempotencyConflictError(details={"key": key})

        try:
            result = fn()
        except Exception:
            self.db.rollback()
            self.repo.set_status(key, IdempotencyStatus.FAILED)
            self.db.commit()
            raise

        self.repo.set_status(
            key, IdempotencyStatus.COMPLETED, result_data=result.model_dump(mode="json")
        )
        self.db.commit()
        return result

    def cleanup_expired(self) -> int:
        """만료된 키 삭제 (배치)"""
        deleted = self.repo.delete_expired(utc_now())
        self.db.commit()
        logger.info(f"Deleted {deleted} expired idempotency keys")
        return deleted
