from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel as PydanticModel
from sqlalchemy.orm import Session

from payapi.models.idempotency import IdempotencyKey, IdempotencyStatus
from payapi.repositories.base import BaseRepository


class IdempotencyKeyRecord(PydanticModel):
    id: int
    key: str
    operation_type: str
    user_id: int
    status: IdempotencyStatus
    result_data: Optional[Any] = None
    expires_at: datetime

    class Config:
        from_attributes = True


class IdempotencyRepository(BaseRepository[IdempotencyKey, IdempotencyKeyRecord]):
    def __init__(self, db: Session):
        super().__init__(IdempotencyKey, IdempotencyKeyRecord, db)

    def get_by_key(self, key: str) -> Optional[IdempotencyKeyRecord]:
        row = (
            self.db.query(IdempotencyKey)
            .filter(IdempotencyKey.key == key)
            .populate_existing()
            .first()
        )
        return self._to_schema(row)

    def insert_pending(
        self, key: str, operation_type: str, user_id: int, expires_at: datetime
    ) -> IdempotencyKeyRecord:
        """pending 상태로 삽입 - 같은 키가 동시에 들어오면 유니크 제약으로 IntegrityError"""
        return self.create(
            key=key,
            operation_type=operation_type,
            user_id=user_id,
            status=IdempotencyStatus.PENDING.value,
            expires_at=expires_at,
        )

    def set_status(
        self,
        key: str,
        status: IdempotencyStatus,
        result_data: Any = None,
        expires_at: Optional[datetime] = None,
    ) -> int:
        values = {IdempotencyKey.status: status.value}
        if result_data is not None:
            values[IdempotencyKey.result_data] = result_data
        if expires_at is not None:
            values[IdempotencyKey.expires_at] = expires_at
        return (
            self.db.query(IdempotencyKey)
            .filter(IdempotencyKey.key == key)
            .update(values, synchronize_session=False)
        )

    def delete_key(self, key: str) -> int:
        return (
            self.db.query(IdempotencyKey)
            .filter(IdempotencyKey.key == key)
            .delete(synchronize_session=False)
        )

    def delete_expired(self, now: datetime) -> int:
        return (
            self.db.query(IdempotencyKey)
            .filter(IdempotencyKey.expires_at < now)
            .delete(synchronize_session=False)
        )

    def claim_failed(self, key: str, expires_at: datetime) -> int:
        """failed 인 키만 pending 으로 되돌림 - 영향 행 수 0 이면 다른 요청이 선점"""
        return (
            self.db.query(IdempotencyKey)
            .filter(
                IdempotencyKey.key == key,
                IdempotencyKey.status == IdempotencyStatus.FAILED.value,
            )
            .update(
                {
                    IdempotencyKey.status: IdempotencyStatus.PENDING.value,
                    IdempotencyKey.expires_at: expires_at,
                },
                synchronize_session=False,
            )
        )
