from enum import Enum

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, JSON, String

from payapi.models.base import BaseModel, BigIntPK


class IdempotencyStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class IdempotencyKey(BaseModel):
    """
    멱등성 키 - 동일 키로 들어온 요청의 부수효과를 최대 1회로 제한

    result_data 에는 완료된 응답 스키마의 JSON 덤프가 캐시됩니다.
    expires_at 이 지난 키는 존재하지 않는 것으로 간주됩니다.
    """

    __tablename__ = "idempotency_keys"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    key = Column(String(255), nullable=False, unique=True, index=True)
    operation_type = Column(String(64), nullable=False)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False)
    status = Column(String(16), nullable=False, default=IdempotencyStatus.PENDING.value)
    result_data = Column(JSON, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
