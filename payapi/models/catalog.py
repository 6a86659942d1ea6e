"""
판매 대상 카탈로그 (크리에이터/게시물/구독 플랜)

CRUD 는 외부 협력 모듈 소관이며, 결제 코어는 가격/소유자/성인 플래그 조회와
누적 후원액, 구독자 수 갱신에만 사용합니다.
"""

from sqlalchemy import BigInteger, Boolean, Column, ForeignKey, Integer, String

from payapi.models.base import BaseModel, BigIntPK


class Creator(BaseModel):
    __tablename__ = "creators"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False, unique=True)
    display_name = Column(String(100), nullable=False)
    is_adult = Column(Boolean, nullable=False, default=False)
    # 받은 금액 누적 (포인트 + 카드). 결제 완료와 같은 트랜잭션에서 증가
    total_support = Column(BigInteger, nullable=False, default=0)


class Post(BaseModel):
    __tablename__ = "posts"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    creator_id = Column(BigInteger, ForeignKey("creators.id"), nullable=False)
    title = Column(String(255), nullable=False)
    price = Column(BigInteger, nullable=False, default=0)  # 0 = 무료
    is_adult = Column(Boolean, nullable=False, default=False)


class SubscriptionPlan(BaseModel):
    __tablename__ = "subscription_plans"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    creator_id = Column(BigInteger, ForeignKey("creators.id"), nullable=False)
    name = Column(String(100), nullable=False)
    price = Column(BigInteger, nullable=False, default=0)  # 월 요금, 0 = 무료
    is_adult = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    subscriber_count = Column(Integer, nullable=False, default=0)
