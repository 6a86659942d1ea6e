from typing import Optional

from sqlalchemy.orm import Session

from payapi.core.exceptions import NotFoundError, ValidationError
from payapi.models.catalog import Creator, Post, SubscriptionPlan
from payapi.repositories.base import BaseRepository
from payapi.schemas.catalog import CreatorInfo, PlanInfo, PostInfo
from payapi.schemas.payments import PriceQuote, ResourceKind, ResourceRef


class CatalogRepository(BaseRepository[Creator, CreatorInfo]):
    """
    판매 대상 조회 + 수취인 집계 갱신

    결제 코어가 협력 모듈 테이블에 접근하는 유일한 경로입니다.
    """

    def __init__(self, db: Session):
        super().__init__(Creator, CreatorInfo, db)

    def get_creator(self, creator_id: int) -> Optional[CreatorInfo]:
        return self.get_by_id(creator_id)

    def get_post(self, post_id: int) -> Optional[PostInfo]:
        row = self.db.query(Post).filter(Post.id == post_id).first()
        return PostInfo.model_validate(row) if row else None

    def get_plan(self, plan_id: int) -> Optional[PlanInfo]:
        row = (
            self.db.query(SubscriptionPlan)
            .filter(SubscriptionPlan.id == plan_id)
            .populate_existing()
            .first()
        )
        return PlanInfo.model_validate(row) if row else None

    def quote(self, ref: ResourceRef) -> PriceQuote:
        """
        결제 대상의 가격, 수취 크리에이터, 성인 플래그 조회

        성인 플래그는 대상 자체 또는 소유 크리에이터 중 하나라도 성인이면 True
        """
        if ref.kind == ResourceKind.POST:
            post = self.get_post(ref.id)
            if post is None:
                raise NotFoundError("Post not found", details={"post_id": ref.id})
            creator = self._require_creator(post.creator_id)
            return PriceQuote(
                kind=ref.kind,
                resource_id=post.id,
                price=post.price,
                creator_id=creator.id,
                creator_user_id=creator.user_id,
                is_adult=post.is_adult or creator.is_adult,
                title=post.title,
            )

        if ref.kind == ResourceKind.PLAN:
            plan = self.get_plan(ref.id)
            if plan is None or not plan.is_active:
                raise NotFoundError("Plan not found", details={"plan_id": ref.id})
            creator = self._require_creator(plan.creator_id)
            return PriceQuote(
                kind=ref.kind,
                resource_id=plan.id,
                price=plan.price,
                creator_id=creator.id,
                creator_user_id=creator.user_id,
                is_adult=plan.is_adult or creator.is_adult,
                title=plan.name,
            )

        if ref.kind == ResourceKind.TIP:
            creator = self._require_creator(ref.id)
            return PriceQuote(
                kind=ref.kind,
                resource_id=creator.id,
                price=ref.amount or 0,
                creator_id=creator.id,
                creator_user_id=creator.user_id,
                is_adult=creator.is_adult,
                title=creator.display_name,
                message=ref.message,
            )

        raise ValidationError(f"Unsupported resource kind: {ref.kind}")

    def _require_creator(self, creator_id: int) -> CreatorInfo:
        creator = self.get_creator(creator_id)
        if creator is None:
            raise NotFoundError("Creator not found", details={"creator_id": creator_id})
        return creator

    def credit_payee_total(self, creator_id: int, amount: int) -> None:
        """크리에이터 누적 후원액 증가 (결제 완료와 같은 트랜잭션)"""
        self.db.query(Creator).filter(Creator.id == creator_id).update(
            {Creator.total_support: Creator.total_support + amount},
            synchronize_session=False,
        )

    def adjust_subscriber_count(self, plan_id: int, delta: int) -> None:
        query = self.db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id)
        if delta < 0:
            # 0 아래로 내려가지 않도록
            query = query.filter(SubscriptionPlan.subscriber_count >= -delta)
        query.update(
            {SubscriptionPlan.subscriber_count: SubscriptionPlan.subscriber_count + delta},
            synchronize_session=False,
        )
