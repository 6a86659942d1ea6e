import json
import os

# 설정은 import 시점에 읽히므로 payapi import 전에 테스트 환경 변수를 지정
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from dependency_injector import providers
from fastapi.testclient import TestClient

from payapi.config import get_settings
from payapi.core.exceptions import WebhookSignatureError
from payapi.core.security import create_access_token
from payapi.database.connection import Database
from payapi.models.catalog import Creator, Post, SubscriptionPlan
from payapi.models.points import PointPackage, PointTransactionType
from payapi.models.user import User, UserRole
from payapi.repositories.points_repository import PointsRepository
from payapi.schemas.checkout import CheckoutSession, GatewayEvent
from payapi.schemas.user import User as UserSchema


class FakeStripeGateway:
    """Stripe 호출 없이 체크아웃 요청을 기록하는 게이트웨이"""

    VALID_SIGNATURE = "t=1,v1=valid"

    def __init__(self):
        self.requests = []
        self.fail_with = None

    def create_checkout_session(self, request):
        if self.fail_with is not None:
            raise self.fail_with
        self.requests.append(request)
        session_id = f"cs_test_{len(self.requests)}"
        return CheckoutSession(
            id=session_id, url=f"https://checkout.stripe.test/{session_id}"
        )

    def construct_event(self, payload, signature):
        if signature != self.VALID_SIGNATURE:
            raise WebhookSignatureError()
        raw = json.loads(payload)
        return GatewayEvent(
            id=raw["id"], type=raw["type"], data_object=raw["data"]["object"]
        )

    @property
    def last_request(self):
        return self.requests[-1]


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def database(settings):
    """테스트마다 새 인메모리 sqlite"""
    database = Database(settings)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def db(database):
    session = database.session()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeStripeGateway()


@pytest.fixture
def notifier():
    return Mock()


def _add(db, instance):
    db.add(instance)
    db.flush()
    return instance


@pytest.fixture
def seed(db):
    """
    기본 테스트 데이터

    - buyer / other: 일반 사용자
    - admin: 관리자
    - creator: 일반 크리에이터 (유료/무료/성인 게시물, 유료 플랜)
    - adult_creator: 성인 크리에이터
    - free_creator: 무료 플랜만 있는 크리에이터
    """
    buyer = _add(db, User(email="buyer@payapi.dev", nickname="buyer"))
    other = _add(db, User(email="other@payapi.dev", nickname="other"))
    admin = _add(
        db, User(email="admin@payapi.dev", nickname="admin", role=UserRole.ADMIN.value)
    )
    owner = _add(db, User(email="creator@payapi.dev", nickname="creator"))
    adult_owner = _add(db, User(email="adult@payapi.dev", nickname="adult"))
    free_owner = _add(db, User(email="free@payapi.dev", nickname="free"))

    creator = _add(db, Creator(user_id=owner.id, display_name="Creator", total_support=0))
    adult_creator = _add(
        db,
        Creator(
            user_id=adult_owner.id, display_name="Adult", is_adult=True, total_support=0
        ),
    )
    free_creator = _add(
        db, Creator(user_id=free_owner.id, display_name="Free", total_support=0)
    )

    post = _add(db, Post(creator_id=creator.id, title="Paid post", price=1000))
    free_post = _add(db, Post(creator_id=creator.id, title="Free post", price=0))
    adult_post = _add(
        db, Post(creator_id=creator.id, title="Adult post", price=1000, is_adult=True)
    )
    plan = _add(
        db,
        SubscriptionPlan(
            creator_id=creator.id, name="Monthly", price=500, subscriber_count=0
        ),
    )
    free_plan = _add(
        db,
        SubscriptionPlan(
            creator_id=free_creator.id, name="Free tier", price=0, subscriber_count=0
        ),
    )
    package = _add(
        db, PointPackage(name="1,000 Points", points=1000, price=1000, display_order=0)
    )
    db.commit()

    return SimpleNamespace(
        buyer=UserSchema.model_validate(buyer),
        other=UserSchema.model_validate(other),
        admin=UserSchema.model_validate(admin),
        owner=UserSchema.model_validate(owner),
        creator_id=creator.id,
        adult_creator_id=adult_creator.id,
        free_creator_id=free_creator.id,
        post_id=post.id,
        free_post_id=free_post.id,
        adult_post_id=adult_post.id,
        plan_id=plan.id,
        free_plan_id=free_plan.id,
        package_id=package.id,
    )


@pytest.fixture
def top_up(db):
    """사용자에게 포인트 적립 후 commit"""

    def _top_up(user_id: int, amount: int):
        PointsRepository(db).credit(
            user_id, amount, PointTransactionType.PURCHASE, description="Test top-up"
        )
        db.commit()

    return _top_up


@pytest.fixture
def checkout_event():
    """게이트웨이에 전달된 체크아웃 요청으로 Stripe 웹훅 이벤트를 구성"""

    def _event(
        session_id,
        request,
        event_type="checkout.session.completed",
        amount_total=None,
        payment_status="paid",
        payment_intent="pi_test_1",
        subscription=None,
        event_id="evt_test_1",
        metadata=None,
    ):
        return GatewayEvent(
            id=event_id,
            type=event_type,
            data_object={
                "id": session_id,
                "amount_total": (
                    request.line_item.amount if amount_total is None else amount_total
                ),
                "payment_status": payment_status,
                "payment_intent": payment_intent,
                "subscription": subscription,
                "metadata": dict(request.metadata) if metadata is None else metadata,
            },
        )

    return _event


@pytest.fixture
def app(database, gateway, notifier):
    from payapi.main import create_app

    app = create_app()
    app.container.infrastructure.database.override(providers.Object(database))
    app.container.infrastructure.stripe_gateway.override(providers.Object(gateway))
    app.container.infrastructure.notification_service.override(
        providers.Object(notifier)
    )
    yield app
    app.container.unwire()


@pytest.fixture
def client(app):
    """테스트 클라이언트 픽스처"""
    return TestClient(app)


@pytest.fixture
def auth_headers():
    def _headers(user) -> dict:
        token = create_access_token({"user_id": user.id, "sub": user.email})
        return {"Authorization": f"Bearer {token}"}

    return _headers
