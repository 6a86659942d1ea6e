from dependency_injector import containers, providers

from payapi.config import get_settings
from payapi.database.connection import Database
from payapi.services.admin_payment_service import AdminPaymentService
from payapi.services.aws_service import AwsService
from payapi.services.idempotency_service import IdempotencyService
from payapi.services.notification_service import NotificationService
from payapi.services.payment_service import PaymentService
from payapi.services.point_service import PointService
from payapi.services.stripe_gateway import StripeGateway
from payapi.services.subscription_renewal_service import SubscriptionRenewalService
from payapi.services.webhook_service import WebhookService


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(get_settings)


class InfrastructureModule(containers.DeclarativeContainer):
    """Process-wide resources: database engine, Stripe, SQS."""

    config = providers.DependenciesContainer()

    database = providers.Singleton(Database, settings=config.config)
    stripe_gateway = providers.Singleton(StripeGateway, settings=config.config)
    aws_service = providers.Singleton(AwsService, settings=config.config)
    notification_service = providers.Singleton(
        NotificationService, aws_service=aws_service, settings=config.config
    )


class ServiceModule(containers.DeclarativeContainer):
    """Service layer dependencies. `db` is supplied per request (see payapi.deps)."""

    config = providers.DependenciesContainer()
    infrastructure = providers.DependenciesContainer()

    point_service = providers.Factory(PointService)
    idempotency_service = providers.Factory(IdempotencyService, settings=config.config)
    payment_service = providers.Factory(
        PaymentService,
        settings=config.config,
        gateway=infrastructure.stripe_gateway,
        notifier=infrastructure.notification_service,
    )
    webhook_service = providers.Factory(
        WebhookService,
        settings=config.config,
        notifier=infrastructure.notification_service,
    )
    renewal_service = providers.Factory(
        SubscriptionRenewalService,
        settings=config.config,
        notifier=infrastructure.notification_service,
    )
    admin_payment_service = providers.Factory(AdminPaymentService)


class Container(containers.DeclarativeContainer):
    """Application container."""

    wiring_config = containers.WiringConfiguration(
        modules=[
            "payapi.routers.webhook_router",
            "payapi.routers.batch_router",
        ],
    )

    config = providers.Container(ConfigModule)
    infrastructure = providers.Container(InfrastructureModule, config=config)
    services = providers.Container(
        ServiceModule, config=config, infrastructure=infrastructure
    )
