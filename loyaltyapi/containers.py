from dependency_injector import containers, providers

from loyaltyapi.config import Settings
from loyaltyapi.database.connection import get_session_factory
from loyaltyapi.services.balance_service import BalanceService
from loyaltyapi.services.notification_service import NotificationService
from loyaltyapi.services.payment_gateway import StripePaymentGateway
from loyaltyapi.services.point_service import PointService
from loyaltyapi.services.rate_policy import PointsRatePolicy
from loyaltyapi.services.settlement_scheduler import SettlementScheduler
from loyaltyapi.services.settlement_service import SettlementService


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(Settings)


class ServiceModule(containers.DeclarativeContainer):
    """Service layer dependencies.

    Request-scoped services receive their DB session at call time:
    ``container.services.point_service(db=session)``.
    """

    config = providers.DependenciesContainer()

    session_factory = providers.Callable(get_session_factory, app_settings=config.config)
    rate_policy = providers.Singleton(PointsRatePolicy.from_settings, settings=config.config)
    payment_gateway = providers.Singleton(StripePaymentGateway, settings=config.config)
    notification_service = providers.Singleton(NotificationService, settings=config.config)

    point_service = providers.Factory(
        PointService,
        settings=config.config,
        rate_policy=rate_policy,
        notification_service=notification_service,
    )
    balance_service = providers.Factory(BalanceService, rate_policy=rate_policy)
    settlement_service = providers.Factory(
        SettlementService,
        settings=config.config,
        rate_policy=rate_policy,
        payment_gateway=payment_gateway,
        session_factory=session_factory,
    )
    settlement_scheduler = providers.Singleton(
        SettlementScheduler,
        settings=config.config,
        session_factory=session_factory,
        service_factory=settlement_service.provider,
    )


class Container(containers.DeclarativeContainer):
    """Application container."""

    config = providers.Container(ConfigModule)
    services = providers.Container(ServiceModule, config=config)
