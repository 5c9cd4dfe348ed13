from fastapi import Depends, Request
from sqlalchemy.orm import Session

from loyaltyapi.config import Settings
from loyaltyapi.database.session import get_db

# Services
from loyaltyapi.services.balance_service import BalanceService
from loyaltyapi.services.point_service import PointService
from loyaltyapi.services.settlement_service import SettlementService


def get_settings(request: Request) -> Settings:
    return request.app.container.config.config()


def get_point_service(request: Request, db: Session = Depends(get_db)) -> PointService:
    return request.app.container.services.point_service(db=db)


def get_balance_service(request: Request, db: Session = Depends(get_db)) -> BalanceService:
    return request.app.container.services.balance_service(db=db)


def get_settlement_service(
    request: Request, db: Session = Depends(get_db)
) -> SettlementService:
    return request.app.container.services.settlement_service(db=db)
