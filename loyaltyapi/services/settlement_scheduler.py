"""
정산 배치 스케줄러

APScheduler BackgroundScheduler 로 매일 SETTLEMENT_CRON_HOUR:SETTLEMENT_CRON_MINUTE
(SETTLEMENT_TIMEZONE 기준)에 정산 배치를 실행합니다. 요청 처리와 독립적으로 동작하며
배치마다 새 DB 세션을 사용합니다.
"""

import logging
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from loyaltyapi.config import Settings
from loyaltyapi.schemas.settlement import SettlementBatchResult
from loyaltyapi.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)

SETTLEMENT_JOB_ID = "nightly_settlement"


class SettlementScheduler:
    def __init__(
        self,
        settings: Settings,
        session_factory: Callable[[], Session],
        service_factory: Callable[..., SettlementService],
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.service_factory = service_factory
        self.scheduler = scheduler or BackgroundScheduler(
            timezone=settings.SETTLEMENT_TIMEZONE
        )

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    def start(self) -> None:
        trigger = CronTrigger(
            hour=self.settings.SETTLEMENT_CRON_HOUR,
            minute=self.settings.SETTLEMENT_CRON_MINUTE,
            timezone=self.settings.SETTLEMENT_TIMEZONE,
        )
        self.scheduler.add_job(
            self.run_once,
            trigger,
            id=SETTLEMENT_JOB_ID,
            replace_existing=True,
            max_instances=1,  # 이전 배치가 끝나기 전에는 다시 실행하지 않음
            coalesce=True,
            misfire_grace_time=3600,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info(
            f"Settlement scheduler started: daily at "
            f"{self.settings.SETTLEMENT_CRON_HOUR:02d}:{self.settings.SETTLEMENT_CRON_MINUTE:02d} "
            f"{self.settings.SETTLEMENT_TIMEZONE}"
        )

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Settlement scheduler stopped")

    def run_once(self) -> Optional[SettlementBatchResult]:
        """배치 1회 실행. 예외는 로그로 남기고 스케줄러에는 전파하지 않음"""
        db = self.session_factory()
        try:
            service = self.service_factory(db=db)
            return service.run_batch()
        except Exception as e:
            logger.exception(f"Scheduled settlement batch failed: {e}")
            return None
        finally:
            db.close()
