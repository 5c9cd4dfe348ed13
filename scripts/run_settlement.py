"""정산 배치를 1회 실행합니다 (cron/운영자 수동 실행용).

사용법: python scripts/run_settlement.py
"""

import sys
import os
import logging

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from loyaltyapi.containers import Container
from loyaltyapi.logging_config import setup_logging


def main() -> int:
    container = Container()
    settings = container.config.config()
    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("loyaltyapi.scripts.run_settlement")

    scheduler = container.services.settlement_scheduler()
    result = scheduler.run_once()
    if result is None:
        logger.error("Settlement batch did not complete")
        return 1

    print(result.model_dump_json(indent=2))
    # 재정산이 필요한 건이 있으면 비정상 종료 코드로 운영자에게 알림
    return 2 if result.reconciliation_count else 0


if __name__ == "__main__":
    sys.exit(main())
