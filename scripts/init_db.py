import sys
import os

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text

from loyaltyapi.config import settings
from loyaltyapi.database.connection import get_engine
from loyaltyapi.models.base import Base

# 테이블 등록을 위해 모든 모델 모듈을 import
from loyaltyapi.models import account, payments, points  # noqa: F401


def init_db(create_accounts_table: bool = False):
    """데이터베이스 초기화

    users 테이블은 계정 서비스가 소유하므로 기본적으로 생성하지 않습니다.
    로컬 개발 DB 에서만 create_accounts_table=True 로 함께 생성합니다.
    """
    engine = get_engine()
    try:
        if engine.dialect.name == "postgresql":
            with engine.connect() as conn:
                conn.execute(
                    text(f"CREATE SCHEMA IF NOT EXISTS {settings.POSTGRES_SCHEMA}")
                )
                conn.commit()

        tables = [points.PointsLedger.__table__, payments.Payment.__table__]
        if create_accounts_table:
            tables.insert(0, account.Account.__table__)
        Base.metadata.create_all(bind=engine, tables=tables)
        print(
            f"Database initialized successfully with schema: {settings.POSTGRES_SCHEMA}"
        )

    except Exception as e:
        print(f"Database initialization failed: {str(e)}")
        raise


if __name__ == "__main__":
    init_db(create_accounts_table="--with-accounts" in sys.argv)
