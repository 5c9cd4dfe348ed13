from threading import Lock
from typing import Dict, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from loyaltyapi.config import Settings, settings


def build_engine(app_settings: Settings) -> Engine:
    url = app_settings.database_url
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=app_settings.DEBUG,
        )

    return create_engine(
        url,
        pool_size=app_settings.DB_POOL_SIZE,
        max_overflow=app_settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # 연결 유효성 검사
        pool_recycle=3600,  # 1시간마다 연결 재생성
        echo=app_settings.DEBUG,  # 디버그 모드에서 SQL 로깅
        connect_args={"options": f"-csearch_path={app_settings.POSTGRES_SCHEMA}"},
    )


# DB URL 별로 엔진/세션 팩토리를 하나씩 유지
_session_factories: Dict[str, sessionmaker] = {}
_lock = Lock()


def get_session_factory(app_settings: Optional[Settings] = None) -> sessionmaker:
    """설정의 DB URL 에 해당하는 세션 팩토리 (설정 생략 시 환경 변수 기반 전역 설정)"""
    app_settings = app_settings or settings
    url = app_settings.database_url
    with _lock:
        factory = _session_factories.get(url)
        if factory is None:
            # Use expire_on_commit=False to avoid DetachedInstanceError when accessing
            # attributes after commit within the same request scope.
            factory = sessionmaker(
                autocommit=False,
                autoflush=False,
                bind=build_engine(app_settings),
                expire_on_commit=False,
            )
            _session_factories[url] = factory
    return factory


def get_engine(app_settings: Optional[Settings] = None) -> Engine:
    return get_session_factory(app_settings).kw["bind"]
