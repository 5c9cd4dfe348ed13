import secrets
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from loyaltyapi.config import Settings
from loyaltyapi.core.exceptions import AuthenticationError
from loyaltyapi.deps import get_settings

# 스케줄러/운영자용 내부 Bearer 토큰 스킴
security = HTTPBearer(auto_error=False)


def verify_internal_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings),
) -> None:
    """관리자 엔드포인트용 내부 토큰 검증. AUTH_TOKEN 이 비어 있으면 항상 거부"""
    if not settings.AUTH_TOKEN:
        raise AuthenticationError("Internal token is not configured")
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Missing bearer token")
    if not secrets.compare_digest(credentials.credentials, settings.AUTH_TOKEN):
        raise AuthenticationError("Invalid internal token")
