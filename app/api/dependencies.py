# top2000_auth/app/api/dependencies.py
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.claims import system_clock
from app.core.config import settings
from app.core.security import AccessTokenIssuer
from app.crud.crud_user import user as crud_user
from app.db.session import get_db
from app.models.user import User as UserModel
from app.services.auth_service import AuthService
from app.services.refresh_token_service import RefreshTokenService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


def credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


@lru_cache
def get_token_issuer() -> AccessTokenIssuer:
    """Um emissor por processo; o segredo não muda depois da inicialização."""
    return AccessTokenIssuer.from_settings(settings)


def get_clock() -> Callable[[], datetime]:
    return system_clock


def get_refresh_token_service(
    db: AsyncSession = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> RefreshTokenService:
    return RefreshTokenService(
        db,
        lifetime=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        reuse_revokes_all=settings.REFRESH_REUSE_REVOKES_ALL,
        clock=clock,
    )


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    issuer: AccessTokenIssuer = Depends(get_token_issuer),
    refresh_tokens: RefreshTokenService = Depends(get_refresh_token_service),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AuthService:
    return AuthService(db, issuer=issuer, refresh_tokens=refresh_tokens, clock=clock)


async def get_current_user(
    db: AsyncSession = Depends(get_db),
    token: str = Depends(oauth2_scheme),
    issuer: AccessTokenIssuer = Depends(get_token_issuer),
) -> UserModel:
    payload = issuer.decode(token)
    if payload is None:
        raise credentials_exception()
    try:
        user_id = int(payload["sub"])
    except (KeyError, ValueError):
        raise credentials_exception()

    user = await crud_user.get(db, id=user_id)
    if user is None or not user.is_active:
        raise credentials_exception()
    return user


async def get_current_admin_user(
    current_user: UserModel = Depends(get_current_user),
) -> UserModel:
    """Exige a role de administrador no estado atual do usuário, não só no token."""
    if settings.ADMIN_ROLE not in crud_user.get_roles(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized. Requires administrator privileges.",
        )
    return current_user
