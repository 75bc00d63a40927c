# top2000_auth/app/services/auth_service.py
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.claims import build_claims, system_clock
from app.core.exceptions import InvalidCredentials, StorageError
from app.core.security import AccessTokenIssuer, verify_password
from app.crud.crud_user import user as crud_user
from app.models.refresh_token import RevocationReason
from app.models.user import User
from app.services.refresh_token_service import RefreshTokenService


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int


class AuthService:
    """Login, refresh e logout: junta o emissor de access tokens com o serviço de refresh tokens."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        issuer: AccessTokenIssuer,
        refresh_tokens: RefreshTokenService,
        clock: Callable[[], datetime] = system_clock,
    ) -> None:
        self.db = db
        self.issuer = issuer
        self.refresh_tokens = refresh_tokens
        self.clock = clock

    async def login(self, email: str, password: str) -> TokenPair:
        user = await crud_user.authenticate(self.db, email=email, password=password)
        if not user:
            raise InvalidCredentials()

        issued = await self.refresh_tokens.issue_for(user.id)
        logger.info(f"Login bem-sucedido para user ID {user.id}")
        return TokenPair(
            access_token=self.mint_access_token(user),
            refresh_token=issued.value,
            expires_in=self._expires_in(),
        )

    async def refresh(self, refresh_token: str) -> TokenPair:
        rotated = await self.refresh_tokens.rotate(refresh_token)
        return TokenPair(
            access_token=self.mint_access_token(rotated.user),
            refresh_token=rotated.value,
            expires_in=self._expires_in(),
        )

    async def logout(self, refresh_token: str) -> None:
        await self.refresh_tokens.revoke(refresh_token, reason=RevocationReason.LOGOUT)

    async def change_password(self, user: User, *, current_password: str, new_password: str) -> int:
        """Troca a senha e derruba todas as sessões do usuário. Retorna quantos tokens foram revogados."""
        if not verify_password(current_password, user.hashed_password):
            raise InvalidCredentials("Current password is incorrect")
        try:
            await crud_user.set_password(self.db, user=user, new_password=new_password)
        except StorageError:
            await self.db.rollback()
            raise
        # O commit do revoke_all grava a senha nova e as revogações juntas
        count = await self.refresh_tokens.revoke_all_for_user(user.id, reason=RevocationReason.PASSWORD_CHANGED)
        logger.info(f"Usuário {user.id} trocou a senha; {count} sessão(ões) revogada(s)")
        return count

    def mint_access_token(self, user: User) -> str:
        claims = build_claims(
            user.id,
            user.email,
            crud_user.get_roles(user),
            lifetime=self.issuer.lifetime,
            clock=self.clock,
        )
        return self.issuer.issue(claims)

    def _expires_in(self) -> int:
        return int(self.issuer.lifetime.total_seconds())
