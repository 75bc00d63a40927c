# top2000_auth/app/services/refresh_token_service.py
"""
Ciclo de vida dos refresh tokens.

Estados de um token: Active -> Revoked (rotated | logout | reuse_detected |
password_changed | admin) ou Expired (passivo). Nenhuma transição sai de
Revoked.

A rotação é linearizável por valor de token: o token apresentado só é
consumido por um UPDATE condicionado a `is_revoked = false AND expires_at > now`.
Se zero linhas forem afetadas, outra requisição já consumiu o token (ou ele não
é mais válido) e a chamada falha sem alterar nada. Nenhum lock em memória é
usado; a garantia vem do banco.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.claims import system_clock
from app.core.exceptions import ConflictError, InvalidRefreshToken, ReplayDetected, StorageError
from app.core.security import generate_refresh_token_value, hash_token
from app.crud import crud_refresh_token
from app.crud.crud_user import user as crud_user
from app.models.refresh_token import RefreshToken, RevocationReason
from app.models.user import User

MAX_INSERT_ATTEMPTS = 3


@dataclass(frozen=True)
class IssuedRefreshToken:
    value: str
    record: RefreshToken


@dataclass(frozen=True)
class RotatedRefreshToken:
    value: str
    record: RefreshToken
    previous: RefreshToken
    user: User


class RefreshTokenService:
    def __init__(
        self,
        db: AsyncSession,
        *,
        lifetime: timedelta,
        reuse_revokes_all: bool = False,
        clock: Callable[[], datetime] = system_clock,
    ) -> None:
        self.db = db
        self.lifetime = lifetime
        self.reuse_revokes_all = reuse_revokes_all
        self.clock = clock

    async def issue_for(self, user_id: int) -> IssuedRefreshToken:
        """Cria um token Active novo para o usuário."""
        for attempt in range(1, MAX_INSERT_ATTEMPTS + 1):
            now = self.clock()
            value = generate_refresh_token_value()
            try:
                record = await crud_refresh_token.insert(
                    self.db,
                    user_id=user_id,
                    token_hash=hash_token(value),
                    issued_at=now,
                    expires_at=now + self.lifetime,
                )
                await self._commit()
            except ConflictError:
                await self._rollback()
                logger.warning(f"Colisão de refresh token para user ID {user_id} (tentativa {attempt})")
                continue
            except StorageError:
                # FK para usuário inexistente ou banco fora do ar: não adianta tentar outro valor
                await self._rollback()
                raise
            logger.info(f"Refresh token emitido para user ID {user_id}")
            return IssuedRefreshToken(value=value, record=record)
        raise StorageError("Could not allocate a unique refresh token")

    async def validate(self, token: str) -> RefreshToken:
        """Leitura pura: devolve o registro se ativo, senão InvalidRefreshToken."""
        if not token:
            raise InvalidRefreshToken()
        record = await crud_refresh_token.get_by_hash(self.db, token_hash=hash_token(token))
        if record is None or not record.is_active(self.clock()):
            raise InvalidRefreshToken()
        return record

    async def rotate(self, token: str) -> RotatedRefreshToken:
        """
        Consome `token` e emite o sucessor para o mesmo usuário, numa transação só.

        Retorna o novo valor junto com o usuário atual, para que as claims do
        novo access token reflitam as roles de agora.
        """
        if not token:
            raise InvalidRefreshToken()
        old_hash = hash_token(token)
        for attempt in range(1, MAX_INSERT_ATTEMPTS + 1):
            try:
                return await self._rotate_once(old_hash)
            except ConflictError:
                # Rollback devolve o token antigo ao estado Active; tenta com outro valor
                await self._rollback()
                logger.warning(f"Colisão de refresh token durante rotação (tentativa {attempt})")
        raise StorageError("Could not allocate a unique refresh token")

    async def _rotate_once(self, old_hash: str) -> RotatedRefreshToken:
        now = self.clock()
        new_value = generate_refresh_token_value()
        new_hash = hash_token(new_value)

        swapped = await crud_refresh_token.revoke_if_active(
            self.db,
            token_hash=old_hash,
            now=now,
            reason=RevocationReason.ROTATED,
            replaced_by_hash=new_hash,
        )
        if not swapped:
            await self._reject_rotation(old_hash, now)

        previous = await crud_refresh_token.get_by_hash(self.db, token_hash=old_hash)
        owner_id = previous.user_id
        user = await self._get_user(owner_id)
        if user is None or not user.is_active:
            # rollback expira as instâncias da sessão: nada de ler atributos ORM depois dele
            await self._rollback()
            logger.warning(f"Refresh recusado: usuário {owner_id} inexistente ou inativo")
            raise InvalidRefreshToken()

        record = await crud_refresh_token.insert(
            self.db,
            user_id=user.id,
            token_hash=new_hash,
            issued_at=now,
            expires_at=now + self.lifetime,
        )
        await self._commit()
        logger.info(f"Refresh token rotacionado para user ID {user.id}")
        return RotatedRefreshToken(value=new_value, record=record, previous=previous, user=user)

    async def _reject_rotation(self, token_hash: str, now: datetime) -> None:
        """
        O compare-and-swap não afetou linha nenhuma: decide entre Invalid e replay.

        O CAS não alterou nada, então a leitura acontece na mesma transação e
        os campos são copiados antes de qualquer rollback.
        """
        existing = await crud_refresh_token.get_by_hash(self.db, token_hash=token_hash)
        if existing is None:
            await self._rollback()
            logger.warning("Refresh recusado: token desconhecido")
            raise InvalidRefreshToken()

        token_id = existing.id
        owner_id = existing.user_id
        is_revoked = existing.is_revoked
        replayed = is_revoked and existing.revoked_reason == RevocationReason.ROTATED.value

        if replayed:
            audit = logger.bind(audit=True, user_id=owner_id, token_id=token_id)
            if self.reuse_revokes_all:
                count = await crud_refresh_token.revoke_all_for_user(
                    self.db, user_id=owner_id, now=now, reason=RevocationReason.REUSE_DETECTED
                )
                await self._commit()
                audit.warning(
                    f"Reuso de refresh token rotacionado detectado; {count} sessão(ões) revogada(s) "
                    f"para user ID {owner_id}"
                )
            else:
                await self._rollback()
                audit.warning(f"Reuso de refresh token rotacionado detectado para user ID {owner_id}")
            raise ReplayDetected(user_id=owner_id)

        await self._rollback()
        state = "revogado" if is_revoked else "expirado"
        logger.warning(f"Refresh recusado: token {state} (user ID {owner_id})")
        raise InvalidRefreshToken()

    async def revoke(self, token: str, reason: RevocationReason = RevocationReason.LOGOUT) -> bool:
        """Logout explícito. Idempotente: token desconhecido ou já revogado não é erro."""
        if not token:
            return False
        revoked = await crud_refresh_token.mark_revoked(
            self.db, token_hash=hash_token(token), now=self.clock(), reason=reason
        )
        await self._commit()
        return revoked

    async def revoke_all_for_user(
        self, user_id: int, reason: RevocationReason = RevocationReason.LOGOUT
    ) -> int:
        count = await crud_refresh_token.revoke_all_for_user(
            self.db, user_id=user_id, now=self.clock(), reason=reason
        )
        await self._commit()
        logger.info(f"Revogados {count} refresh tokens para user ID {user_id} ({reason.value})")
        return count

    async def list_sessions(self, user_id: int) -> List[RefreshToken]:
        return await crud_refresh_token.list_active_for_user(self.db, user_id=user_id, now=self.clock())

    async def prune_expired(self, retention: timedelta = timedelta(0)) -> int:
        """Job de retenção: apaga linhas expiradas há mais de `retention`. Fora do caminho das requisições."""
        cutoff = self.clock() - retention
        count = await crud_refresh_token.delete_expired_before(self.db, cutoff=cutoff)
        await self._commit()
        logger.info(f"Removidos {count} refresh tokens expirados antes de {cutoff.isoformat()}")
        return count

    async def _get_user(self, user_id: int) -> User | None:
        try:
            return await crud_user.get(self.db, id=user_id)
        except StorageError:
            await self._rollback()
            raise

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self._rollback()
            logger.error(f"Erro ao gravar refresh tokens: {e}")
            raise StorageError() from e

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as e:
            raise StorageError() from e
