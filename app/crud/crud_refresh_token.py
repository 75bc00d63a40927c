# top2000_auth/app/crud/crud_refresh_token.py
"""
Acesso à tabela refresh_tokens.

As funções daqui só fazem flush: quem chama (RefreshTokenService) é dono da
transação e decide quando dar commit ou rollback. Erros do SQLAlchemy nunca
saem daqui crus: colisão no token_hash vira ConflictError e o resto (inclusive
FK para usuário inexistente) vira StorageError.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.crud.base import storage_errors
from app.models.refresh_token import RefreshToken, RevocationReason


async def insert(
    db: AsyncSession,
    *,
    user_id: int,
    token_hash: str,
    issued_at: datetime,
    expires_at: datetime,
) -> RefreshToken:
    """Insere um token Active. Colisão no hash levanta ConflictError."""
    db_token = RefreshToken(
        user_id=user_id,
        token_hash=token_hash,
        issued_at=issued_at,
        expires_at=expires_at,
        is_revoked=False,
    )
    db.add(db_token)
    with storage_errors("insert refresh token", unique="token_hash", entity="RefreshToken"):
        await db.flush()
    return db_token


async def get_by_hash(db: AsyncSession, *, token_hash: str) -> Optional[RefreshToken]:
    # populate_existing: os UPDATEs em massa acima não sincronizam objetos já carregados na sessão
    stmt = (
        select(RefreshToken)
        .where(RefreshToken.token_hash == token_hash)
        .execution_options(populate_existing=True)
    )
    with storage_errors("look up refresh token"):
        result = await db.execute(stmt)
    return result.scalars().first()


async def revoke_if_active(
    db: AsyncSession,
    *,
    token_hash: str,
    now: datetime,
    reason: RevocationReason,
    replaced_by_hash: Optional[str] = None,
) -> bool:
    """
    Compare-and-swap: revoga o token somente se ainda estiver ativo.

    Retorna False quando nenhuma linha foi afetada (inexistente, expirado,
    já revogado, ou outra requisição rotacionou primeiro).
    """
    stmt = (
        update(RefreshToken)
        .where(
            RefreshToken.token_hash == token_hash,
            RefreshToken.is_revoked == False,  # noqa: E712
            RefreshToken.expires_at > now,
        )
        .values(
            is_revoked=True,
            revoked_at=now,
            revoked_reason=reason.value,
            replaced_by_token_hash=replaced_by_hash,
        )
        .execution_options(synchronize_session=False)
    )
    with storage_errors("revoke refresh token"):
        result = await db.execute(stmt)
    return result.rowcount == 1


async def mark_revoked(
    db: AsyncSession, *, token_hash: str, now: datetime, reason: RevocationReason
) -> bool:
    """Revoga independente da expiração. Idempotente: já revogado não é erro, só retorna False."""
    stmt = (
        update(RefreshToken)
        .where(RefreshToken.token_hash == token_hash, RefreshToken.is_revoked == False)  # noqa: E712
        .values(is_revoked=True, revoked_at=now, revoked_reason=reason.value)
        .execution_options(synchronize_session=False)
    )
    with storage_errors("revoke refresh token"):
        result = await db.execute(stmt)
    return result.rowcount > 0


async def revoke_all_for_user(
    db: AsyncSession, *, user_id: int, now: datetime, reason: RevocationReason
) -> int:
    """Revoga todos os refresh tokens de um usuário (ex: ao trocar senha ou em reuso)."""
    stmt = (
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.is_revoked == False)  # noqa: E712
        .values(is_revoked=True, revoked_at=now, revoked_reason=reason.value)
        .execution_options(synchronize_session=False)
    )
    with storage_errors("revoke user refresh tokens"):
        result = await db.execute(stmt)
    return result.rowcount


async def list_active_for_user(db: AsyncSession, *, user_id: int, now: datetime) -> List[RefreshToken]:
    stmt = (
        select(RefreshToken)
        .where(
            RefreshToken.user_id == user_id,
            RefreshToken.is_revoked == False,  # noqa: E712
            RefreshToken.expires_at > now,
        )
        .order_by(RefreshToken.issued_at.desc(), RefreshToken.id.desc())
    )
    with storage_errors("list refresh tokens"):
        result = await db.execute(stmt)
    return list(result.scalars().all())


async def delete_expired_before(db: AsyncSession, *, cutoff: datetime) -> int:
    """Remove tokens que expiraram antes de `cutoff`. Só para o job de retenção."""
    stmt = (
        delete(RefreshToken)
        .where(RefreshToken.expires_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    with storage_errors("prune refresh tokens"):
        result = await db.execute(stmt)
    return result.rowcount
