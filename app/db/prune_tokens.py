# top2000_auth/app/db/prune_tokens.py
"""
Job de retenção dos refresh tokens.

Roda fora do processo da API (cron, systemd timer, k8s CronJob):

    python -m app.db.prune_tokens

Só apaga linhas já expiradas há mais de REFRESH_TOKEN_RETENTION_DAYS, então
nunca disputa com a rotação feita pelas requisições.
"""
import asyncio
from datetime import timedelta

from loguru import logger

from app.core.config import settings
from app.db.session import dispose_engine, get_session_local
from app.services.refresh_token_service import RefreshTokenService


async def prune() -> int:
    SessionLocal = get_session_local()
    async with SessionLocal() as db:
        service = RefreshTokenService(db, lifetime=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS))
        return await service.prune_expired(retention=timedelta(days=settings.REFRESH_TOKEN_RETENTION_DAYS))


async def main() -> None:
    try:
        removed = await prune()
        logger.info(f"Retenção concluída: {removed} refresh token(s) removido(s).")
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
