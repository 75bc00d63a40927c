# top2000_auth/app/db/initial_data.py
import asyncio

from loguru import logger

from app.core.config import settings
from app.crud.crud_user import user as crud_user
from app.db.base import Base
from app.db.session import dispose_engine, get_async_engine, get_session_local
from app.schemas.user import UserCreate

# Importar TODOS os modelos para que Base.metadata os conheça
from app.models import user # noqa F401
from app.models.refresh_token import RefreshToken # noqa F401


async def init_db() -> None:
    """Cria as tabelas que faltam (não apaga nada) e garante o admin inicial, se configurado."""
    engine = get_async_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Tabelas criadas/verificadas.")

    if not settings.FIRST_ADMIN_EMAIL or not settings.FIRST_ADMIN_PASSWORD:
        logger.info("FIRST_ADMIN_EMAIL/FIRST_ADMIN_PASSWORD não definidos; nenhum admin criado.")
        return

    SessionLocal = get_session_local()
    async with SessionLocal() as db:
        admin = await crud_user.get_by_email(db, email=settings.FIRST_ADMIN_EMAIL)
        if admin is None:
            admin = await crud_user.create(
                db,
                obj_in=UserCreate(email=settings.FIRST_ADMIN_EMAIL, password=settings.FIRST_ADMIN_PASSWORD),
                roles=[*settings.DEFAULT_ROLES, settings.ADMIN_ROLE],
            )
            logger.info(f"Admin inicial criado: ID {admin.id}")
        elif settings.ADMIN_ROLE not in crud_user.get_roles(admin):
            await crud_user.add_role(db, user=admin, role=settings.ADMIN_ROLE)
            logger.info(f"Role {settings.ADMIN_ROLE} atribuída ao usuário existente ID {admin.id}")
        else:
            logger.info("Admin inicial já existe.")


async def main() -> None:
    try:
        await init_db()
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
