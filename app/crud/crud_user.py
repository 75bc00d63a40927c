# top2000_auth/app/crud/crud_user.py
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from typing import Iterable, List, Optional

from app.crud.base import CRUDBase, storage_errors
from app.models.user import User
from app.schemas.user import UserCreate
from app.core.security import get_password_hash, verify_password
from app.core.config import settings
from loguru import logger


class CRUDUser(CRUDBase[User, UserCreate]):
    async def get_by_email(self, db: AsyncSession, *, email: str) -> Optional[User]:
        stmt = select(User).filter(User.email == email.lower())
        with storage_errors("look up user by email"):
            result = await db.execute(stmt)
        return result.scalars().first()

    async def create(
        self, db: AsyncSession, *, obj_in: UserCreate, roles: Optional[Iterable[str]] = None
    ) -> User:
        """Email duplicado (inclusive numa corrida entre dois cadastros) levanta ConflictError."""
        db_obj = User(
            email=obj_in.email.lower(),
            hashed_password=get_password_hash(obj_in.password),
            full_name=obj_in.full_name,
            is_active=True,
            roles=list(roles if roles is not None else settings.DEFAULT_ROLES),
        )
        db.add(db_obj)
        with storage_errors("create user", unique="email", entity="User"):
            await db.commit()
            await db.refresh(db_obj)
        return db_obj

    async def authenticate(self, db: AsyncSession, *, email: str, password: str) -> Optional[User]:
        """Retorna o usuário se email e senha conferem e a conta está ativa; senão None."""
        user = await self.get_by_email(db, email=email)
        if not user:
            # Hash de qualquer forma para não vazar, pelo tempo de resposta, se o email existe
            verify_password(password, _DUMMY_HASH)
            return None
        if not verify_password(password, user.hashed_password):
            logger.warning(f"Senha incorreta no login para user ID {user.id}")
            return None
        if not user.is_active:
            logger.warning(f"Tentativa de login (senha correta) para conta inativa: user ID {user.id}")
            return None
        return user

    def get_roles(self, user: User) -> List[str]:
        return list(user.roles or [])

    async def add_role(self, db: AsyncSession, *, user: User, role: str) -> User:
        if role in (user.roles or []):
            raise ValueError(f"User already has the {role} role")
        # Nova lista para o SQLAlchemy detectar a mudança no JSON
        user.roles = [*(user.roles or []), role]
        return await self._save(db, user, action="assign role")

    async def remove_role(self, db: AsyncSession, *, user: User, role: str) -> User:
        if role not in (user.roles or []):
            raise ValueError(f"User does not have the {role} role")
        user.roles = [r for r in user.roles if r != role]
        return await self._save(db, user, action="remove role")

    async def set_password(self, db: AsyncSession, *, user: User, new_password: str) -> User:
        """Troca o hash da senha. Não dá commit: quem chama revoga as sessões na mesma transação."""
        user.hashed_password = get_password_hash(new_password)
        db.add(user)
        with storage_errors("update password"):
            await db.flush()
        return user

    async def _save(self, db: AsyncSession, user: User, *, action: str) -> User:
        db.add(user)
        with storage_errors(action):
            await db.commit()
            await db.refresh(user)
        return user


_DUMMY_HASH = get_password_hash("not-a-real-password")

user = CRUDUser(User)
