# top2000_auth/app/crud/base.py
from contextlib import contextmanager
from typing import Any, Generic, Iterator, List, Optional, Type, TypeVar

from loguru import logger
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.core.exceptions import ConflictError, StorageError
from app.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)
CreateSchemaType = TypeVar("CreateSchemaType", bound=BaseModel)


@contextmanager
def storage_errors(action: str, *, unique: Optional[str] = None, entity: str = "") -> Iterator[None]:
    """
    Converte erros do SQLAlchemy nos erros do domínio.

    IntegrityError só vira ConflictError quando a mensagem do driver cita a
    coluna `unique` informada; FK quebrada, NOT NULL etc. viram StorageError,
    assim como qualquer outro SQLAlchemyError.
    """
    try:
        yield
    except IntegrityError as e:
        if unique is not None and unique in str(e.orig):
            raise ConflictError(f"Unique constraint violated while trying to {action}", entity=entity) from e
        logger.error(f"Violação de integridade ao {action}: {e}")
        raise StorageError() from e
    except SQLAlchemyError as e:
        logger.error(f"Erro de banco ao {action}: {e}")
        raise StorageError() from e


class CRUDBase(Generic[ModelType, CreateSchemaType]):
    def __init__(self, model: Type[ModelType]):
        """Leituras genéricas para um modelo SQLAlchemy; escritas ficam nas subclasses."""
        self.model = model

    async def get(self, db: AsyncSession, id: Any) -> Optional[ModelType]:
        with storage_errors(f"load {self.model.__name__}"):
            return await db.get(self.model, id)

    async def get_multi(self, db: AsyncSession, *, skip: int = 0, limit: int = 100) -> List[ModelType]:
        stmt = select(self.model).order_by(self.model.id).offset(skip).limit(limit)
        with storage_errors(f"list {self.model.__name__}"):
            result = await db.execute(stmt)
        return list(result.scalars().all())
