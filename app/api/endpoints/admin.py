# top2000_auth/app/api/endpoints/admin.py
from typing import Any, List

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_refresh_token_service
from app.core.config import settings
from app.crud.crud_user import user as crud_user
from app.db.session import get_db
from app.models.refresh_token import RevocationReason
from app.models.user import User as UserModel
from app.schemas.user import RoleAssignment, User as UserSchema
from app.services.refresh_token_service import RefreshTokenService

# Todas as rotas daqui exigem admin (dependência aplicada no main.py)
router = APIRouter()


async def _get_user_for_role_change(db: AsyncSession, body: RoleAssignment) -> UserModel:
    if body.role not in settings.KNOWN_ROLES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid role. Valid roles are: {', '.join(settings.KNOWN_ROLES)}",
        )
    user = await crud_user.get_by_email(db, email=body.email)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.get("/users", response_model=List[UserSchema])
async def read_users(db: AsyncSession = Depends(get_db), skip: int = 0, limit: int = 100) -> Any:
    return await crud_user.get_multi(db, skip=skip, limit=limit)


@router.post("/assign-role", response_model=UserSchema)
async def assign_role(*, db: AsyncSession = Depends(get_db), body: RoleAssignment) -> Any:
    """A role nova aparece no próximo access token (login ou refresh)."""
    user = await _get_user_for_role_change(db, body)
    try:
        user = await crud_user.add_role(db, user=user, role=body.role)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.info(f"Admin atribuiu a role {body.role} ao user ID {user.id}")
    return user


@router.post("/remove-role", response_model=UserSchema)
async def remove_role(*, db: AsyncSession = Depends(get_db), body: RoleAssignment) -> Any:
    user = await _get_user_for_role_change(db, body)
    try:
        user = await crud_user.remove_role(db, user=user, role=body.role)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    logger.info(f"Admin removeu a role {body.role} do user ID {user.id}")
    return user


@router.post("/users/{user_id}/revoke-sessions")
async def revoke_user_sessions(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    refresh_tokens: RefreshTokenService = Depends(get_refresh_token_service),
) -> Any:
    user = await crud_user.get(db, id=user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    revoked = await refresh_tokens.revoke_all_for_user(user.id, reason=RevocationReason.ADMIN)
    return {"revoked_sessions": revoked}
