# top2000_auth/app/api/endpoints/account.py
from typing import Any, List

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.dependencies import get_auth_service, get_current_user, get_refresh_token_service
from app.core.exceptions import InvalidCredentials
from app.models.user import User as UserModel
from app.schemas.token import RefreshSession
from app.schemas.user import UpdatePasswordRequest, User as UserSchema
from app.services.auth_service import AuthService
from app.services.refresh_token_service import RefreshTokenService

router = APIRouter()


@router.get("/profile", response_model=UserSchema)
async def read_profile(current_user: UserModel = Depends(get_current_user)) -> Any:
    return current_user


@router.put("/password")
async def update_password(
    *,
    password_in: UpdatePasswordRequest,
    current_user: UserModel = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
) -> Any:
    """
    Troca a senha do usuário logado.
    Todas as sessões (refresh tokens) são revogadas; o access token atual vale até expirar.
    """
    try:
        revoked = await auth.change_password(
            current_user,
            current_password=password_in.current_password,
            new_password=password_in.new_password,
        )
    except InvalidCredentials:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")
    return {"message": "Password updated successfully", "revoked_sessions": revoked}


@router.get("/sessions", response_model=List[RefreshSession])
async def list_sessions(
    current_user: UserModel = Depends(get_current_user),
    refresh_tokens: RefreshTokenService = Depends(get_refresh_token_service),
) -> Any:
    return await refresh_tokens.list_sessions(current_user.id)


@router.post("/sessions/revoke-all")
async def revoke_all_sessions(
    current_user: UserModel = Depends(get_current_user),
    refresh_tokens: RefreshTokenService = Depends(get_refresh_token_service),
) -> Any:
    """Logout em todos os dispositivos."""
    revoked = await refresh_tokens.revoke_all_for_user(current_user.id)
    return {"revoked_sessions": revoked}
