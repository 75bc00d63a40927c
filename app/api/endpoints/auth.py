# top2000_auth/app/api/endpoints/auth.py
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import credentials_exception, get_auth_service, get_current_user
from app.core.exceptions import ConflictError, InvalidCredentials, InvalidRefreshToken
from app.crud.crud_user import user as crud_user
from app.db.session import get_db
from app.models.user import User as UserModel
from app.schemas.token import RefreshTokenRequest, Token
from app.schemas.user import LoginRequest, User as UserSchema, UserCreate
from app.services.auth_service import AuthService, TokenPair

router = APIRouter()


def _to_response(pair: TokenPair) -> Token:
    return Token(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type="bearer",
        expires_in=pair.expires_in,
    )


def _email_taken() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="The user with this email already exists in the system.",
    )


async def _login(auth: AuthService, email: str, password: str) -> Token:
    try:
        pair = await auth.login(email, password)
    except InvalidCredentials:
        logger.warning("Falha de login: credenciais inválidas")
        raise credentials_exception()
    return _to_response(pair)


@router.post("/register", response_model=UserSchema, status_code=status.HTTP_201_CREATED)
async def register(*, db: AsyncSession = Depends(get_db), user_in: UserCreate) -> Any:
    """Cria um novo usuário com a role padrão ("User")."""
    existing = await crud_user.get_by_email(db, email=user_in.email)
    if existing:
        raise _email_taken()
    try:
        user = await crud_user.create(db, obj_in=user_in)
    except ConflictError:
        # Outro cadastro com o mesmo email ganhou entre a consulta e o commit
        raise _email_taken()
    logger.info(f"Novo usuário registrado: ID {user.id}")
    return user


@router.post("/token", response_model=Token)
async def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    auth: AuthService = Depends(get_auth_service),
) -> Any:
    """Login via formulário OAuth2 (username = email). Usado pelo Swagger UI."""
    return await _login(auth, form_data.username, form_data.password)


@router.post("/login", response_model=Token)
async def login(*, credentials: LoginRequest, auth: AuthService = Depends(get_auth_service)) -> Any:
    """Login com JSON `{email, password}`."""
    return await _login(auth, credentials.email, credentials.password)


@router.post("/refresh", response_model=Token)
async def refresh_access_token(
    *, refresh_request: RefreshTokenRequest, auth: AuthService = Depends(get_auth_service)
) -> Any:
    # Expirado, revogado, reusado ou inexistente: sempre a mesma resposta
    try:
        pair = await auth.refresh(refresh_request.refresh_token)
    except InvalidRefreshToken:
        raise credentials_exception()
    return _to_response(pair)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(*, refresh_request: RefreshTokenRequest, auth: AuthService = Depends(get_auth_service)):
    await auth.logout(refresh_request.refresh_token)
    return None


@router.get("/me", response_model=UserSchema)
async def read_users_me(current_user: UserModel = Depends(get_current_user)) -> Any:
    return current_user
