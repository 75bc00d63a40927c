# top2000_auth/main.py
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from app.api.dependencies import get_current_admin_user, get_token_issuer
from app.api.endpoints import account, admin, auth
from app.core.config import settings
from app.core.exceptions import StorageError
from app.db.session import dispose_engine

# Importar modelos para Alembic/Base.metadata
from app.db.base import Base # noqa
from app.models import user, refresh_token # noqa


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Falha aqui (segredo ausente/curto) impede o servidor de subir
    get_token_issuer()
    logger.info("Top2000 Auth API iniciada")
    yield
    logger.info("Shutting down: Disposing database engine...")
    await dispose_engine()


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    enabled=settings.RATE_LIMIT_ENABLED,
)

app = FastAPI(
    title="Top2000 Auth API",
    description="Autenticação JWT com refresh tokens rotativos para a API do Top 2000",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error(f"StorageError em {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Service temporarily unavailable, please retry"},
    )


api_prefix = "/api/v1"

app.include_router(auth.router, prefix=f"{api_prefix}/auth", tags=["Authentication"])
app.include_router(account.router, prefix=f"{api_prefix}/account", tags=["Account"])
app.include_router(
    admin.router,
    prefix=f"{api_prefix}/admin",
    tags=["Admin"],
    dependencies=[Depends(get_current_admin_user)],
)


@app.get("/")
def read_root():
    return {"message": "Top2000 Auth API is running!"}
