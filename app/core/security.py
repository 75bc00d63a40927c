# top2000_auth/app/core/security.py
from datetime import timedelta
from typing import Any, Dict
import hashlib
import secrets

from passlib.context import CryptContext
from jose import jwt, JWTError

from .config import Settings, MIN_SECRET_LENGTH
from .claims import Claims
from .exceptions import ConfigurationError

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# 64 bytes aleatórios -> 512 bits de entropia por refresh token
REFRESH_TOKEN_BYTES = 64


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        # Limita o tamanho da senha ANTES de passar para o bcrypt (evita erros > 72 bytes)
        password_bytes = plain_password.encode('utf-8')[:72]
        return pwd_context.verify(password_bytes, hashed_password)
    except (ValueError, TypeError):
        # Hash malformado no banco conta como senha errada
        return False

def get_password_hash(password: str) -> str:
    password_bytes = password.encode('utf-8')[:72]
    return pwd_context.hash(password_bytes)


# --- Refresh tokens (opacos) ---
def generate_refresh_token_value() -> str:
    return secrets.token_urlsafe(REFRESH_TOKEN_BYTES)

def hash_token(token: str) -> str:
    """Só o hash do refresh token é gravado; o valor em claro existe apenas na resposta."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


# --- Access tokens (JWT) ---
class AccessTokenIssuer:
    """
    Assina access tokens a partir de `Claims`.

    O segredo é injetado na construção e fica fixo durante a vida do processo.
    Tokens emitidos nunca são persistidos; não há revogação antecipada.
    """

    def __init__(
        self,
        *,
        secret_key: str,
        issuer: str,
        audience: str,
        lifetime: timedelta,
        algorithm: str = "HS256",
    ) -> None:
        if not secret_key or len(secret_key.strip()) < MIN_SECRET_LENGTH:
            raise ConfigurationError("JWT signing secret is missing or too short")
        if not algorithm.startswith("HS"):
            raise ConfigurationError(f"Unsupported signing algorithm for a shared secret: {algorithm}")
        self._secret_key = secret_key
        self._algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.lifetime = lifetime

    @classmethod
    def from_settings(cls, settings: Settings) -> "AccessTokenIssuer":
        return cls(
            secret_key=settings.SECRET_KEY,
            issuer=settings.JWT_ISSUER,
            audience=settings.JWT_AUDIENCE,
            lifetime=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            algorithm=settings.ALGORITHM,
        )

    def issue(self, claims: Claims) -> str:
        to_encode: Dict[str, Any] = {
            "iss": self.issuer,
            "aud": self.audience,
            "nbf": claims.issued_at,
            "token_type": "access",
            **claims.to_payload(),
        }
        return jwt.encode(to_encode, self._secret_key, algorithm=self._algorithm)

    def decode(self, token: str) -> Dict | None:
        """Verifica assinatura, issuer, audience e expiração. Retorna None se inválido."""
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_iss": True, "verify_aud": True},
            )
        except JWTError:
            return None
        if payload.get("token_type") != "access" or not payload.get("sub"):
            return None
        return payload
