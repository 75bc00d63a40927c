# top2000_auth/app/schemas/token.py
from datetime import datetime
from pydantic import BaseModel, ConfigDict

class Token(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int # segundos de vida do access token

class RefreshTokenRequest(BaseModel):
    refresh_token: str

class RefreshSession(BaseModel):
    """Uma sessão (refresh token ativo) vista pelo dono. Nunca expõe o valor nem o hash."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    issued_at: datetime
    expires_at: datetime
