# top2000_auth/app/schemas/user.py
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from typing import List, Optional
from datetime import datetime
import re

# Mesmas regras do cadastro original: 6+ caracteres, dígito, minúscula e maiúscula
def password_strength_validator(password: str) -> str:
    if len(password) < 6:
        raise ValueError('A senha deve ter pelo menos 6 caracteres')
    if not re.search(r"[a-z]", password):
        raise ValueError('A senha deve conter pelo menos uma letra minúscula')
    if not re.search(r"[A-Z]", password):
        raise ValueError('A senha deve conter pelo menos uma letra maiúscula')
    if not re.search(r"[0-9]", password):
        raise ValueError('A senha deve conter pelo menos um número')
    return password

class UserBase(BaseModel):
    email: EmailStr
    full_name: Optional[str] = None

class UserCreate(UserBase):
    password: str = Field(..., min_length=6)
    @field_validator('password')
    @classmethod
    def validate_password_strength(cls, v: str) -> str:
        return password_strength_validator(v)


class User(UserBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    is_active: bool
    roles: List[str] = []
    created_at: datetime

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class UpdatePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)
    @field_validator('new_password')
    @classmethod
    def validate_password_strength(cls, v: str) -> str:
        return password_strength_validator(v)

class RoleAssignment(BaseModel):
    email: EmailStr
    role: str
