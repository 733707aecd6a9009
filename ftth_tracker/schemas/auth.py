from pydantic import BaseModel
from typing import Optional, List


class LoginRequest(BaseModel):
    username: str  # username or email
    password: str


class LoginResponse(BaseModel):
    success: bool = True
    token: str
    refresh_token: str
    token_type: str = "bearer"
    user: dict


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    token: str
    refresh_token: str
    token_type: str = "bearer"


class MeResponse(BaseModel):
    id: str
    username: str
    email: str
    full_name: str
    access_level: str
    access_level_name: Optional[str] = None
    operacao: Optional[str] = None
    permissions: List[str]
