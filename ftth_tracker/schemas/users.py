from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from ..services.permissions import is_valid_access_level, validate_permission_list


def _check_level(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip().upper()
    if not is_valid_access_level(v):
        raise ValueError(f"Unknown access level: {v}")
    return v


def _check_permissions(v: Optional[List[str]]) -> Optional[List[str]]:
    unknown = validate_permission_list(v)
    if unknown:
        raise ValueError(f"Unknown permissions: {', '.join(unknown)}")
    return v


class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=100)
    email: EmailStr
    full_name: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=6)
    access_level: str = "USER"
    custom_permissions: bool = False
    permissions: Optional[List[str]] = None
    operacao: Optional[str] = None
    is_active: bool = True

    @field_validator("access_level")
    @classmethod
    def validate_level(cls, v):
        return _check_level(v)

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, v):
        return _check_permissions(v)


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    password: Optional[str] = Field(default=None, min_length=6)
    access_level: Optional[str] = None
    custom_permissions: Optional[bool] = None
    permissions: Optional[List[str]] = None
    operacao: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("access_level")
    @classmethod
    def validate_level(cls, v):
        return _check_level(v)

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, v):
        return _check_permissions(v)
