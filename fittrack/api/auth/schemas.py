from typing import Any, Dict, Optional

from pydantic import EmailStr, Field

from fittrack.api.schemas import CamelModel


class SignupIn(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    password: str = Field(min_length=6)
    phone_number: Optional[str] = None


class LoginIn(CamelModel):
    email: EmailStr
    password: str


class UserOut(CamelModel):
    id: int
    name: str
    email: str
    role: str
    is_active: bool
    phone_number: Optional[str] = None
    avatar_path: Optional[str] = None
    profile: Dict[str, Any] = {}
    specialization: Optional[str] = None
    experience: Optional[int] = None


class TokenOut(CamelModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut
