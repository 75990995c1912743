# models/user.py
from enum import Enum
from typing import Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class Role(str, Enum):
    CLIENT = "CLIENT"
    MECHANIC = "MECHANIC"


class UserIdentity(BaseModel):
    id: str
    role: Role
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    profile_picture: Optional[str] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"


class AuthResult(BaseModel):
    """Body of /auth/login, /auth/register and /auth/firebase-login."""
    token: str
    user: UserIdentity
