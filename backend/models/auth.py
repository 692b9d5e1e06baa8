"""
BrokerDesk - Auth models

Two schemes reach the API: Firebase ID tokens (customers, "external")
and internally issued admin JWTs ("internal"). Both are resolved once
at the boundary into a Principal; nothing downstream cares which scheme
produced it.
"""

from dataclasses import dataclass
from typing import Optional, Union

from pydantic import BaseModel, field_validator


@dataclass(frozen=True)
class ExternalPrincipal:
    """Caller authenticated by a Firebase ID token"""
    uid: str
    email: Optional[str] = None
    role: str = "user"
    kind: str = "external"

    @property
    def actor_id(self) -> str:
        return self.uid

    @property
    def system_user_id(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class InternalPrincipal:
    """Caller authenticated by an admin JWT; id is a users.id"""
    id: str
    email: Optional[str] = None
    role: str = "admin"
    kind: str = "internal"

    @property
    def actor_id(self) -> str:
        return self.id

    @property
    def system_user_id(self) -> Optional[str]:
        return self.id


Principal = Union[ExternalPrincipal, InternalPrincipal]


class AdminLogin(BaseModel):
    email: str
    password: str


class OtpRequest(BaseModel):
    email: str
    name: Optional[str] = ""

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v


class OtpVerify(BaseModel):
    email: str
    otp: str

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: str) -> str:
        return v.strip().lower()
