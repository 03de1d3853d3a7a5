"""Pydantic schemas for the dashboard login endpoint."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel


class LoginRequest(BaseModel):
    username: str
    password: str


class User(BaseModel):
    id: int
    username: str
    email: str = ""
    role: Literal["admin", "user", "viewer", "guest"] = "viewer"
    active: bool = True
    last_login: Optional[datetime] = None

    model_config = {"extra": "ignore"}


class LoginResponse(BaseModel):
    token: str
    user: User
    expires_at: Optional[datetime] = None
