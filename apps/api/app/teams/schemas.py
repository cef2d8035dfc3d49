from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.crm.schemas import PartialUpdate


RoleName = Literal["admin", "sales_manager", "sales_executive"]


class TeamCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    description: str | None = None


class TeamUpdate(PartialUpdate):
    non_nullable = ("name",)

    name: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = None


class TeamRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None
    created_by: int | None
    created_at: datetime


class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=128)
    password: str | None = Field(default=None, min_length=8, max_length=72)
    full_name: str = Field(min_length=1)
    email: EmailStr
    role: RoleName = "sales_executive"
    team_id: int | None = None
    manager_id: int | None = None


class UserRead(BaseModel):
    """Public view of a user. Credentials are never part of it."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    full_name: str
    email: str
    role: str
    team_id: int | None
    manager_id: int | None
    is_active: bool
    created_at: datetime


class AssignTeamRequest(BaseModel):
    # Required key; null removes the user from their team.
    team_id: int | None


class AssignManagerRequest(BaseModel):
    manager_id: int
