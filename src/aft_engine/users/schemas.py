"""Pydantic schemas for user endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field

from aft_engine.workflow.states import Role


class UserCreate(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    primary_role: Role
    additional_roles: list[Role] = Field(default_factory=list)
    organization: str = ""


class RoleAssignment(BaseModel):
    role: Role
    assigned_by: str | None = None


class UserResponse(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    primary_role: str
    roles: list[str]
    organization: str
    is_active: bool
    created_at: datetime
