from typing import Literal
from pydantic import BaseModel, Field


StaffRoleInput = Literal["manager", "administrative", "operador", "auditor"]


class StaffCreate(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = ""
    username: str
    password: str
    role: StaffRoleInput = "operador"


class PermissionsUpdate(BaseModel):
    allowed_garages: list[str] = []
    sections: list[str] = []


class StaffResponse(BaseModel):
    id: str
    owner_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    username: str
    role: str
    permissions: dict | None = None


class PermissionsUpdateResponse(BaseModel):
    id: str
    permissions: dict
    live_sessions_updated: int
