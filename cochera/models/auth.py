from pydantic import BaseModel, EmailStr, Field


class LoginRequest(BaseModel):
    identifier: str = Field(min_length=1)  # email for owners, username for staff
    password: str = Field(min_length=1)


class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    full_name: str = Field(min_length=1)


class ProfileResponse(BaseModel):
    id: str
    email: str | None
    full_name: str
    role: str
    source: str


class PermissionsResponse(BaseModel):
    allowed_garages: list[str] = []
    sections: list[str] = []


class SessionResponse(BaseModel):
    tab_id: str
    kind: str  # "none", "standard" or "shadow"
    loading: bool
    initialized: bool
    profile_settled: bool
    reset_available: bool
    profile: ProfileResponse | None = None
    owner_id: str | None = None
    permissions: PermissionsResponse | None = None


class LoginResponse(BaseModel):
    session_token: str
    token_type: str = "bearer"
    session: SessionResponse


class SignupResponse(LoginResponse):
    confirmation_required: bool = False
