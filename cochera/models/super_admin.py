from pydantic import BaseModel


class OwnerSummary(BaseModel):
    id: str
    email: str | None = None
    full_name: str | None = None
    garage_count: int = 0


class FactoryResetRequest(BaseModel):
    confirm: str


class FactoryResetResponse(BaseModel):
    ok: bool
    result: dict | list | str | None = None
