from pydantic import BaseModel


class LandingResponse(BaseModel):
    state: str
    redirect_to: str | None = None
    reason: str | None = None


class MenuResponse(BaseModel):
    garage_id: str | None = None
    garage_sections: list[str]
    hub_sections: list[str]
