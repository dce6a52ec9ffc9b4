from pydantic import BaseModel, Field, model_validator


class GarageCreate(BaseModel):
    name: str = Field(min_length=1)
    address: str | None = None
    tax_id: str | None = None


class GarageUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    address: str | None = None
    tax_id: str | None = None


class GarageResponse(BaseModel):
    id: str
    owner_id: str | None = None
    name: str | None = None
    address: str | None = None
    tax_id: str | None = None
    logo_url: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _map_cuit(cls, data):
        # Stored as "cuit"; exposed as tax_id.
        if isinstance(data, dict) and "tax_id" not in data and "cuit" in data:
            data = {**data, "tax_id": data["cuit"]}
        return data
