from typing import Literal
from pydantic import BaseModel, Field


class MigrationRequest(BaseModel):
    kind: Literal["Movil", "Fija"] = "Movil"
    exclusive: bool = False
    space_number: str | None = None

    name: str = ""
    dni: str = ""
    email: str | None = None
    address: str | None = None
    locality: str | None = None
    phone: str | None = None

    plate: str = ""
    vehicle_type_id: str = ""
    brand: str | None = None
    model: str | None = None
    color: str | None = None
    year: str | None = None
    insurance: str | None = None

    initial_debt: float = Field(default=0, ge=0, allow_inf_nan=False)


class MigrationQuote(BaseModel):
    kind: str
    tariff_id: str | None = None
    base_price: float
    prorated_price: float
    remaining_days: int


class MigrationResponse(BaseModel):
    customer_id: str
    vehicle_id: str
    space_id: str
    subscription_id: str
    debt_id: str | None = None
    kind: str
    base_price: float
    price: float
