from typing import Literal
from pydantic import BaseModel, Field


PriceListInput = Literal["standard", "electronic"]


class PriceUpsert(BaseModel):
    tariff_id: str
    vehicle_type_id: str
    price_list: PriceListInput = "standard"
    amount: str | float | None = None  # raw cell input; empty means zero


class PriceResponse(BaseModel):
    garage_id: str
    tariff_id: str
    vehicle_type_id: str
    price_list: str
    amount: float


class VehicleTypeCreate(BaseModel):
    name: str = Field(min_length=1)
    icon_key: Literal["car", "bike", "truck", "bus"] = "car"


class VehicleTypeResponse(BaseModel):
    id: str
    garage_id: str
    name: str
    icon_key: str | None = None
    sort_order: int | None = None


class TariffCreate(BaseModel):
    name: str = Field(min_length=1)
    type: Literal["hour", "stay", "subscription"] = "hour"
    days: int = Field(default=0, ge=0)
    hours: int = Field(default=0, ge=0)
    minutes: int = Field(default=0, ge=0)
    tolerance: int = Field(default=0, ge=0)


class TariffResponse(BaseModel):
    id: str
    garage_id: str
    name: str
    type: str
    days: int = 0
    hours: int = 0
    minutes: int = 0
    tolerance: int = 0
    sort_order: int | None = None
    is_protected: bool = False
