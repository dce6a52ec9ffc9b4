from typing import Literal
from pydantic import BaseModel, Field


class BuildingConfigInput(BaseModel):
    count_subsuelos: int = Field(default=0, ge=0, le=20)
    has_planta_baja: bool = True
    count_pisos: int = Field(default=0, ge=0, le=100)
    # Capacity edits keyed by sort_order.
    capacities: dict[int, int] | None = None


class BuildingConfigResponse(BaseModel):
    garage_id: str
    count_subsuelos: int = 0
    has_planta_baja: bool = True
    count_pisos: int = 0


class LevelResponse(BaseModel):
    id: str | None = None
    type: Literal["subsuelo", "planta_baja", "piso"]
    level_number: int
    display_name: str
    sort_order: int
    total_spots: int = 0


class BuildingResponse(BaseModel):
    config: BuildingConfigResponse
    levels: list[LevelResponse]
    total_capacity: int
