import logging
from fastapi import APIRouter, Depends, HTTPException
from cochera.auth import GarageScope, get_db, require_section
from cochera.auth.roles import SECTION_SETTINGS
from cochera.domain.backend_errors import (
    BACKEND_ERRORS,
    backend_error_detail,
    backend_error_http_status,
)
from cochera.domain.building import (
    apply_capacities,
    default_config,
    plan_level_changes,
    regenerate_levels,
    total_capacity,
)
from cochera.models.building import BuildingConfigInput, BuildingResponse
from cochera.observability import log_event

router = APIRouter(prefix="/api/garages/{garage_id}/building", tags=["building"])

CONFIG_COLUMNS = ("garage_id", "count_subsuelos", "has_planta_baja", "count_pisos")


def _raise_backend_http_error(operation: str, exc: BaseException) -> None:
    log_event(
        "backend_call_failed",
        level=logging.WARNING,
        operation=operation,
        error=exc.__class__.__name__,
    )
    raise HTTPException(
        status_code=backend_error_http_status(exc),
        detail=backend_error_detail(operation=operation, exc=exc),
    ) from exc


def _load(db, garage_id: str) -> tuple[dict, list[dict]]:
    try:
        config_result = db.table("building_configs").select("*").eq(
            "garage_id", garage_id
        ).limit(1).execute()
        levels_result = db.table("building_levels").select("*").eq(
            "garage_id", garage_id
        ).order("sort_order", desc=True).execute()
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("building_load", exc)

    config = default_config(garage_id)
    if config_result.data:
        stored = config_result.data[0]
        config.update({k: stored[k] for k in CONFIG_COLUMNS if stored.get(k) is not None})
    return config, list(levels_result.data or [])


def _response(config: dict, levels: list[dict]) -> BuildingResponse:
    return BuildingResponse(
        config={k: config[k] for k in CONFIG_COLUMNS},
        levels=levels,
        total_capacity=total_capacity(levels),
    )


@router.get("", response_model=BuildingResponse)
async def get_building(
    scope: GarageScope = Depends(require_section(SECTION_SETTINGS)),
    db=Depends(get_db),
):
    """Stored structure reconciled against the stored levels."""
    config, stored_levels = _load(db, scope.garage_id)
    return _response(config, regenerate_levels(config, stored_levels))


@router.post("/preview", response_model=BuildingResponse)
async def preview_building(
    data: BuildingConfigInput,
    scope: GarageScope = Depends(require_section(SECTION_SETTINGS)),
    db=Depends(get_db),
):
    """Regenerate the level stack for a desired structure without saving."""
    _, stored_levels = _load(db, scope.garage_id)
    config = {"garage_id": scope.garage_id, **data.model_dump(exclude={"capacities"})}
    levels = apply_capacities(regenerate_levels(config, stored_levels), data.capacities)
    return _response(config, levels)


@router.put("", response_model=BuildingResponse)
async def save_building(
    data: BuildingConfigInput,
    scope: GarageScope = Depends(require_section(SECTION_SETTINGS)),
    db=Depends(get_db),
):
    """Save the structure; preserved levels keep their ids and capacities."""
    garage_id = scope.garage_id
    _, stored_levels = _load(db, garage_id)
    config = {"garage_id": garage_id, **data.model_dump(exclude={"capacities"})}
    levels = apply_capacities(regenerate_levels(config, stored_levels), data.capacities)
    updates, inserts, deletes = plan_level_changes(levels, stored_levels)

    try:
        db.table("building_configs").upsert(config, on_conflict="garage_id").execute()
        for level in updates:
            values = {k: v for k, v in level.items() if k != "id"}
            db.table("building_levels").update(values).eq("id", level["id"]).eq(
                "garage_id", garage_id
            ).execute()
        if inserts:
            db.table("building_levels").insert(inserts).execute()
        if deletes:
            db.table("building_levels").delete().in_("id", deletes).eq(
                "garage_id", garage_id
            ).execute()
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("building_save", exc)

    log_event(
        "building_saved",
        garage_id=garage_id,
        updated=len(updates),
        inserted=len(inserts),
        deleted=len(deletes),
    )
    _, saved_levels = _load(db, garage_id)
    return _response(config, regenerate_levels(config, saved_levels))
