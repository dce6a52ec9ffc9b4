import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from cochera.auth import GarageScope, get_db, require_section
from cochera.auth.roles import SECTION_FINANCE
from cochera.domain.backend_errors import (
    BACKEND_ERRORS,
    backend_error_detail,
    backend_error_http_status,
)
from cochera.domain.surcharges import (
    MONTH_NAMES,
    clean_config,
    effective_rule,
    normalize_config,
    validate_config,
)
from cochera.models.surcharges import (
    EffectiveRuleResponse,
    SurchargeConfig,
    SurchargeSaveResponse,
    SurchargeValidationResponse,
)
from cochera.observability import incr_metric, log_event

router = APIRouter(prefix="/api/garages/{garage_id}/surcharges", tags=["surcharges"])


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


def _load_config(db, garage_id: str) -> dict:
    try:
        result = db.table("financial_configs").select("surcharge_config").eq(
            "garage_id", garage_id
        ).limit(1).execute()
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("surcharges_load", exc)
    if not result.data:
        return normalize_config(None)
    return normalize_config(result.data[0].get("surcharge_config"))


@router.get("", response_model=SurchargeConfig)
async def get_surcharges(
    scope: GarageScope = Depends(require_section(SECTION_FINANCE)),
    db=Depends(get_db),
):
    return _load_config(db, scope.garage_id)


@router.put("", response_model=SurchargeSaveResponse)
async def save_surcharges(
    data: SurchargeConfig,
    scope: GarageScope = Depends(require_section(SECTION_FINANCE)),
    db=Depends(get_db),
):
    """Clean, sort and store. Ordering issues in the input are reported, not rejected."""
    submitted = data.model_dump()
    issues = validate_config(submitted)
    cleaned = clean_config(submitted)
    try:
        db.table("financial_configs").upsert(
            {"garage_id": scope.garage_id, "surcharge_config": cleaned},
            on_conflict="garage_id",
        ).execute()
    except BACKEND_ERRORS as exc:
        _raise_backend_http_error("surcharges_save", exc)

    if issues:
        incr_metric("surcharges.saved_with_issues")
    log_event("surcharges_saved", garage_id=scope.garage_id, issues=len(issues))
    return SurchargeSaveResponse(config=cleaned, issues=[i.as_dict() for i in issues])


@router.post("/validate", response_model=SurchargeValidationResponse)
async def validate_surcharges(
    data: SurchargeConfig,
    scope: GarageScope = Depends(require_section(SECTION_FINANCE)),
):
    issues = validate_config(data.model_dump())
    return SurchargeValidationResponse(valid=not issues, issues=[i.as_dict() for i in issues])


@router.get("/effective", response_model=EffectiveRuleResponse)
async def get_effective_rule(
    month: int = Query(ge=1, le=12),
    scope: GarageScope = Depends(require_section(SECTION_FINANCE)),
    db=Depends(get_db),
):
    """Rule in force for a calendar month (1-12)."""
    rule, overridden = effective_rule(_load_config(db, scope.garage_id), month)
    return EffectiveRuleResponse(
        month=month,
        month_name=MONTH_NAMES[month - 1],
        overridden=overridden,
        rule=rule,
    )
