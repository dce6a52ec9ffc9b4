from fastapi import APIRouter, Depends, Query
from cochera.auth import AuthContext, get_current_auth, get_db, get_tab, require_garage_scope
from cochera.auth.registry import TabSession
from cochera.auth.roles import GARAGE_SECTIONS, HUB_SECTIONS, visible_sections
from cochera.models.navigation import LandingResponse, MenuResponse

router = APIRouter(prefix="/api/navigation", tags=["navigation"])


@router.get("/landing", response_model=LandingResponse)
async def get_landing(tab: TabSession = Depends(get_tab)):
    """Canonical landing; the redirect is handed out once per signed-in session."""
    decision = tab.dispatcher.evaluate(tab.store.snapshot())
    return LandingResponse(
        state=decision.state.value,
        redirect_to=decision.redirect_to,
        reason=decision.reason,
    )


@router.get("/menu", response_model=MenuResponse)
async def get_menu(
    garage_id: str | None = Query(default=None),
    auth: AuthContext = Depends(get_current_auth),
    db=Depends(get_db),
):
    """Sections the identity may see, optionally inside one garage."""
    if garage_id is not None:
        await require_garage_scope(garage_id, auth=auth, db=db)
    garage_sections = visible_sections(auth.grant, GARAGE_SECTIONS) if garage_id else []
    return MenuResponse(
        garage_id=garage_id,
        garage_sections=garage_sections,
        hub_sections=visible_sections(auth.grant, HUB_SECTIONS),
    )
