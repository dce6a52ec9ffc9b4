import asyncio
from contextlib import asynccontextmanager, suppress
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from cochera.auth.registry import SessionRegistry
from cochera.auth.scope import ScopeRedirect
from cochera.config import settings
from cochera.db import supabase_backend_factory
from cochera.observability import incr_metric
from cochera.routers import (
    auth_routes,
    navigation,
    garages,
    building,
    surcharges,
    pricing,
    staff,
    super_admin,
    cashflow,
    migration,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "registry", None) is None:
        app.state.registry = SessionRegistry(supabase_backend_factory)
    sweeper = asyncio.create_task(
        app.state.registry.run_sweeper(settings.tab_sweep_interval_seconds)
    )
    yield
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    await app.state.registry.dispose_all()


app = FastAPI(title="Cochera Admin", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def attach_request_id(request: Request, call_next):
    request_id = (
        request.headers.get("X-Request-ID")
        or request.headers.get("X-Correlation-ID")
        or str(uuid4())
    )
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(ScopeRedirect)
async def scope_redirect_handler(request: Request, exc: ScopeRedirect):
    incr_metric("http.scope_redirect")
    return JSONResponse(
        status_code=403,
        content={"detail": exc.detail, "redirect_to": exc.redirect_to},
    )

app.include_router(auth_routes.router)
app.include_router(navigation.router)
app.include_router(garages.router)
app.include_router(building.router)
app.include_router(surcharges.router)
app.include_router(pricing.router)
app.include_router(staff.router)
app.include_router(super_admin.router)
app.include_router(cashflow.router)
app.include_router(migration.router)


@app.get("/")
async def root():
    return {"status": "ok", "service": "cochera-admin"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
