from cochera.auth.context import AuthContext
from cochera.auth.dependencies import (
    GarageScope,
    get_current_auth,
    get_db,
    get_optional_tab,
    get_registry,
    get_tab,
    require_garage_scope,
    require_hub_section,
    require_owner,
    require_section,
    require_staff_manager,
    require_super_admin,
    require_web_access,
)
from cochera.auth.jwt import create_tab_token

__all__ = [
    "AuthContext",
    "GarageScope",
    "get_current_auth",
    "get_db",
    "get_optional_tab",
    "get_registry",
    "get_tab",
    "require_garage_scope",
    "require_hub_section",
    "require_owner",
    "require_section",
    "require_staff_manager",
    "require_super_admin",
    "require_web_access",
    "create_tab_token",
]
