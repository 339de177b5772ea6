"""
SOLAR CRM - Permission System
Clés de permission granulaires + presets de rôles + dépendances FastAPI.
Les permissions font foi. Les rôles ne sont que des presets.
"""

import logging
from typing import Dict, List, Optional

from fastapi import Depends, HTTPException, Request

import config
from models.tenant import get_tenant_or_raise, match_tenant, normalize_tenant, validate_tenant

logger = logging.getLogger("permissions")

# ════════════════════════════════════════════════════════════════════════
# ALL PERMISSION KEYS
# ════════════════════════════════════════════════════════════════════════

ALL_PERMISSION_KEYS = [
    "onboarding.view",
    "onboarding.import",
    "import_logs.view",
]

# ════════════════════════════════════════════════════════════════════════
# ROLE PRESETS
# ════════════════════════════════════════════════════════════════════════

ROLE_PRESETS: Dict[str, Dict[str, bool]] = {
    "super_admin": {k: True for k in ALL_PERMISSION_KEYS},

    "admin": {
        "onboarding.view": True,
        "onboarding.import": True,
        "import_logs.view": True,
    },

    "ops": {
        "onboarding.view": True,
        "onboarding.import": True,
        "import_logs.view": False,
    },

    "viewer": {
        "onboarding.view": True,
        "onboarding.import": False,
        "import_logs.view": False,
    },
}

VALID_ROLES = list(ROLE_PRESETS.keys())


def get_preset_permissions(role: str) -> Dict[str, bool]:
    """Permissions par défaut d'un rôle."""
    return dict(ROLE_PRESETS.get(role, ROLE_PRESETS["viewer"]))


# ════════════════════════════════════════════════════════════════════════
# PERMISSION CHECK HELPERS
# ════════════════════════════════════════════════════════════════════════

def user_has_permission(user: dict, key: str) -> bool:
    if user.get("role") == "super_admin":
        return True
    perms = user.get("permissions", {})
    return perms.get(key, False) is True


def get_user_tenants(user: dict) -> List[str]:
    """
    Bases attribuées. super_admin voit toute la whitelist si elle est
    configurée; sinon ses bases attribuées, et peut en cibler d'autres.
    """
    if user.get("role") == "super_admin" and config.TENANT_WHITELIST:
        return list(config.TENANT_WHITELIST)
    tenants: List[str] = []
    for raw in user.get("tenants", []):
        if validate_tenant(raw) and match_tenant(raw, tenants) is None:
            tenants.append(get_tenant_or_raise(raw))
    return tenants


def get_tenant_scope_from_request(user: dict, request: Request) -> Optional[str]:
    """
    Base sélectionnée pour la requête.
    - header X-Tenant-Scope si l'utilisateur y a accès
    - sinon la première base de l'utilisateur (None s'il n'en a aucune)
    """
    allowed = get_user_tenants(user)
    scope = request.headers.get("x-tenant-scope", "")
    if normalize_tenant(scope):
        matched = match_tenant(scope, allowed)
        if matched:
            return matched
        if user.get("role") == "super_admin" and validate_tenant(scope):
            return get_tenant_or_raise(scope)
    return allowed[0] if allowed else None


def validate_tenant_access(user: dict, tenant: str) -> str:
    """
    Vérifie que la base demandée est valide et attribuée à l'utilisateur.
    Returns: tenant dans l'orthographe attribuée ("lnv" -> "LNV")
    """
    try:
        tenant = get_tenant_or_raise(tenant)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    matched = match_tenant(tenant, get_user_tenants(user))
    if matched:
        return matched
    if user.get("role") != "super_admin":
        logger.warning(f"[PERMISSION_DENIED] user={user.get('email')} tenant={tenant}")
        raise HTTPException(status_code=403, detail=f"Accès refusé à la base {tenant}")
    return tenant


# ════════════════════════════════════════════════════════════════════════
# FASTAPI DEPENDENCIES
# ════════════════════════════════════════════════════════════════════════

def require_permission(permission_key: str):
    """
    FastAPI dependency factory.
    Usage: user: dict = Depends(require_permission("onboarding.view"))
    """
    from routes.auth import get_current_user

    async def _check(user: dict = Depends(get_current_user)):
        if not user_has_permission(user, permission_key):
            logger.warning(
                f"[PERMISSION_DENIED] user={user.get('email')} "
                f"key={permission_key} role={user.get('role')}"
            )
            raise HTTPException(
                status_code=403,
                detail=f"Permission requise: {permission_key}"
            )
        return user

    return _check
