"""
SOLAR CRM - Modeles Auth & Utilisateurs
Role + Permission hybrid model.
Roles are presets. Permissions are the real authority.
"""

from pydantic import BaseModel, field_validator
from typing import Optional, Dict, List

from .tenant import get_tenant_or_raise


VALID_ROLES = ["super_admin", "admin", "ops", "viewer"]


class UserLogin(BaseModel):
    email: str
    password: str


class UserCreate(BaseModel):
    email: str
    password: str
    nom: str
    tenants: List[str]
    role: str = "viewer"
    permissions: Optional[Dict[str, bool]] = None

    @field_validator("tenants")
    @classmethod
    def validate_tenants(cls, v):
        return [get_tenant_or_raise(t) for t in v]

    @field_validator("role")
    @classmethod
    def validate_role(cls, v):
        if v not in VALID_ROLES:
            raise ValueError(f"Role invalide: {v}. Valides: {VALID_ROLES}")
        return v
