"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SOLAR CRM - Tenant (base de dados por projeto / usina)                      ║
║                                                                              ║
║  RÈGLE FONDAMENTALE:                                                         ║
║  - Chaque projet est une partition isolée                                    ║
║  - AUCUN match ni comptage entre tenants                                     ║
║  - Toute requête DOIT avoir un filtre tenant                                 ║
║                                                                              ║
║  Les projets sont créés dynamiquement ("EGS", "Era Verde", ...): un tenant   ║
║  est un identifiant opaque. TENANT_WHITELIST (env) peut les restreindre.     ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import re
from typing import Iterable, Optional

import config

_SPACES = re.compile(r"\s+")


def normalize_tenant(tenant: Optional[str]) -> str:
    """Espaces superflus retirés, casse conservée"""
    return _SPACES.sub(" ", tenant or "").strip()


def match_tenant(tenant: Optional[str], candidates: Iterable[str]) -> Optional[str]:
    """
    Retrouve un tenant dans une liste sans tenir compte de la casse.
    Retourne l'orthographe de la liste ("lnv" -> "LNV"), ou None.
    """
    wanted = normalize_tenant(tenant).casefold()
    if not wanted:
        return None
    for candidate in candidates:
        if normalize_tenant(candidate).casefold() == wanted:
            return normalize_tenant(candidate)
    return None


# ==================== VALIDATION HELPER ====================

def validate_tenant(tenant: Optional[str]) -> bool:
    """
    Valide qu'un tenant est utilisable.
    À utiliser PARTOUT avant toute opération
    """
    if not normalize_tenant(tenant):
        return False
    if config.TENANT_WHITELIST:
        return match_tenant(tenant, config.TENANT_WHITELIST) is not None
    return True


def get_tenant_or_raise(tenant: Optional[str]) -> str:
    """
    Retourne le tenant normalisé ou raise une erreur
    """
    if not validate_tenant(tenant):
        allowed = config.TENANT_WHITELIST or "tout identifiant non vide"
        raise ValueError(f"Tenant invalide: {tenant!r}. Valides: {allowed}")
    if config.TENANT_WHITELIST:
        return match_tenant(tenant, config.TENANT_WHITELIST)
    return normalize_tenant(tenant)
