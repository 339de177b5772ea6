"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SOLAR CRM - Pipeline State Machine                                          ║
║                                                                              ║
║  SEUL CE MODULE produit onboarding.pipeline_status                           ║
║                                                                              ║
║  ORDRE D'ÉVALUATION (premier match gagne):                                   ║
║  1. has_been_invoiced              -> invoiced                               ║
║  2. compensation_forecast_date     -> waiting_compensation                   ║
║  3. apportionment_registered       -> apportionment_done                     ║
║  4. sent_to_apportionment          -> sent_to_apportionment                  ║
║  5. sinon                          -> waiting_apportionment                  ║
║                                                                              ║
║  INVARIANT: mêmes flags => même statut. Pas de monotonie imposée.            ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Any, Dict, Optional

from config import now_iso
from models.onboarding import PipelineStatus

logger = logging.getLogger("pipeline_state_machine")

# Champs suivis dans l'historique
TRACKED_FIELDS = [
    "pipeline_status",
    "sent_to_apportionment",
    "apportionment_registered",
    "apportionment_registered_at",
    "has_been_invoiced",
    "first_invoice_at",
    "compensation_forecast_date",
]

HISTORY_LIMIT = 50

IMPORT_ACTOR = "system_import"

DEFAULT_ONBOARDING = {
    "sent_to_apportionment": False,
    "apportionment_registered": False,
    "apportionment_registered_at": None,
    "compensation_forecast_date": None,
    "has_been_invoiced": False,
    "first_invoice_at": None,
}


def derive_pipeline_status(onboarding: Optional[Dict[str, Any]]) -> PipelineStatus:
    """Statut du pipeline dérivé des flags d'onboarding."""
    onboarding = onboarding or {}
    if onboarding.get("has_been_invoiced"):
        return PipelineStatus.INVOICED
    if onboarding.get("compensation_forecast_date"):
        return PipelineStatus.WAITING_COMPENSATION
    if onboarding.get("apportionment_registered"):
        return PipelineStatus.APPORTIONMENT_DONE
    if onboarding.get("sent_to_apportionment"):
        return PipelineStatus.SENT_TO_APPORTIONMENT
    return PipelineStatus.WAITING_APPORTIONMENT


def apply_onboarding_update(
    existing: Optional[Dict[str, Any]],
    changes: Dict[str, Any],
    *,
    source: str = "import",
    actor: str = IMPORT_ACTOR,
    now: Optional[str] = None,
    is_new: bool = False,
) -> Optional[Dict[str, Any]]:
    """
    Applique des changements sur un sous-document onboarding.

    Returns:
        Le nouvel onboarding complet (statut recalculé, historique, updated_at),
        ou None si rien ne doit être écrit:
        - manual_override actif et source == "import"
        - aucun champ suivi n'a changé sur un enregistrement existant
    """
    current = dict(existing or {})

    if current.get("manual_override") and source == "import":
        return None

    changes = {k: v for k, v in changes.items() if k != "pipeline_status"}
    updated = {**DEFAULT_ONBOARDING, **current, **changes}
    updated["pipeline_status"] = derive_pipeline_status(updated).value

    now = now or now_iso()
    history = list(current.get("history") or [])
    changed = False

    for field in TRACKED_FIELDS:
        old_value = current.get(field)
        new_value = updated.get(field)
        if old_value != new_value:
            history.append({
                "field": field,
                "old_value": old_value,
                "new_value": new_value,
                "updated_by": actor,
                "updated_at": now,
                "source": source,
            })
            changed = True

    if not changed and not is_new:
        return None

    updated["history"] = history[-HISTORY_LIMIT:]
    updated["updated_at"] = now
    updated["updated_by"] = actor
    return updated
