"""
SOLAR CRM - Source Mappers

Un mapper par planilha. Signature attendue par le moteur:
    mapper(existing | None, row) -> dict | None
Les mappers fournis acceptent en plus now= (lié par le moteur).

- dict: mise à jour partielle (ou document complet pour une création)
- None: ligne ignorée (aucun changement, override manuel, ou UC inconnue
  pour une source qui ne crée pas)

Seule la base cadastral (clients) peut créer un enregistrement.
"""

from typing import Any, Callable, Dict, Iterable, Optional

from config import now_iso
from models.onboarding import SourceType
from services.normalization import (
    earliest_iso,
    normalize_date,
    normalize_key,
    parse_share,
)
from services.pipeline_state_machine import IMPORT_ACTOR, apply_onboarding_update

Mapper = Callable[[Optional[Dict[str, Any]], Dict[str, Any]], Optional[Dict[str, Any]]]

# Alias de colonnes acceptés par source
KEY_FIELDS = ("uc", "installation_key")
NAME_FIELDS = ("name", "cliente", "razao_social")
TAX_ID_FIELDS = ("cpf_cnpj", "cpfCnpj", "cnpj", "cpf")
PLANT_FIELDS = ("usina", "usina_vinculada")
SHARE_FIELDS = ("rateio", "percentual")
FORECAST_FIELDS = ("previsao", "mes_referencia")
INVOICE_DATE_FIELDS = ("data_emissao", "emissao")


def first_value(row: Dict[str, Any], fields: Iterable[str]) -> Any:
    """Première valeur non vide parmi les alias"""
    for field in fields:
        value = row.get(field)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


def row_key(row: Dict[str, Any]) -> Any:
    return first_value(row, KEY_FIELDS)


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# ════════════════════════════════════════════════════════════════════════
# BASE CADASTRAL (source autoritaire)
# ════════════════════════════════════════════════════════════════════════

def map_client_registry(
    existing: Optional[Dict[str, Any]],
    row: Dict[str, Any],
    *,
    now: Optional[str] = None,
    actor: str = IMPORT_ACTOR,
) -> Optional[Dict[str, Any]]:
    """
    Crée ou rafraîchit l'identité d'un client.

    Règle: une usina vinculada implique l'envoi au rateio.
    """
    now = now or now_iso()
    raw_key = row_key(row)
    has_power_plant = first_value(row, PLANT_FIELDS) is not None

    current_onboarding = (existing or {}).get("onboarding") or {}
    onboarding = apply_onboarding_update(
        current_onboarding if existing else None,
        {
            "sent_to_apportionment": bool(current_onboarding.get("sent_to_apportionment"))
            or has_power_plant,
        },
        actor=actor,
        now=now,
        is_new=existing is None,
    )

    identity = {
        "name": _clean(first_value(row, NAME_FIELDS)),
        "tax_id": _clean(first_value(row, TAX_ID_FIELDS)),
        "phone": _clean(row.get("phone")),
        "email": _clean(row.get("email")),
    }

    if existing is None:
        return {
            "name": identity["name"] or "",
            "tax_id": identity["tax_id"] or "",
            "phone": identity["phone"] or "",
            "email": identity["email"] or "",
            "installation_key": _clean(raw_key) or "",
            "installation_key_normalized": normalize_key(raw_key),
            "onboarding": onboarding,
            "updated_at": now,
        }

    update = {
        field: value
        for field, value in identity.items()
        if value is not None and existing.get(field) != value
    }

    normalized = normalize_key(raw_key)
    if existing.get("installation_key_normalized") != normalized:
        update["installation_key_normalized"] = normalized

    if onboarding is not None:
        update["onboarding"] = onboarding

    if not update:
        return None

    update["updated_at"] = now
    return update


# ════════════════════════════════════════════════════════════════════════
# PLANILHA DE RATEIO (mise à jour uniquement)
# ════════════════════════════════════════════════════════════════════════

def map_apportionment(
    existing: Optional[Dict[str, Any]],
    row: Dict[str, Any],
    *,
    now: Optional[str] = None,
    actor: str = IMPORT_ACTOR,
) -> Optional[Dict[str, Any]]:
    """
    Une ligne présente = envoyée au rateio.
    apportionment_registered_at: premier écrit gagne.
    """
    if not existing:
        return None

    now = now or now_iso()
    current = existing.get("onboarding") or {}

    is_registered = parse_share(first_value(row, SHARE_FIELDS)) > 0
    registered_at = current.get("apportionment_registered_at")
    if is_registered and not registered_at:
        registered_at = now

    forecast = normalize_date(first_value(row, FORECAST_FIELDS))

    onboarding = apply_onboarding_update(
        current,
        {
            "sent_to_apportionment": True,
            "apportionment_registered": is_registered,
            "apportionment_registered_at": registered_at,
            "compensation_forecast_date": forecast or current.get("compensation_forecast_date"),
        },
        actor=actor,
        now=now,
    )
    if onboarding is None:
        return None

    return {"onboarding": onboarding, "updated_at": now}


# ════════════════════════════════════════════════════════════════════════
# PLANILHA DE FATURAMENTO (mise à jour uniquement)
# ════════════════════════════════════════════════════════════════════════

def map_invoicing(
    existing: Optional[Dict[str, Any]],
    row: Dict[str, Any],
    *,
    now: Optional[str] = None,
    actor: str = IMPORT_ACTOR,
) -> Optional[Dict[str, Any]]:
    """
    Faturado définitivement; first_invoice_at = min(existant, date de la ligne).
    """
    if not existing:
        return None

    now = now or now_iso()
    current = existing.get("onboarding") or {}
    invoice_date = normalize_date(first_value(row, INVOICE_DATE_FIELDS))

    onboarding = apply_onboarding_update(
        current,
        {
            "has_been_invoiced": True,
            "first_invoice_at": earliest_iso(current.get("first_invoice_at"), invoice_date),
        },
        actor=actor,
        now=now,
    )
    if onboarding is None:
        return None

    return {"onboarding": onboarding, "updated_at": now}


MAPPERS: Dict[SourceType, Mapper] = {
    SourceType.CLIENTS: map_client_registry,
    SourceType.APPORTIONMENT: map_apportionment,
    SourceType.INVOICING: map_invoicing,
}

# Sources autorisées à créer un enregistrement
CREATING_SOURCES = {SourceType.CLIENTS}
