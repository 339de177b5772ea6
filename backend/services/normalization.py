"""
SOLAR CRM - Normalisation des valeurs de planilha

Fonctions pures: jamais d'exception vers l'appelant.
- normalize_key: clé de jointure UC stable entre les trois sources
- normalize_date: serial Excel / texte libre -> ISO UTC ou None
- parse_share: pourcentage de rateio -> float
"""

import math
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional

import pytz

from config import BUSINESS_TIMEZONE

BUSINESS_TZ = pytz.timezone(BUSINESS_TIMEZONE)

# Jour zéro du calendrier Excel: serial 1 = 1899-12-31
EXCEL_EPOCH = datetime(1899, 12, 30)

_KEY_SEPARATORS = re.compile(r"[\s/.\-]+")
_NUMERIC = re.compile(r"^\d+(\.\d+)?$")
# Une année seule ("2024") n'est pas un serial Excel
_YEAR = re.compile(r"^(19|20)\d{2}$")

_DATE_FORMATS = (
    "%d/%m/%Y",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%Y/%m/%d",
    "%m/%Y",
    "%Y-%m",
    "%Y",
)


# ════════════════════════════════════════════════════════════════════════
# CLÉ UC
# ════════════════════════════════════════════════════════════════════════

def normalize_key(raw: Any) -> str:
    """
    Normalise une Unidade Consumidora pour le match entre planilhas.

    Espaces, barres, points et tirets sont retirés; les zéros de tête de
    chaque segment aussi, donc "10/908866-007" et "010908866-7" donnent
    la même clé. Un segment entièrement nul garde un "0" (dígito
    verificador 0). Idempotent. None / vide -> "".
    """
    if raw is None or isinstance(raw, bool):
        return ""
    if isinstance(raw, float):
        if not math.isfinite(raw):
            return ""
        if raw.is_integer():
            raw = int(raw)
    segments = _KEY_SEPARATORS.split(str(raw))
    joined = "".join(segment.lstrip("0") or "0" for segment in segments if segment)
    return joined.lstrip("0")


# ════════════════════════════════════════════════════════════════════════
# DATES
# ════════════════════════════════════════════════════════════════════════

def _to_utc_iso(value: datetime) -> str:
    # Une date de planilha sans fuseau est une date locale du métier
    if value.tzinfo is None:
        value = BUSINESS_TZ.localize(value)
    return value.astimezone(timezone.utc).isoformat()


def _from_serial(serial: float) -> Optional[str]:
    if not math.isfinite(serial) or serial <= 0:
        return None
    try:
        return _to_utc_iso(EXCEL_EPOCH + timedelta(days=serial))
    except OverflowError:
        return None


def normalize_date(raw: Any) -> Optional[str]:
    """
    Padronise une date venant d'une planilha (Excel/CSV).

    Accepte datetime/date, serial numérique Excel et texte libre
    (ISO, dd/mm/yyyy, mm/yyyy, ...). Sans fuseau explicite, la valeur
    est lue dans BUSINESS_TIMEZONE. Retourne l'ISO UTC ou None.
    """
    if raw is None or isinstance(raw, bool):
        return None

    try:
        if isinstance(raw, datetime):
            return _to_utc_iso(raw)
        if isinstance(raw, date):
            return _to_utc_iso(datetime.combine(raw, time()))
        if isinstance(raw, (int, float)):
            return _from_serial(float(raw))

        text = str(raw).strip()
        if not text:
            return None
        if _NUMERIC.match(text) and not _YEAR.match(text):
            return _from_serial(float(text))

        try:
            return _to_utc_iso(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError:
            pass

        for fmt in _DATE_FORMATS:
            try:
                return _to_utc_iso(datetime.strptime(text, fmt))
            except ValueError:
                continue
    except (TypeError, ValueError, OverflowError):
        return None

    return None


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """ISO stocké -> datetime aware (None si absent ou illisible)"""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def earliest_iso(current: Optional[str], candidate: Optional[str]) -> Optional[str]:
    """min() de deux timestamps ISO, en ignorant les valeurs absentes"""
    current_dt = parse_iso(current)
    candidate_dt = parse_iso(candidate)
    if candidate_dt is None:
        return current if current_dt is not None else None
    if current_dt is None or candidate_dt < current_dt:
        return candidate
    return current


# ════════════════════════════════════════════════════════════════════════
# RATEIO
# ════════════════════════════════════════════════════════════════════════

def parse_share(raw: Any) -> float:
    """
    Pourcentage de rateio: 12.5, "12,5", "12,5%", "1.234,5".
    Illisible -> 0.0
    """
    if raw is None or isinstance(raw, bool):
        return 0.0
    if isinstance(raw, (int, float)):
        return float(raw) if math.isfinite(raw) else 0.0

    text = str(raw).strip().replace("%", "").replace(" ", "")
    if "," in text and "." in text:
        text = text.replace(".", "").replace(",", ".")
    else:
        text = text.replace(",", ".")

    try:
        value = float(text)
    except ValueError:
        return 0.0
    return value if math.isfinite(value) else 0.0
