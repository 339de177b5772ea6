"""
Configuration et utilitaires partagés - Solar CRM Onboarding
"""

import os
import hashlib
import secrets
from datetime import datetime, timezone
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'solar_crm')
MONGO_TRANSACTIONS = _env_bool('MONGO_TRANSACTIONS', True)

client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')


# ==================== TENANTS ====================

# Projets autorisés (séparés par des virgules). Vide = tout identifiant accepté,
# l'accès reste limité aux tenants attribués à chaque utilisateur.
TENANT_WHITELIST = [t.strip() for t in os.environ.get('TENANT_WHITELIST', '').split(',') if t.strip()]


# ==================== CONSOLIDATION ====================

# Plafond d'une écriture atomique côté store
STORE_BATCH_CEILING = int(os.environ.get('STORE_BATCH_CEILING', '500'))
# Taille des lots de consolidation (marge de sécurité sous le plafond)
CONSOLIDATION_CHUNK_SIZE = int(os.environ.get('CONSOLIDATION_CHUNK_SIZE', '400'))

if not 0 < CONSOLIDATION_CHUNK_SIZE < STORE_BATCH_CEILING:
    raise ValueError(
        f"CONSOLIDATION_CHUNK_SIZE ({CONSOLIDATION_CHUNK_SIZE}) must be strictly "
        f"below STORE_BATCH_CEILING ({STORE_BATCH_CEILING})"
    )

COMMIT_RETRY_ATTEMPTS = int(os.environ.get('COMMIT_RETRY_ATTEMPTS', '3'))
RETRY_BASE_DELAY = float(os.environ.get('RETRY_BASE_DELAY', '0.5'))
RETRY_MAX_DELAY = float(os.environ.get('RETRY_MAX_DELAY', '8'))

RUN_LEASE_SECONDS = int(os.environ.get('RUN_LEASE_SECONDS', '900'))


# ==================== DASHBOARD ====================

AGGREGATION_QUERY_TIMEOUT = float(os.environ.get('AGGREGATION_QUERY_TIMEOUT', '10'))
STUCK_APPORTIONMENT_DAYS = int(os.environ.get('STUCK_APPORTIONMENT_DAYS', '30'))
STUCK_COMPENSATION_DAYS = int(os.environ.get('STUCK_COMPENSATION_DAYS', '60'))
FORECAST_MONTHS = int(os.environ.get('FORECAST_MONTHS', '6'))
BUSINESS_TIMEZONE = os.environ.get('BUSINESS_TIMEZONE', 'America/Sao_Paulo')
DASHBOARD_REFRESH_MINUTES = int(os.environ.get('DASHBOARD_REFRESH_MINUTES', '15'))


# ==================== HELPERS ====================

def hash_password(password: str) -> str:
    """Hash un mot de passe avec SHA256"""
    return hashlib.sha256(password.encode()).hexdigest()

def generate_token() -> str:
    """Génère un token de session sécurisé"""
    return secrets.token_urlsafe(32)

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return datetime.now(timezone.utc).isoformat()
