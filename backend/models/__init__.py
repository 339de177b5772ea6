"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SOLAR CRM - Models Package                                                  ║
║                                                                              ║
║  Exports tous les modèles pour import facile                                 ║
║  from models import PipelineStatus, RunStats, validate_tenant, etc.          ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Auth
from .auth import (
    VALID_ROLES,
    UserLogin,
    UserCreate,
)

# Tenant (Multi-tenant)
from .tenant import (
    normalize_tenant,
    match_tenant,
    validate_tenant,
    get_tenant_or_raise,
)

# Onboarding pipeline
from .onboarding import (
    PipelineStatus,
    PIPELINE_ORDER,
    PIPELINE_LABELS,
    SourceType,
    VALID_SOURCE_TYPES,
    RowError,
    RunStats,
    ImportRunLog,
    ImportRequest,
    FunnelEntry,
    ForecastBucket,
    OnboardingSummary,
    DashboardState,
)

__all__ = [
    # Auth
    "VALID_ROLES",
    "UserLogin",
    "UserCreate",
    # Tenant
    "normalize_tenant",
    "match_tenant",
    "validate_tenant",
    "get_tenant_or_raise",
    # Onboarding
    "PipelineStatus",
    "PIPELINE_ORDER",
    "PIPELINE_LABELS",
    "SourceType",
    "VALID_SOURCE_TYPES",
    "RowError",
    "RunStats",
    "ImportRunLog",
    "ImportRequest",
    "FunnelEntry",
    "ForecastBucket",
    "OnboardingSummary",
    "DashboardState",
]
