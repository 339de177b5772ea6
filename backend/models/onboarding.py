"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SOLAR CRM - Modèle Onboarding (pipeline client)                             ║
║                                                                              ║
║  LIFECYCLE DÉRIVÉ:                                                           ║
║  waiting_apportionment → sent_to_apportionment → apportionment_done          ║
║  → waiting_compensation → invoiced                                           ║
║                                                                              ║
║  RÈGLE: pipeline_status n'est JAMAIS écrit directement.                      ║
║  Il sort UNIQUEMENT de services.pipeline_state_machine                       ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field
from enum import Enum


class PipelineStatus(str, Enum):
    """Étapes du pipeline d'onboarding"""
    WAITING_APPORTIONMENT = "waiting_apportionment"   # Aguardando rateio
    SENT_TO_APPORTIONMENT = "sent_to_apportionment"   # Enviado para rateio
    APPORTIONMENT_DONE = "apportionment_done"         # Rateio cadastrado
    WAITING_COMPENSATION = "waiting_compensation"     # Aguardando compensação
    INVOICED = "invoiced"                             # Faturado


PIPELINE_ORDER = [s.value for s in PipelineStatus]

PIPELINE_LABELS = {
    PipelineStatus.WAITING_APPORTIONMENT: "Aguardando Rateio",
    PipelineStatus.SENT_TO_APPORTIONMENT: "Enviado p/ Rateio",
    PipelineStatus.APPORTIONMENT_DONE: "Rateio Cadastrado",
    PipelineStatus.WAITING_COMPENSATION: "Aguardando Comp.",
    PipelineStatus.INVOICED: "Faturado",
}


class SourceType(str, Enum):
    """Les trois extractions consolidées"""
    CLIENTS = "clients"               # Base cadastral (source autoritaire)
    APPORTIONMENT = "apportionment"   # Planilha de rateio
    INVOICING = "invoicing"           # Planilha de faturamento


VALID_SOURCE_TYPES = [s.value for s in SourceType]


# ==================== RUN ====================

class RowError(BaseModel):
    """Erreur au niveau d'une ligne (jamais bloquante)"""
    key: str
    reason: str


class RunStats(BaseModel):
    """Résultat d'une exécution de consolidation"""
    total: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: List[RowError] = []
    chunks_total: int = 0
    chunks_committed: int = 0

    def add_error(self, key: str, reason: str) -> None:
        self.errors.append(RowError(key=key, reason=reason))


class ImportRunLog(BaseModel):
    """Entrée append-only, une par exécution"""
    id: str
    source_type: SourceType
    tenant: str
    status: str = "completed"  # completed | partial
    stats: RunStats
    executed_by: str = "system"
    timestamp: str
    failed_chunk: Optional[int] = None
    failure: Optional[str] = None


class ImportRequest(BaseModel):
    """Payload d'import: lignes déjà parsées depuis la planilha"""
    tenant: str
    rows: List[Dict[str, Any]]


# ==================== DASHBOARD ====================

class FunnelEntry(BaseModel):
    status: PipelineStatus
    label: str
    value: int


class ForecastBucket(BaseModel):
    label: str       # "mar/25"
    month: str       # "2025-03"
    start: str       # ISO UTC inclus
    end: str         # ISO UTC exclu
    total: int


class OnboardingSummary(BaseModel):
    tenant: str
    kpis: Dict[str, int]
    alerts: Dict[str, int]
    forecast: List[ForecastBucket]
    funnel: List[FunnelEntry]
    last_sync: str


class DashboardState(BaseModel):
    """
    État du dashboard: "error" est distinct d'un résumé à zéro.
    """
    tenant: str
    status: str = "idle"  # idle | ready | error
    summary: Optional[OnboardingSummary] = None
    error: Optional[str] = None
    retry_url: Optional[str] = None
    last_sync: Optional[str] = None
    errors: List[str] = Field(default_factory=list, serialization_alias="_errors")
