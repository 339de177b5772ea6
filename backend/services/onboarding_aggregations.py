"""
SOLAR CRM - Onboarding Aggregations
READ-ONLY. Comptages côté serveur uniquement (aucun document transféré).

- 5 comptages par pipeline_status
- 2 alertes "bloqué" (updated_at trop ancien)
- 6 buckets de prévision de compensation (mois calendaires)

Toutes les requêtes partent en parallèle (asyncio.gather). Un échec de
requête met le dashboard en état "error", distinct d'un résumé à zéro.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import pytz

from config import (
    AGGREGATION_QUERY_TIMEOUT,
    BUSINESS_TIMEZONE,
    FORECAST_MONTHS,
    STUCK_APPORTIONMENT_DAYS,
    STUCK_COMPENSATION_DAYS,
)
from models.onboarding import (
    PIPELINE_LABELS,
    DashboardState,
    ForecastBucket,
    FunnelEntry,
    OnboardingSummary,
    PipelineStatus,
)
from services.document_store import DocumentStore, get_store
from services.retry import with_retry

logger = logging.getLogger("onboarding_aggregations")

PT_BR_MONTHS = ["jan", "fev", "mar", "abr", "mai", "jun", "jul", "ago", "set", "out", "nov", "dez"]


class AggregationError(Exception):
    """Une ou plusieurs requêtes de comptage ont échoué"""

    def __init__(self, message: str, failed: List[str]):
        super().__init__(message)
        self.failed = failed


def month_windows(
    now: datetime, months: int = FORECAST_MONTHS, tz_name: str = BUSINESS_TIMEZONE
) -> List[Tuple[str, str, str, str]]:
    """
    Mois calendaires à partir du mois courant, bornes en ISO UTC.
    Returns: [(label "mar/25", "2025-03", start inclus, end exclu), ...]
    """
    tz = pytz.timezone(tz_name)
    local_now = now.astimezone(tz)
    windows = []
    for offset in range(months):
        year, month_index = divmod(local_now.month - 1 + offset, 12)
        year += local_now.year
        next_year, next_index = divmod(month_index + 1, 12)
        next_year += year

        start = tz.localize(datetime(year, month_index + 1, 1)).astimezone(timezone.utc)
        end = tz.localize(datetime(next_year, next_index + 1, 1)).astimezone(timezone.utc)
        label = f"{PT_BR_MONTHS[month_index]}/{year % 100:02d}"
        windows.append((label, f"{year}-{month_index + 1:02d}", start.isoformat(), end.isoformat()))
    return windows


def build_count_queries(tenant: str, now: datetime) -> Dict[str, Dict[str, Any]]:
    """Nom de requête -> filtre Mongo"""
    queries: Dict[str, Dict[str, Any]] = {}

    for status in PipelineStatus:
        queries[f"status:{status.value}"] = {
            "tenant": tenant,
            "onboarding.pipeline_status": status.value,
        }

    apportionment_cutoff = (now - timedelta(days=STUCK_APPORTIONMENT_DAYS)).isoformat()
    compensation_cutoff = (now - timedelta(days=STUCK_COMPENSATION_DAYS)).isoformat()

    queries["alert:long_wait_apportionment"] = {
        "tenant": tenant,
        "onboarding.pipeline_status": PipelineStatus.WAITING_APPORTIONMENT.value,
        "onboarding.updated_at": {"$lt": apportionment_cutoff},
    }
    queries["alert:long_wait_compensation"] = {
        "tenant": tenant,
        "onboarding.pipeline_status": PipelineStatus.WAITING_COMPENSATION.value,
        "onboarding.updated_at": {"$lt": compensation_cutoff},
    }

    for _label, month, start, end in month_windows(now):
        queries[f"forecast:{month}"] = {
            "tenant": tenant,
            "onboarding.compensation_forecast_date": {"$gte": start, "$lt": end},
        }

    return queries


async def _timed_count(store: DocumentStore, name: str, filters: Dict[str, Any]) -> int:
    return await with_retry(
        lambda: asyncio.wait_for(store.count(filters), timeout=AGGREGATION_QUERY_TIMEOUT),
        context=f"count {name}",
    )


async def fetch_onboarding_summary(
    tenant: str,
    *,
    store: Optional[DocumentStore] = None,
    now: Optional[datetime] = None,
) -> OnboardingSummary:
    """
    Résumé du dashboard onboarding pour un tenant.

    Raises:
        AggregationError si au moins une requête échoue
    """
    store = store or get_store()
    now = now or datetime.now(timezone.utc)

    queries = build_count_queries(tenant, now)
    names = list(queries.keys())

    results = await asyncio.gather(
        *[_timed_count(store, name, queries[name]) for name in names],
        return_exceptions=True,
    )

    counts: Dict[str, int] = {}
    failed: List[str] = []
    for name, result in zip(names, results):
        if isinstance(result, BaseException):
            logger.error(f"[AGGREGATION] tenant={tenant} query={name} failed: {result!r}")
            failed.append(name)
        else:
            counts[name] = result

    if failed:
        raise AggregationError(
            f"Échec de {len(failed)} requête(s) d'agrégation pour {tenant}",
            failed=failed,
        )

    kpis = {status.value: counts[f"status:{status.value}"] for status in PipelineStatus}
    kpis["total"] = sum(kpis.values())

    funnel = [
        FunnelEntry(status=status, label=PIPELINE_LABELS[status], value=kpis[status.value])
        for status in PipelineStatus
    ]

    forecast = [
        ForecastBucket(label=label, month=month, start=start, end=end, total=counts[f"forecast:{month}"])
        for label, month, start, end in month_windows(now)
    ]

    return OnboardingSummary(
        tenant=tenant,
        kpis=kpis,
        alerts={
            "long_wait_apportionment": counts["alert:long_wait_apportionment"],
            "long_wait_compensation": counts["alert:long_wait_compensation"],
        },
        forecast=forecast,
        funnel=funnel,
        last_sync=datetime.now(timezone.utc).isoformat(),
    )


# ════════════════════════════════════════════════════════════════════════
# DASHBOARD STATE (refresh manuel + dernier résumé valide)
# ════════════════════════════════════════════════════════════════════════

class OnboardingDashboard:
    """État du dashboard d'un tenant. refresh() est le déclencheur manuel."""

    def __init__(self, tenant: str, store: Optional[DocumentStore] = None):
        self.tenant = tenant
        self.store = store
        self.state = DashboardState(tenant=tenant)
        self._lock = asyncio.Lock()

    async def refresh(self, now: Optional[datetime] = None) -> DashboardState:
        async with self._lock:
            try:
                summary = await fetch_onboarding_summary(
                    self.tenant, store=self.store or get_store(), now=now
                )
            except AggregationError as e:
                self.state = DashboardState(
                    tenant=self.tenant,
                    status="error",
                    summary=self.state.summary,
                    error=str(e),
                    retry_url=f"/api/onboarding/dashboard/refresh?{urlencode({'tenant': self.tenant})}",
                    last_sync=self.state.last_sync,
                    errors=e.failed,
                )
                return self.state

            self.state = DashboardState(
                tenant=self.tenant,
                status="ready",
                summary=summary,
                last_sync=summary.last_sync,
            )
            return self.state

    async def get(self) -> DashboardState:
        if self.state.status == "idle":
            return await self.refresh()
        return self.state


class DashboardRegistry:
    """Un dashboard par tenant, partagé par les routes et le scheduler."""

    def __init__(self, store: Optional[DocumentStore] = None):
        self.store = store
        self._dashboards: Dict[str, OnboardingDashboard] = {}

    def get(self, tenant: str) -> OnboardingDashboard:
        if tenant not in self._dashboards:
            self._dashboards[tenant] = OnboardingDashboard(tenant, store=self.store)
        return self._dashboards[tenant]

    def tenants(self) -> List[str]:
        return list(self._dashboards.keys())

    async def refresh_all(self) -> Dict[str, str]:
        results = {}
        for tenant in self.tenants():
            state = await self._dashboards[tenant].refresh()
            results[tenant] = state.status
        return results


dashboards = DashboardRegistry()
