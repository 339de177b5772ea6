"""
Scheduler pour les tâches automatiques Solar CRM
- Refresh périodique des dashboards onboarding ouverts
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import BUSINESS_TIMEZONE, DASHBOARD_REFRESH_MINUTES
from services.onboarding_aggregations import DashboardRegistry, dashboards

logger = logging.getLogger("scheduler")


class DashboardScheduler:
    """Gestionnaire de tâches planifiées"""

    def __init__(
        self,
        registry: Optional[DashboardRegistry] = None,
        interval_minutes: int = DASHBOARD_REFRESH_MINUTES,
    ):
        self.registry = registry or dashboards
        self.interval_minutes = interval_minutes
        self.scheduler = AsyncIOScheduler(timezone=BUSINESS_TIMEZONE)

    def start(self):
        """Démarre le scheduler"""
        self.scheduler.add_job(
            self.refresh_dashboards,
            IntervalTrigger(minutes=self.interval_minutes),
            id="refresh_onboarding_dashboards",
            name="Refresh dashboards onboarding",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"[SCHEDULER] démarré (refresh toutes les {self.interval_minutes} min)")

    def stop(self):
        """Arrête le scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("[SCHEDULER] arrêté")

    # ==================== TÂCHES PLANIFIÉES ====================

    async def refresh_dashboards(self):
        """
        Recalcule chaque dashboard déjà ouvert.
        Un tenant en erreur passe en status="error" sans bloquer les autres.
        """
        tenants = self.registry.tenants()
        if not tenants:
            return {}

        results = await self.registry.refresh_all()
        failed = [t for t, status in results.items() if status == "error"]
        if failed:
            logger.warning(f"[SCHEDULER] dashboards en erreur: {failed}")
        else:
            logger.info(f"[SCHEDULER] {len(results)} dashboard(s) rafraîchi(s)")
        return results


# Instance globale
task_scheduler = DashboardScheduler()
