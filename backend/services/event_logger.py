"""
SOLAR CRM - Event Logger

Journal append-only des imports (collection import_logs).
Appelé exactement une fois par run, hors du traitement ligne à ligne.
"""

import uuid
from typing import Optional

from config import now_iso
from models.onboarding import ImportRunLog, RunStats, SourceType


async def write_import_log(
    store,
    source_type: SourceType,
    tenant: str,
    stats: RunStats,
    executed_by: str = "system",
    status: str = "completed",
    failed_chunk: Optional[int] = None,
    failure: Optional[str] = None,
) -> ImportRunLog:
    """
    Écrit une entrée ImportRunLog immuable.

    Args:
        source_type: clients | apportionment | invoicing
        tenant: base concernée (LNV, EGS, ...)
        stats: totaux + erreurs par ligne
        executed_by: email de l'opérateur
        status: completed | partial (échec d'un lot en cours de run)
    """
    entry = ImportRunLog(
        id=str(uuid.uuid4()),
        source_type=source_type,
        tenant=tenant,
        status=status,
        stats=stats.model_copy(deep=True),
        executed_by=executed_by or "system",
        timestamp=now_iso(),
        failed_chunk=failed_chunk,
        failure=failure,
    )
    await store.append_import_log(entry.model_dump(mode="json"))
    return entry
