"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SOLAR CRM - Moteur de consolidation onboarding                              ║
║                                                                              ║
║  1. Lease du tenant (un seul run à la fois par base)                         ║
║  2. Index en mémoire des clients du tenant, clé = UC normalisée              ║
║  3. Lots de CONSOLIDATION_CHUNK_SIZE lignes, commit atomique par lot         ║
║  4. Erreurs ligne à ligne collectées, jamais bloquantes                      ║
║  5. UN log d'import par run (completed | partial)                            ║
║                                                                              ║
║  PAS de transaction entre lots: un lot en échec n'annule pas les             ║
║  lots déjà commités. L'échec remonte à l'appelant (ChunkCommitError).        ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import uuid
from functools import partial
from typing import Any, Dict, List, Optional, Sequence

from config import CONSOLIDATION_CHUNK_SIZE, RUN_LEASE_SECONDS, now_iso
from models.onboarding import RunStats, SourceType
from services.batch_writer import AtomicBatch, BatchCeilingExceeded, chunked
from services.document_store import DocumentStore, get_store
from services.event_logger import write_import_log
from services.normalization import normalize_key
from services.retry import with_retry
from services.source_mappers import CREATING_SOURCES, MAPPERS, Mapper, row_key

logger = logging.getLogger("consolidation")

MISSING_KEY = "MISSING"


class ConsolidationError(Exception):
    """Base des erreurs de run"""
    pass


class TenantIndexError(ConsolidationError):
    """Lecture initiale du tenant impossible: rien ne peut être matché"""
    pass


class RunInProgressError(ConsolidationError):
    """Un autre run détient le lease de ce tenant"""
    pass


class ChunkCommitError(ConsolidationError):
    """
    Commit d'un lot en échec. Les lots précédents restent appliqués.
    stats reflète uniquement ce qui a été commité + les erreurs de lignes.
    """

    def __init__(self, message: str, stats: RunStats, failed_chunk: int):
        super().__init__(message)
        self.stats = stats
        self.failed_chunk = failed_chunk


def build_tenant_index(records: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """UC normalisée -> enregistrement"""
    index: Dict[str, Dict[str, Any]] = {}
    for record in records:
        key = record.get("installation_key_normalized") or normalize_key(record.get("installation_key"))
        if key:
            index[key] = record
    return index


async def run_consolidation(
    rows: Sequence[Dict[str, Any]],
    tenant: str,
    source_type: SourceType,
    mapper: Optional[Mapper] = None,
    *,
    store: Optional[DocumentStore] = None,
    executed_by: str = "system",
    chunk_size: int = CONSOLIDATION_CHUNK_SIZE,
    now: Optional[str] = None,
    use_lease: bool = True,
) -> RunStats:
    """
    Consolide un lot de lignes d'une source dans les clients d'un tenant.

    Raises:
        RunInProgressError: lease du tenant déjà pris
        TenantIndexError: lecture initiale impossible (aucune écriture)
        ChunkCommitError: un lot n'a pas pu être commité (run partiel, loggé)
    """
    source_type = SourceType(source_type)
    now = now or now_iso()
    if mapper is None:
        # Horodatage unique pour tout le run
        mapper = partial(MAPPERS[source_type], now=now)
    store = store or get_store()
    run_id = str(uuid.uuid4())

    if use_lease and not await store.acquire_lease(tenant, run_id, RUN_LEASE_SECONDS):
        logger.warning(f"[CONSOLIDATION] tenant={tenant} source={source_type.value} blocked: run in progress")
        raise RunInProgressError(f"Une consolidation est déjà en cours pour {tenant}")

    try:
        return await _consolidate(
            rows, tenant, source_type, mapper,
            store=store,
            executed_by=executed_by,
            chunk_size=chunk_size,
            now=now,
        )
    finally:
        if use_lease:
            await store.release_lease(tenant, run_id)


async def _consolidate(
    rows: Sequence[Dict[str, Any]],
    tenant: str,
    source_type: SourceType,
    mapper: Mapper,
    *,
    store: DocumentStore,
    executed_by: str,
    chunk_size: int,
    now: str,
) -> RunStats:
    stats = RunStats(total=len(rows))

    try:
        records = await store.load_tenant_records(tenant)
    except Exception as e:
        logger.error(f"[CONSOLIDATION] tenant={tenant} index load failed: {e}")
        raise TenantIndexError(f"Impossible de lire les clients du tenant {tenant}: {e}") from e

    index = build_tenant_index(records)
    chunks = list(chunked(rows, chunk_size, store.batch_ceiling))
    stats.chunks_total = len(chunks)

    logger.info(
        f"[CONSOLIDATION] start tenant={tenant} source={source_type.value} "
        f"rows={len(rows)} indexed={len(index)} chunks={len(chunks)}"
    )

    for chunk_number, chunk in enumerate(chunks, start=1):
        batch = AtomicBatch(store.batch_ceiling)
        staged: Dict[str, Dict[str, Any]] = {}
        pending = {"created": 0, "updated": 0, "unchanged": 0}

        for row in chunk:
            _process_row(
                row, tenant, source_type, mapper,
                index=index, staged=staged, batch=batch,
                stats=stats, pending=pending, now=now,
            )

        if not len(batch):
            stats.unchanged += pending["unchanged"]
            continue

        try:
            await with_retry(
                lambda: store.commit_batch(batch.ops),
                context=f"commit chunk {chunk_number}/{len(chunks)} tenant={tenant}",
                permanent=(BatchCeilingExceeded,) + store.permanent_errors,
            )
        except Exception as e:
            logger.error(
                f"[CONSOLIDATION] tenant={tenant} source={source_type.value} "
                f"chunk {chunk_number}/{len(chunks)} failed: {e} | "
                f"committed={stats.chunks_committed}"
            )
            try:
                await write_import_log(
                    store, source_type, tenant, stats,
                    executed_by=executed_by,
                    status="partial",
                    failed_chunk=chunk_number,
                    failure=str(e),
                )
            except Exception as log_error:
                logger.error(f"[CONSOLIDATION] import log write failed: {log_error}")
            raise ChunkCommitError(
                f"Lot {chunk_number}/{len(chunks)} non commité: {e}",
                stats=stats,
                failed_chunk=chunk_number,
            ) from e

        index.update(staged)
        stats.created += pending["created"]
        stats.updated += pending["updated"]
        stats.unchanged += pending["unchanged"]
        stats.chunks_committed += 1

    await write_import_log(store, source_type, tenant, stats, executed_by=executed_by)

    logger.info(
        f"[CONSOLIDATION] done tenant={tenant} source={source_type.value} "
        f"total={stats.total} created={stats.created} updated={stats.updated} "
        f"unchanged={stats.unchanged} errors={len(stats.errors)}"
    )
    return stats


def _process_row(
    row: Dict[str, Any],
    tenant: str,
    source_type: SourceType,
    mapper: Mapper,
    *,
    index: Dict[str, Dict[str, Any]],
    staged: Dict[str, Dict[str, Any]],
    batch: AtomicBatch,
    stats: RunStats,
    pending: Dict[str, int],
    now: str,
) -> None:
    raw_key = row_key(row) if isinstance(row, dict) else None
    if raw_key is None:
        stats.add_error(MISSING_KEY, "UC manquante sur la ligne")
        return

    key = normalize_key(raw_key)
    if not key:
        stats.add_error(str(raw_key), "UC invalide après normalisation")
        return

    existing = staged.get(key) or index.get(key)

    try:
        update = mapper(existing, row)
    except Exception as e:
        logger.warning(f"[CONSOLIDATION] tenant={tenant} uc={raw_key} mapper error: {e}")
        stats.add_error(str(raw_key), f"Erreur du mapper: {e}")
        return

    if update is None:
        if existing is None and source_type not in CREATING_SOURCES:
            stats.add_error(str(raw_key), "UC introuvable dans la base cadastral")
        elif existing is not None:
            pending["unchanged"] += 1
        return

    if existing is not None:
        batch.add_update(existing["id"], update)
        staged[key] = {**existing, **update}
        pending["updated"] += 1
        return

    if source_type not in CREATING_SOURCES:
        stats.add_error(str(raw_key), "UC introuvable dans la base cadastral")
        return

    record_id = str(uuid.uuid4())
    document = {
        **update,
        "id": record_id,
        "tenant": tenant,
        "installation_key_normalized": key,
        "created_at": now,
    }
    batch.add_create(record_id, document)
    staged[key] = document
    pending["created"] += 1
