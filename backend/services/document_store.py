"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SOLAR CRM - Document Store (contrat consommé par la consolidation)          ║
║                                                                              ║
║  - lecture par tenant (index en mémoire)                                     ║
║  - comptages égalité / plage, sans transfert de documents                    ║
║  - écriture atomique multi-documents bornée (STORE_BATCH_CEILING)            ║
║  - écriture append-only des logs d'import                                    ║
║  - lease par tenant (sérialisation des runs)                                 ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, InsertOne, UpdateOne
from pymongo.errors import BulkWriteError, DuplicateKeyError

from config import MONGO_TRANSACTIONS, STORE_BATCH_CEILING
from services.batch_writer import OP_CREATE, BatchCeilingExceeded, WriteOp

logger = logging.getLogger("document_store")


class DocumentStore:
    """Contrat minimal attendu du store par le moteur et le dashboard."""

    batch_ceiling: int = STORE_BATCH_CEILING
    # Erreurs de commit à ne jamais retenter
    permanent_errors: tuple = ()

    async def load_tenant_records(self, tenant: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def count(self, filters: Dict[str, Any]) -> int:
        raise NotImplementedError

    async def commit_batch(self, ops: List[WriteOp]) -> None:
        raise NotImplementedError

    async def append_import_log(self, entry: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def list_import_logs(
        self, tenant: str, limit: int = 50, skip: int = 0
    ) -> Dict[str, Any]:
        raise NotImplementedError

    async def acquire_lease(self, tenant: str, owner: str, ttl_seconds: int) -> bool:
        raise NotImplementedError

    async def release_lease(self, tenant: str, owner: str) -> None:
        raise NotImplementedError


class MotorDocumentStore(DocumentStore):
    """Implémentation MongoDB (Motor)."""

    permanent_errors = (BulkWriteError, DuplicateKeyError)

    def __init__(self, database, mongo_client=None, use_transactions: bool = MONGO_TRANSACTIONS):
        self.db = database
        self.client = mongo_client
        self.use_transactions = use_transactions and mongo_client is not None

    async def ensure_indexes(self) -> None:
        await self.db.clients.create_index("id", unique=True)
        await self.db.clients.create_index([
            ("tenant", ASCENDING), ("installation_key_normalized", ASCENDING)
        ])
        await self.db.clients.create_index([
            ("tenant", ASCENDING), ("onboarding.pipeline_status", ASCENDING),
            ("onboarding.updated_at", ASCENDING),
        ])
        await self.db.clients.create_index([
            ("tenant", ASCENDING), ("onboarding.compensation_forecast_date", ASCENDING)
        ])
        await self.db.import_logs.create_index([("tenant", ASCENDING), ("timestamp", DESCENDING)])
        await self.db.import_leases.create_index("tenant", unique=True)
        logger.info("[STORE] MongoDB indexes ensured")

    async def load_tenant_records(self, tenant: str) -> List[Dict[str, Any]]:
        return await self.db.clients.find({"tenant": tenant}, {"_id": 0}).to_list(None)

    async def count(self, filters: Dict[str, Any]) -> int:
        return await self.db.clients.count_documents(filters)

    def _to_requests(self, ops: List[WriteOp]) -> list:
        requests = []
        for op in ops:
            if op.kind == OP_CREATE:
                requests.append(InsertOne({**op.data, "id": op.record_id}))
            else:
                requests.append(UpdateOne({"id": op.record_id}, {"$set": op.data}))
        return requests

    async def commit_batch(self, ops: List[WriteOp]) -> None:
        if not ops:
            return
        if len(ops) > self.batch_ceiling:
            raise BatchCeilingExceeded(
                f"{len(ops)} operations exceed the atomic write ceiling ({self.batch_ceiling})"
            )

        requests = self._to_requests(ops)

        if not self.use_transactions:
            await self.db.clients.bulk_write(requests, ordered=True)
            return

        async with await self.client.start_session() as session:
            async with session.start_transaction():
                await self.db.clients.bulk_write(requests, ordered=True, session=session)

    async def append_import_log(self, entry: Dict[str, Any]) -> None:
        await self.db.import_logs.insert_one(dict(entry))

    async def list_import_logs(
        self, tenant: str, limit: int = 50, skip: int = 0
    ) -> Dict[str, Any]:
        query = {"tenant": tenant}
        logs = await self.db.import_logs.find(query, {"_id": 0}) \
            .sort("timestamp", -1) \
            .skip(skip) \
            .limit(limit) \
            .to_list(limit)
        total = await self.db.import_logs.count_documents(query)
        return {"logs": logs, "total": total, "limit": limit, "skip": skip}

    async def acquire_lease(self, tenant: str, owner: str, ttl_seconds: int) -> bool:
        """
        Upsert conditionnel: ne matche que si le lease est expiré.
        Un lease vivant provoque un DuplicateKeyError sur l'index unique tenant.
        """
        now = datetime.now(timezone.utc)
        try:
            await self.db.import_leases.update_one(
                {"tenant": tenant, "expires_at": {"$lt": now.isoformat()}},
                {"$set": {
                    "tenant": tenant,
                    "owner": owner,
                    "acquired_at": now.isoformat(),
                    "expires_at": (now + timedelta(seconds=ttl_seconds)).isoformat(),
                }},
                upsert=True,
            )
        except DuplicateKeyError:
            return False
        return True

    async def release_lease(self, tenant: str, owner: str) -> None:
        await self.db.import_leases.delete_one({"tenant": tenant, "owner": owner})


_store: Optional[DocumentStore] = None


def get_store() -> DocumentStore:
    """Store du process (dépendance FastAPI)."""
    global _store
    if _store is None:
        from config import client, db
        _store = MotorDocumentStore(db, client)
    return _store


def set_store(store: Optional[DocumentStore]) -> None:
    global _store
    _store = store
