"""
Solar CRM - Fixtures de test
InMemoryDocumentStore: implémentation mémoire du contrat DocumentStore
(filtres égalité / plage sur chemins pointés, lots atomiques, leases,
logs d'import) avec injection de pannes.
"""

import asyncio
import copy
import uuid
from typing import Any, Callable, Dict, List, Optional

import pytest

from services.batch_writer import OP_CREATE, BatchCeilingExceeded
from services.document_store import DocumentStore
from services.pipeline_state_machine import DEFAULT_ONBOARDING, derive_pipeline_status

TEST_NOW = "2025-03-10T15:00:00+00:00"

_MISSING = object()


class StoreUnavailable(Exception):
    """Panne simulée du store"""
    pass


def get_path(document: Dict[str, Any], path: str) -> Any:
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _compare(op: str, value: Any, operand: Any) -> bool:
    if op == "$eq":
        return value == operand
    if op == "$ne":
        return value != operand
    if value is _MISSING or value is None:
        return False
    if op == "$lt":
        return value < operand
    if op == "$lte":
        return value <= operand
    if op == "$gt":
        return value > operand
    if op == "$gte":
        return value >= operand
    raise ValueError(f"Unsupported operator {op}")


def matches(document: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for path, condition in filters.items():
        value = get_path(document, path)
        if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            normalized = None if value is _MISSING else value
            for op, operand in condition.items():
                if not _compare(op, normalized if op in ("$eq", "$ne") else value, operand):
                    return False
        elif (None if value is _MISSING else value) != condition:
            return False
    return True


def set_path(document: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    target = document
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


class InMemoryDocumentStore(DocumentStore):
    """Store mémoire: un commit applique tout le lot ou rien."""

    permanent_errors = (BatchCeilingExceeded,)

    def __init__(self, batch_ceiling: int = 500):
        self.batch_ceiling = batch_ceiling
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.import_logs: List[Dict[str, Any]] = []
        self.leases: Dict[str, str] = {}

        self.commit_calls = 0
        self.committed_sizes: List[int] = []
        self.count_calls = 0

        # Injection de pannes
        self.fail_load = False
        self.fail_after_commits: Optional[int] = None
        self.transient_commit_failures = 0
        self.fail_count_when: Optional[Callable[[Dict[str, Any]], bool]] = None
        self.count_delay = 0.0

    # ==================== SEED / INSPECTION ====================

    def seed(self, *records: Dict[str, Any]) -> None:
        for record in records:
            self.documents[record["id"]] = copy.deepcopy(record)

    def records(self, tenant: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(doc) for doc in self.documents.values()
            if tenant is None or doc.get("tenant") == tenant
        ]

    def find_by_key(self, tenant: str, key: str) -> Optional[Dict[str, Any]]:
        for doc in self.documents.values():
            if doc.get("tenant") == tenant and doc.get("installation_key_normalized") == key:
                return copy.deepcopy(doc)
        return None

    # ==================== CONTRAT ====================

    async def load_tenant_records(self, tenant: str) -> List[Dict[str, Any]]:
        if self.fail_load:
            raise StoreUnavailable("tenant read failed")
        return self.records(tenant)

    async def count(self, filters: Dict[str, Any]) -> int:
        self.count_calls += 1
        if self.count_delay:
            await asyncio.sleep(self.count_delay)
        if self.fail_count_when and self.fail_count_when(filters):
            raise StoreUnavailable(f"count failed: {filters}")
        return sum(1 for doc in self.documents.values() if matches(doc, filters))

    async def commit_batch(self, ops) -> None:
        self.commit_calls += 1
        if len(ops) > self.batch_ceiling:
            raise BatchCeilingExceeded(f"{len(ops)} > {self.batch_ceiling}")
        if self.transient_commit_failures > 0:
            self.transient_commit_failures -= 1
            raise StoreUnavailable("transient commit failure")
        if self.fail_after_commits is not None and len(self.committed_sizes) >= self.fail_after_commits:
            raise StoreUnavailable("commit failed")

        # Copie superficielle: seuls les documents touchés sont dupliqués
        staged = dict(self.documents)
        for op in ops:
            if op.kind == OP_CREATE:
                if op.record_id in staged:
                    raise StoreUnavailable(f"duplicate id {op.record_id}")
                staged[op.record_id] = {**copy.deepcopy(op.data), "id": op.record_id}
            else:
                if op.record_id not in staged:
                    raise StoreUnavailable(f"unknown id {op.record_id}")
                document = copy.deepcopy(staged[op.record_id])
                for path, value in op.data.items():
                    set_path(document, path, copy.deepcopy(value))
                staged[op.record_id] = document

        self.documents = staged
        self.committed_sizes.append(len(ops))

    async def append_import_log(self, entry: Dict[str, Any]) -> None:
        self.import_logs.append(copy.deepcopy(entry))

    async def list_import_logs(self, tenant: str, limit: int = 50, skip: int = 0) -> Dict[str, Any]:
        logs = sorted(
            (log for log in self.import_logs if log["tenant"] == tenant),
            key=lambda log: log["timestamp"],
            reverse=True,
        )
        return {"logs": logs[skip:skip + limit], "total": len(logs), "limit": limit, "skip": skip}

    async def acquire_lease(self, tenant: str, owner: str, ttl_seconds: int) -> bool:
        if tenant in self.leases:
            return False
        self.leases[tenant] = owner
        return True

    async def release_lease(self, tenant: str, owner: str) -> None:
        if self.leases.get(tenant) == owner:
            del self.leases[tenant]


# ═══════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture(autouse=True)
def fast_retry(monkeypatch):
    """Pas d'attente réelle entre deux tentatives"""
    monkeypatch.setattr("services.retry.RETRY_BASE_DELAY", 0.0)
    monkeypatch.setattr("services.retry.RETRY_MAX_DELAY", 0.0)


@pytest.fixture
def make_record():
    """Fabrique un client déjà consolidé (statut cohérent avec les flags)"""

    def _make(tenant: str = "LNV", key: str = None, updated_at: str = TEST_NOW, **onboarding):
        key = key or str(10 ** 11 + uuid.uuid4().int % 10 ** 11)
        data = {**DEFAULT_ONBOARDING, **onboarding}
        data["pipeline_status"] = derive_pipeline_status(data).value
        data["updated_at"] = updated_at
        data.setdefault("history", [])
        return {
            "id": str(uuid.uuid4()),
            "tenant": tenant,
            "name": f"Cliente {key}",
            "tax_id": "",
            "phone": "",
            "email": "",
            "installation_key": key,
            "installation_key_normalized": key,
            "onboarding": data,
            "created_at": updated_at,
            "updated_at": updated_at,
        }

    return _make
