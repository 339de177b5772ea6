"""
Solar CRM - Maintenance: recalcule onboarding.pipeline_status d'une base.

- backfill de installation_key_normalized
- re-dérivation du statut depuis les flags (drift = statut stocké différent)

Run: cd backend && python3 scripts/recompute_pipeline_status.py --tenant LNV [--dry-run]
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import client, db, now_iso
from models.tenant import get_tenant_or_raise
from services.normalization import normalize_key
from services.pipeline_state_machine import derive_pipeline_status


async def recompute(tenant: str, dry_run: bool = False, database=None) -> dict:
    database = database if database is not None else db
    tenant = get_tenant_or_raise(tenant)

    total = await database.clients.count_documents({"tenant": tenant})
    print(f"Total clients {tenant}: {total}")

    keys_backfilled = 0
    status_drift = 0
    samples = []

    cursor = database.clients.find(
        {"tenant": tenant},
        {"_id": 0, "id": 1, "installation_key": 1, "installation_key_normalized": 1, "onboarding": 1},
    )

    async for record in cursor:
        update = {}

        normalized = normalize_key(record.get("installation_key"))
        if normalized and record.get("installation_key_normalized") != normalized:
            update["installation_key_normalized"] = normalized
            keys_backfilled += 1

        onboarding = record.get("onboarding") or {}
        expected = derive_pipeline_status(onboarding).value
        if onboarding.get("pipeline_status") != expected:
            update["onboarding.pipeline_status"] = expected
            update["onboarding.updated_at"] = now_iso()
            status_drift += 1
            if len(samples) < 20:
                samples.append({
                    "id": record.get("id", "")[:8],
                    "stored": onboarding.get("pipeline_status"),
                    "expected": expected,
                })

        if update and not dry_run:
            await database.clients.update_one({"id": record["id"]}, {"$set": update})

    print("\n════════════════════════════════════")
    print(f"  PIPELINE STATUS REPORT ({'DRY RUN' if dry_run else 'APPLIED'})")
    print("════════════════════════════════════")
    print(f"  Total clients:     {total}")
    print(f"  Keys backfilled:   {keys_backfilled}")
    print(f"  Status drift:      {status_drift}")
    print("════════════════════════════════════")

    if samples:
        print("\nDrift (sample):")
        for s in samples:
            print(f"  client={s['id']}... stored={s['stored']} expected={s['expected']}")

    return {
        "total": total,
        "keys_backfilled": keys_backfilled,
        "status_drift": status_drift,
        "dry_run": dry_run,
    }


def main():
    parser = argparse.ArgumentParser(description="Recalcule pipeline_status d'une base")
    parser.add_argument("--tenant", required=True, help="Projet, ex: EGS ou \"Era Verde\"")
    parser.add_argument("--dry-run", action="store_true", help="Rapport seulement, aucune écriture")
    args = parser.parse_args()

    try:
        asyncio.run(recompute(args.tenant, dry_run=args.dry_run))
    finally:
        client.close()


if __name__ == "__main__":
    main()
