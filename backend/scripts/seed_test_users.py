"""
Solar CRM - Seed Test Users (dev/staging only)
Crée un compte par rôle avec des bases attribuées prévisibles.
Run: python scripts/seed_test_users.py
Reset: python scripts/seed_test_users.py --reset
"""

import asyncio
import sys
import uuid
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import client, db, hash_password, now_iso
from services.permissions import get_preset_permissions

# Même mot de passe pour tous les comptes de test
TEST_PASSWORD = "SolarTest2026!"

TEST_USERS = [
    {"email": "superadmin@test.local", "nom": "Super Admin Test", "role": "super_admin", "tenants": []},
    {"email": "admin_lnv@test.local",  "nom": "Admin LNV",        "role": "admin",       "tenants": ["LNV", "Era Verde"]},
    {"email": "ops_lnv@test.local",    "nom": "OPS LNV",          "role": "ops",         "tenants": ["LNV"]},
    {"email": "viewer_lnv@test.local", "nom": "Viewer LNV",       "role": "viewer",      "tenants": ["LNV"]},
    {"email": "ops_egs@test.local",    "nom": "OPS EGS",          "role": "ops",         "tenants": ["EGS", "Era Verde"]},
]


async def reset():
    """Supprime les utilisateurs @test.local et leurs sessions"""
    ids = [u["id"] async for u in db.users.find({"email": {"$regex": "@test\\.local$"}}, {"id": 1})]
    await db.sessions.delete_many({"user_id": {"$in": ids}})
    result = await db.users.delete_many({"id": {"$in": ids}})
    print(f"Deleted {result.deleted_count} test users")


async def seed():
    for u in TEST_USERS:
        doc = {
            "email": u["email"],
            "password": hash_password(TEST_PASSWORD),
            "nom": u["nom"],
            "role": u["role"],
            "tenants": u["tenants"],
            "permissions": get_preset_permissions(u["role"]),
            "is_active": True,
        }
        result = await db.users.update_one(
            {"email": u["email"]},
            {"$set": doc, "$setOnInsert": {"id": str(uuid.uuid4()), "created_at": now_iso()}},
            upsert=True,
        )
        action = "Created" if result.upserted_id else "Updated"
        scope = ",".join(u["tenants"]) or "*"
        print(f"  {action}: {u['email']} ({u['role']}/{scope})")


async def main():
    await reset()
    if "--reset" in sys.argv:
        print("Reset complete. Run without --reset to re-seed.")
    else:
        await seed()
        print(f"\n{len(TEST_USERS)} test users seeded. Password for all: {TEST_PASSWORD}")
    client.close()


if __name__ == "__main__":
    asyncio.run(main())
