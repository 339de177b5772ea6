"""
Solar CRM - API Backend Onboarding
Consolidation des planilhas (cadastral / rateio / faturamento) + dashboard pipeline.

Démarre avec:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from config import CORS_ORIGINS

# Configuration logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("solar_crm")

# Créer l'app
app = FastAPI(
    title="Solar CRM Onboarding",
    description="Consolidation onboarding et pipeline de compensation",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== IMPORT DES ROUTES ====================

from routes import auth, onboarding

# Routes avec préfixe /api
app.include_router(auth.router, prefix="/api")
app.include_router(onboarding.router, prefix="/api")

# ==================== ROUTE RACINE ====================

@app.get("/")
async def root():
    return {
        "name": "Solar CRM Onboarding API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


# ==================== STARTUP / SHUTDOWN ====================

@app.on_event("startup")
async def startup():
    logger.info("Solar CRM Onboarding démarré")

    from config import db
    from services.document_store import MotorDocumentStore, get_store
    from scheduler_service import task_scheduler

    await db.users.create_index("email", unique=True)
    await db.sessions.create_index("token")
    await db.sessions.create_index("expires_at")

    store = get_store()
    if isinstance(store, MotorDocumentStore):
        await store.ensure_indexes()

    logger.info("Index MongoDB créés")

    task_scheduler.start()


@app.on_event("shutdown")
async def shutdown():
    from config import client
    from scheduler_service import task_scheduler

    task_scheduler.stop()
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
