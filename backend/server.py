"""
RFP CRM - API Backend

Démarre avec:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
import logging

import config
from config import db

# Configuration logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("rfp_crm")


async def create_indexes():
    """Index MongoDB (unicité des versions, numéros RFP, compteurs)"""
    from services.document_versions import ensure_file_indexes

    await ensure_file_indexes()
    await db.rfps.create_index("id", unique=True)
    await db.rfps.create_index("rfp_no", unique=True, sparse=True)
    await db.rfps.create_index("lead_id")
    await db.rfps.create_index([("customer_id", 1), ("site_survey_id", 1)])
    await db.counters.create_index("key", unique=True)
    await db.products.create_index("id", unique=True)
    await db.product_translations.create_index(
        [("product_id", 1), ("language_code", 1)], unique=True
    )
    await db.event_log.create_index("created_at")
    await db.event_log.create_index([("entity_type", 1), ("entity_id", 1)])
    logger.info("✅ Index MongoDB créés")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 RFP CRM démarré")
    await create_indexes()
    yield
    logger.info("RFP CRM arrêté")


# Créer l'app
app = FastAPI(
    title="RFP CRM",
    description="Chiffrage, RFP et documents générés",
    version="1.0.0",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    """Corps d'erreur uniforme: {"error": ...} (ou {"error", "details"} pour les 500)"""
    body = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)


# Documents générés servis en local quand BunnyCDN n'est pas configuré
config.LOCAL_STORAGE_DIR.mkdir(parents=True, exist_ok=True)
app.mount(
    config.LOCAL_STORAGE_URL,
    StaticFiles(directory=str(config.LOCAL_STORAGE_DIR)),
    name="generated"
)

# ==================== IMPORT DES ROUTES ====================

from routes import files, pricing, products, rfps, site_surveys

# Routes avec préfixe /api
app.include_router(site_surveys.router, prefix="/api")
app.include_router(rfps.router, prefix="/api")
app.include_router(files.router, prefix="/api")
app.include_router(pricing.router, prefix="/api")
app.include_router(products.router, prefix="/api")


# ==================== ROUTE RACINE ====================

@app.get("/api/")
async def root():
    return {
        "name": "RFP CRM API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("server:app", host="0.0.0.0", port=8001, reload=True)
