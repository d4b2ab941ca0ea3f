"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from munipal.api import analysis
from munipal.config import CORS_ORIGINS, TARIFF_RULES_PATH
from munipal.pipeline.knowledge_store import InMemoryTariffStore, load_tariff_store

logger = logging.getLogger(__name__)


def _load_store() -> InMemoryTariffStore:
    """Tariff store for the process; empty when no export is configured."""
    if not TARIFF_RULES_PATH:
        logger.warning("MUNIPAL_TARIFF_RULES_PATH not set: every charge will be CANNOT_VERIFY")
        return InMemoryTariffStore()
    path = Path(TARIFF_RULES_PATH)
    if not path.exists():
        logger.warning(f"Tariff rules file {path} not found: starting with an empty store")
        return InMemoryTariffStore()
    return load_tariff_store(path)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: load the tariff knowledge base once."""
    app.state.tariff_store = _load_store()
    yield


app = FastAPI(
    title="MUNIPAL Bill Verification",
    description="Rule-based insights and tariff verification for City of Johannesburg bills",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(analysis.router, prefix="/api/analyze", tags=["Analysis"])


@app.get("/api/health")
async def health():
    store = getattr(app.state, "tariff_store", None)
    return {
        "status": "operational",
        "platform": "MUNIPAL",
        "tariff_rules": len(store) if store is not None else 0,
    }
