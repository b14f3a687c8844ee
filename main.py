from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.errors import DomainError
from app.core.logging import get_logger
from app.db.base import Base
from app.db.session import engine

# Register models
from app.db import models  # noqa: F401

from services.ledger.api import router as materials_router
from services.bom.api import router as bom_router
from services.capacity.api import router as capacity_router
from services.production.api import router as units_router
from services.qms.api import router as qms_router
from services.quarantine.api import router as quarantine_router
from services.traceability.api import router as trace_router

logger = get_logger("gearbox")

app = FastAPI(title="Gearbox Traceability")


@app.exception_handler(DomainError)
async def _domain_error(request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
async def _startup():
    # Dev-friendly schema creation (migrations are available for real upgrades)
    Base.metadata.create_all(bind=engine)
    logger.info("Schema ready")


app.include_router(materials_router)
app.include_router(bom_router)
app.include_router(capacity_router)
app.include_router(units_router)
app.include_router(qms_router)
app.include_router(quarantine_router)
app.include_router(trace_router)


@app.get("/health")
def health():
    return {"ok": True}
