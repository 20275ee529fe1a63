import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings
from create_tables import crear_tablas
from database import SessionLocal

from modules.identities.models import Identity
from modules.pins.controllers.pin_controller import router as pin_router
from modules.signatures.controllers.signature_controller import router as signature_router
from modules.signature_requests.controllers.signature_request_controller import router as request_router

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup logic ---
    logger.info("Iniciando aplicación...")
    crear_tablas()
    if settings.debug:
        _crear_datos_prueba()
    yield
    # --- Shutdown logic ---
    logger.info("Aplicación detenida")


def _crear_datos_prueba():
    """Crea identidades de prueba (sin PIN: se configura al enrolarse)."""
    with SessionLocal() as session:
        if session.query(Identity).count() > 0:
            logger.info("Datos de prueba ya existen")
            return

        supervisor = Identity(name="Ana García", rut="15.234.567-8", enabled=True)
        trabajador = Identity(name="Juan Pérez", rut="18.765.432-K", enabled=True)
        nuevo = Identity(name="Carlos López", rut="20.111.222-3", enabled=False)
        session.add_all([supervisor, trabajador, nuevo])
        session.commit()

        for identity in (supervisor, trabajador, nuevo):
            logger.info("Identidad de prueba: %s (%s) id=%s", identity.name, identity.rut, identity.id)


app = FastAPI(
    title=settings.app_name,
    description="API de firmas con PIN, disputas y solicitudes de firma",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=[
        "Accept",
        "Accept-Language",
        "Content-Language",
        "Content-Type",
        "Authorization",
        "X-Requested-With",
        "Origin",
    ],
    max_age=86400,
)
# Routers
app.include_router(pin_router, prefix="/pins", tags=["pins"])
app.include_router(signature_router, prefix="/signatures", tags=["signatures"])
app.include_router(request_router, prefix="/signature-requests", tags=["signature-requests"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
