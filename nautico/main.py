import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from nautico.config import LOG_LEVEL, SECRET_KEY, SECRET_KEY_DEFECTO
from nautico.database import Base, engine

from nautico.routers.conciliacion import router as conciliacion_router
from nautico.routers.cupones import router as cupones_router
from nautico.routers.pagos import router as pagos_router
from nautico.routers.socios import router as socios_router

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def advertir_clave_por_defecto(secret_key: str = SECRET_KEY) -> bool:
    if secret_key == SECRET_KEY_DEFECTO:
        logger.warning("SECRET_KEY no configurada: los tokens se firman con la clave por defecto")
        return True
    return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    advertir_clave_por_defecto()
    Base.metadata.create_all(bind=engine)
    logger.info("Club Náutico: tablas verificadas")
    yield


app = FastAPI(title="Club Náutico - Conciliación", lifespan=lifespan)

app.include_router(conciliacion_router)
app.include_router(pagos_router)
app.include_router(cupones_router)
app.include_router(socios_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
