import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from service_ledger.api import products, services
from service_ledger.config import settings
from service_ledger.database import init_db

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("%s started", settings.APP_NAME)
    yield


app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Product stock ledger, services realized and their billing",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return JSON for unhandled exceptions so callers can parse the error."""
    logger.error("Unhandled error: %s\n%s", exc, traceback.format_exc())
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.include_router(products.router, prefix="/api/v1")
app.include_router(services.router, prefix="/api/v1")


@app.get("/health")
def health():
    return {"status": "ok"}
