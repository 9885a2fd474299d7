"""FastAPI application entrypoint."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .database import init_db
from .routers import applications, messages
from .services.pipeline import PipelineIntegrityError
from .services.store import TransientStoreError

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Job Application Tracker API",
    description="Classify job-search email, match it to applications and infer their status",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(messages.router)
app.include_router(applications.router)


@app.exception_handler(TransientStoreError)
async def transient_store_error_handler(request: Request, exc: TransientStoreError):
    logger.warning(f"Transient store error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Store temporarily unavailable, retry later"})


@app.exception_handler(PipelineIntegrityError)
async def integrity_error_handler(request: Request, exc: PipelineIntegrityError):
    logger.error(f"Integrity error on {request.url.path}: {exc}")
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.get("/api/health")
def health():
    return {"status": "ok"}
