import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from luixa.core.config import CORS_ORIGINS, DATABASE_URL
from luixa.core.database import Base, SessionLocal, engine
from luixa.core.logging_setup import configure_logging
from luixa.core.startup_checks import ensure_migrations_applied, validate_database_environment
from luixa.middleware.observability import ObservabilityMiddleware
import luixa.models  # registra los models antes del create_all

from luixa.routers.admin_messages import router as admin_messages_router
from luixa.routers.orders import router as orders_router
from luixa.routers.simulator import router as simulator_router
from luixa.routers.webhook import router as webhook_router
from luixa.services.order_confirmation import find_incomplete_confirmations

configure_logging()

logger = logging.getLogger(__name__)
STARTUP_PREFIX = "[STARTUP]"
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(
    os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini"))
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="Luixa Pedidos API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)


def _report_incomplete_confirmations() -> None:
    db = SessionLocal()
    try:
        pending = find_incomplete_confirmations(db)
        for order in pending:
            logger.warning(
                "%s confirmation left unfinished step=%s error=%s",
                STARTUP_PREFIX,
                order.confirmation_step,
                order.confirmation_error,
                extra={"order_id": order.id, "tracking_code": order.tracking_code},
            )
        logger.info("%s incomplete confirmations=%s", STARTUP_PREFIX, len(pending))
    finally:
        db.close()


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        if DATABASE_URL.startswith("sqlite"):
            Base.metadata.create_all(bind=engine)
        ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
        _report_incomplete_confirmations()
    except Exception:
        logger.exception("%s ERROR startup failed", STARTUP_PREFIX)
        raise


# Routers
app.include_router(webhook_router)
app.include_router(admin_messages_router)
app.include_router(simulator_router)
app.include_router(orders_router)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
