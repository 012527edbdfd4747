"""
AgriTrace — FastAPI Application Entry Point
"""
import logging
import os
from contextlib import asynccontextmanager

from alembic import command as alembic_command
from alembic.config import Config
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.database import DATABASE_URL
from api.routes import ledger, trace, zkp

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

RUN_MIGRATIONS = os.environ.get("RUN_MIGRATIONS", "true").lower() in ("1", "true", "yes")


def run_migrations() -> None:
    alembic_cfg = Config(os.path.join(os.path.dirname(os.path.dirname(__file__)), "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", DATABASE_URL)
    alembic_command.upgrade(alembic_cfg, "head")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ── Step 0: Run database migrations ───────────────────────────────────────
    if RUN_MIGRATIONS:
        try:
            run_migrations()
            logger.info("Database migrations applied successfully")
        except Exception as e:
            logger.error("Migration failed: %s", e)
            raise
    else:
        logger.info("RUN_MIGRATIONS disabled — skipping alembic upgrade")

    # ── Step 1: Load trace settings (fail fast) ───────────────────────────────
    trace.get_trace_settings()

    logger.info("AgriTrace API started")
    yield
    logger.info("AgriTrace API shutting down")


app = FastAPI(
    title="AgriTrace API",
    description="Agricultural supply-chain ledger with mock zero-knowledge proofs",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


# Routers
app.include_router(ledger.router, prefix="/api/ledger", tags=["Ledger"])
app.include_router(zkp.router,    prefix="/api/zkp",    tags=["ZKP"])
app.include_router(trace.router,  prefix="/api/trace",  tags=["Trace"])


@app.get("/api/health", tags=["Health"])
def health():
    return {"status": "ok", "service": "agritrace-api", "version": "1.0.0"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
    )
