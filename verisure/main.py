from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from verisure.auth import JWTIdentityProvider
from verisure.db import async_session_maker, close_db, get_session, init_db, ping_db
from verisure.config import get_settings
from verisure.directory import ProductDirectory
from verisure.errors import DirectoryError, DuplicateProductError, EncodeError
from verisure.ledger import LedgerGateway
from verisure.logging_config import init_sentry, setup_logging
from verisure.routes import analytics, products, verify
from verisure.verification import VerificationService

VERSION = "0.1.0"

settings = get_settings()

setup_logging(settings)
logger = logging.getLogger(__name__)

if init_sentry(settings):
    logger.info("Sentry error reporting enabled")

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Initializing database...")
    await init_db()
    logger.info("Database initialized")
    if app.state.verification.ledger.is_available():
        logger.info("Ledger mirror configured")
    else:
        logger.info("Ledger mirror not configured, using directory only")
    yield
    logger.info("Closing database connections...")
    await close_db()
    logger.info("Goodbye")

app = FastAPI(
    title=settings.PROJECT_NAME,
    description=settings.PROJECT_DESCRIPTION,
    version=VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan
)

app.state.identity_provider = JWTIdentityProvider.from_settings(settings)
app.state.verification = VerificationService(
    ledger=LedgerGateway.from_settings(settings),
    directory=ProductDirectory(async_session_maker),
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(products.router, prefix=settings.API_V1_PREFIX)
app.include_router(verify.router, prefix=settings.API_V1_PREFIX)
app.include_router(analytics.router, prefix=settings.API_V1_PREFIX)


@app.exception_handler(DuplicateProductError)
async def duplicate_product_handler(request: Request, exc: DuplicateProductError):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(DirectoryError)
async def directory_error_handler(request: Request, exc: DirectoryError):
    logger.error(f"Directory failure on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Product directory unavailable"},
    )


@app.exception_handler(EncodeError)
async def encode_error_handler(request: Request, exc: EncodeError):
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": str(exc)})


@app.get("/health")
async def health(session: AsyncSession = Depends(get_session)):
    try:
        await ping_db(session)
        database = "ok"
    except Exception as e:
        logger.error(f"Health check database failure: {e}")
        database = "unavailable"

    ledger = app.state.verification.ledger
    if not ledger.is_available():
        ledger_state = "not_configured"
    else:
        ledger_state = "ok" if await ledger.ping() else "unreachable"

    return {
        "status": "ok" if database == "ok" else "degraded",
        "version": VERSION,
        "checks": {"database": database, "ledger": ledger_state},
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("verisure.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
