import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import models so every table is registered with SQLAlchemy Base
from . import models  # noqa: F401
from .config import ALLOWED_ORIGINS
from .database import Base, engine
from .domain.contracts import router as contracts_router
from .domain.invoices import router as invoices_router
from .domain.payments import router as payments_router
from .domain.pricing import router as quotes_router
from .domain.webhooks import router as webhooks_router
from .exceptions import (
    GatewayAmbiguous,
    GatewayRejected,
    GatewayUnavailable,
    InvalidStateTransition,
    NotFound,
    UnknownServiceCombination,
    ValidationError,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Clean Up Bros Contracts API", version="1.0.0", lifespan=lifespan)


# ============================================================================
# ERROR MAPPING
# ============================================================================


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": jsonable_errors(exc)})


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold the raised exception object, which is not JSON serializable
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(error)
    return errors


@app.exception_handler(ValidationError)
async def domain_validation_handler(request: Request, exc: ValidationError):
    logger.warning(f"Validation error for {request.url.path}: {exc}")
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(UnknownServiceCombination)
async def unknown_service_handler(request: Request, exc: UnknownServiceCombination):
    logger.warning(f"⚠️ {exc}")
    return JSONResponse(
        status_code=422,
        content={
            "detail": str(exc),
            "category": exc.category,
            "service_tier": exc.tier,
        },
    )


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidStateTransition)
async def invalid_transition_handler(request: Request, exc: InvalidStateTransition):
    logger.warning(f"⚠️ Rejected on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "current": exc.current, "target": exc.target},
    )


@app.exception_handler(GatewayUnavailable)
async def gateway_unavailable_handler(request: Request, exc: GatewayUnavailable):
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc), "idempotency_key": exc.idempotency_key, "retryable": True},
    )


@app.exception_handler(GatewayAmbiguous)
async def gateway_ambiguous_handler(request: Request, exc: GatewayAmbiguous):
    # Accepted: outcome unknown until the next reconciliation pass or webhook
    return JSONResponse(
        status_code=202,
        content={
            "detail": str(exc),
            "idempotency_key": exc.idempotency_key,
            "pending_reconciliation": True,
        },
    )


@app.exception_handler(GatewayRejected)
async def gateway_rejected_handler(request: Request, exc: GatewayRejected):
    return JSONResponse(
        status_code=502,
        content={
            "detail": str(exc),
            "idempotency_key": exc.idempotency_key,
            "processor_status": exc.status_code,
            "errors": exc.errors,
        },
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        response = await call_next(request)
        return response
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} - Error: {str(e)}")
        raise


app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(quotes_router)
app.include_router(contracts_router)
app.include_router(invoices_router)
app.include_router(payments_router)
app.include_router(webhooks_router)


@app.get("/")
def root():
    return {"message": "Clean Up Bros Contracts API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
