import time
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import get_settings
from app.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from app.core.logging import bind_request_id, clear_request_context, configure_logging, get_logger
from app.db.init import init_db
from app.routers import boosts, credits, missions, payments, payouts, premium, referrals, sweeps

settings = get_settings()
configure_logging(debug=settings.debug)
log = get_logger(__name__)

ROUTERS = (
    (credits.router, "credits"),
    (premium.router, "premium"),
    (boosts.router, "boosts"),
    (payouts.router, "payouts"),
    (referrals.router, "referrals"),
    (missions.router, "missions"),
    (payments.router, "payments"),
    (sweeps.router, "sweeps"),
)

app = FastAPI(
    title="Classifieds Credits API",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-request-id"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    clear_request_context()
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    bind_request_id(request_id)
    start = time.perf_counter()
    response = await call_next(request)
    log.info(
        "request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.add_exception_handler(AppError, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

for router, name in ROUTERS:
    app.include_router(router, prefix=f"/v1/{name}", tags=[name])


@app.get("/health")
async def health():
    """Liveness for load balancers; does not touch MongoDB."""
    return {"status": "ok"}


@app.on_event("startup")
async def startup():
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.1)
        log.info("startup", msg="Sentry enabled")
    await init_db()
    log.info("startup", msg="DB connected", db=settings.mongodb_db_name)
