import asyncio
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from pathlib import Path

from fastapi import FastAPI, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ambassador.app.core.limiter import limiter
from ambassador.app.api import admin, auth, flariki, products, reports, shop, statistics, tasks, users
from ambassador.app.api.deps import get_session, require_staff
from ambassador.app.core.logging import setup_logging, get_logger, clear_request_context
from ambassador.app.core.settings import get_settings
from ambassador.app.core.metrics import PrometheusMiddleware, get_metrics_response
from ambassador.app.services.notifications import NullNotifier, TelegramNotifier
from ambassador.app.services.reminders import MSK, send_weekly_report_reminders
from ambassador.app.services.report_sync import NullReportSync
from ambassador.app.services.storage import LocalBlobStore

# Load and validate settings
try:
    settings = get_settings()
except ValueError as e:
    print(f"Configuration error: {e}", file=sys.stderr)
    sys.exit(1)

# JSON logs in production
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.is_production
)

logger = get_logger(__name__)

logger.info(
    "Application configuration loaded",
    environment=settings.ENVIRONMENT,
    db_host=settings.DB_HOST,
    notifications=bool(settings.BOT_TOKEN),
)

# Пятница, 10:00 МСК
REMINDER_WEEKDAY = 4
REMINDER_HOUR = 10


def next_reminder_run(now: datetime) -> datetime:
    """Next Friday 10:00 MSK strictly after ``now`` (aware, MSK)."""
    now = now.astimezone(MSK)
    target = now.replace(hour=REMINDER_HOUR, minute=0, second=0, microsecond=0)
    target += timedelta(days=(REMINDER_WEEKDAY - now.weekday()) % 7)
    if target <= now:
        target += timedelta(days=7)
    return target


async def _weekly_scheduler(app: FastAPI):
    """Background task: weekly report reminders every Friday at 10:00 MSK."""
    from ambassador.app.core.database import async_session

    while True:
        try:
            target = next_reminder_run(datetime.now(tz=MSK))
            wait_secs = (target - datetime.now(tz=MSK)).total_seconds()
            logger.info("Weekly scheduler: sleeping", next_run=target.isoformat(), wait_seconds=int(wait_secs))
            await asyncio.sleep(max(wait_secs, 0))

            async with async_session() as session:
                try:
                    sent = await send_weekly_report_reminders(
                        session, app.state.notifier, mini_app_url=settings.MINI_APP_URL
                    )
                    logger.info("Weekly scheduler: reminders sent", count=sent)
                except Exception as e:
                    await session.rollback()
                    logger.error("Weekly scheduler: report reminders failed", error=str(e))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Weekly scheduler: unexpected error", error=str(e))
            await asyncio.sleep(60)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    - Startup: notifier, report sync, upload storage, reminder scheduler
    - Shutdown: stop the scheduler, close the Telegram client
    """
    logger.info("Application starting up", version="1.0.0")
    if settings.BOT_TOKEN:
        app.state.notifier = TelegramNotifier(settings.BOT_TOKEN, api_url=settings.TELEGRAM_API_URL)
    else:
        logger.warning("BOT_TOKEN is not set, Telegram notifications are disabled")
        app.state.notifier = NullNotifier()
    app.state.report_sync = NullReportSync()
    app.state.blob_store = LocalBlobStore(settings.UPLOAD_DIR, settings.UPLOAD_URL_PREFIX, settings.UPLOAD_MAX_BYTES)

    scheduler_task = None
    if settings.ENABLE_SCHEDULER:
        scheduler_task = asyncio.create_task(_weekly_scheduler(app))
    yield
    if scheduler_task is not None:
        scheduler_task.cancel()
    logger.info("Application shutting down")
    await app.state.notifier.aclose()


app = FastAPI(title="Ambassador Hub Backend", lifespan=lifespan)

# Shared limiter (routers use the same instance for @limiter.limit)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = {}
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part != "body") or "body"
        errors[field] = err.get("msg", "invalid value")
    return JSONResponse(status_code=400, content={"detail": {"message": "Validation error", "errors": errors}})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", path=request.url.path, method=request.method)
    message = str(exc) if not settings.is_production else "Internal server error"
    return JSONResponse(status_code=500, content={"detail": message})


@app.middleware("http")
async def clear_log_context(request: Request, call_next):
    clear_request_context()
    return await call_next(request)


# CORS для Mini App и админки - ДОЛЖЕН БЫТЬ ПЕРВЫМ (выполняется последним при ответе)
ALLOWED_ORIGINS = settings.allowed_origins_list
logger.info("CORS configuration", allowed_origins=ALLOWED_ORIGINS, is_production=settings.is_production)
if not ALLOWED_ORIGINS:
    if settings.is_production:
        logger.error("ALLOWED_ORIGINS must be set in production environment")
        raise ValueError("ALLOWED_ORIGINS environment variable is required in production")
    # Development fallback
    ALLOWED_ORIGINS = ["*"]
    logger.warning("CORS: Allowing all origins (development mode). Set ALLOWED_ORIGINS in production!")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Prometheus AFTER CORS (выполняется раньше при ответе)
app.add_middleware(PrometheusMiddleware)

# Роутеры
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(users.router, prefix="/api/users", tags=["users"])
app.include_router(tasks.router, prefix="/api/tasks", tags=["tasks"])
app.include_router(reports.router, prefix="/api/reports", tags=["reports"])
app.include_router(flariki.router, prefix="/api/flariki", tags=["flariki"])
app.include_router(shop.router, prefix="/api/shop", tags=["shop"])
app.include_router(products.router, prefix="/api/products", tags=["products"])
app.include_router(statistics.router, prefix="/api/statistics", tags=["statistics"])
# Админка - только MANAGER/ADMIN
app.include_router(
    admin.router,
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(require_staff)],
)

# Загруженные скриншоты
_upload_dir = Path(settings.UPLOAD_DIR)
_upload_dir.mkdir(parents=True, exist_ok=True)
app.mount(settings.UPLOAD_URL_PREFIX, StaticFiles(directory=str(_upload_dir)), name="uploads")


@app.get("/")
async def root():
    return {"status": "ok"}


@app.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)):
    """Health check for monitoring; verifies database connectivity."""
    health_status = {
        "status": "healthy",
        "version": "1.0.0",
        "checks": {"database": "ok"},
    }
    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"
    return health_status


@app.get("/metrics")
async def metrics_endpoint(openmetrics: bool = False):
    """Prometheus metrics (OpenMetrics format with ``?openmetrics=true``)."""
    return get_metrics_response(openmetrics=openmetrics)
