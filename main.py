# main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
from contextlib import asynccontextmanager, suppress
from sqlalchemy import text
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
import asyncio
import logging
from medqbank.core.admin import setup_admin
from medqbank.api.v1.routes import api_router
from medqbank.api.v1.routes.auth import limiter
from medqbank.core.config import settings
from medqbank.core.database import db_helper
from medqbank.core.exceptions import AppException
from medqbank.services.import_service import import_registry
from medqbank.services.validation_store import validation_store

# Настройка логирования
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 300


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _periodic_cleanup():
    """Раз в 5 минут удаляет просроченные сессии импорта и файлы проверки"""
    while True:
        await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
        imports = import_registry.cleanup()
        validations = validation_store.purge()
        if imports or validations:
            logger.info(f"🧹 Cleanup: {imports} import sessions, {validations} validation results")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Контекстный менеджер для жизненного цикла приложения"""
    # Startup
    logger.info(f"🚀 Starting {settings.app_name} in {'DEBUG' if settings.debug else 'PRODUCTION'} mode")

    # Маскируем пароль в URL для логов
    masked_db_url = settings.db.DATABASE_URL
    if settings.db.DB_PASSWORD and settings.db.DB_PASSWORD.get_secret_value():
        masked_db_url = masked_db_url.replace(settings.db.DB_PASSWORD.get_secret_value(), "***")
    logger.info(f"📝 Database: {masked_db_url}")
    logger.info(f"🤖 Azure OpenAI deployment: {settings.ai.AZURE_OPENAI_DEPLOYMENT or 'not configured'}")

    # Проверка подключения к базе данных при старте
    try:
        async with db_helper.session_factory() as session:
            await session.execute(text("SELECT 1"))
        logger.info("✅ Database connection successful")
    except Exception as e:
        logger.error(f"❌ Database connection failed: {e}")
        raise

    setup_admin(app, db_helper.engine)
    cleanup_task = asyncio.create_task(_periodic_cleanup())

    yield

    # Shutdown
    cleanup_task.cancel()
    with suppress(asyncio.CancelledError):
        await cleanup_task
    await db_helper.dispose()
    logger.info("👋 Application shutdown complete")

app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Настройка CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Подключение роутеров
app.include_router(api_router, prefix="/api/v1")


@app.get("/", summary="Root endpoint", tags=["root"])
async def root():
    """Корневой эндпоинт API"""
    return {
        "message": f"Welcome to {settings.app_name} API",
        "docs": {
            "swagger": "/docs",
            "redoc": "/redoc"
        } if settings.debug else None,
        "environment": "development" if settings.debug else "production",
        "timestamp": _now()
    }


@app.get("/health", summary="Health check", tags=["health"])
async def health_check():
    """Проверка здоровья приложения"""
    try:
        async with db_helper.session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            db_value = result.scalar()

        return {
            "status": "healthy",
            "timestamp": _now(),
            "environment": "development" if settings.debug else "production",
            "database": "connected",
            "database_ping": db_value,
            "app_name": settings.app_name,
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {
            "status": "unhealthy",
            "timestamp": _now(),
            "database": "connection failed",
            "error": str(e) if settings.debug else "Database connection error"
        }


# Глобальные обработчики исключений
@app.exception_handler(AppException)
async def app_exception_handler(request, exc: AppException):
    """Кастомные исключения приложения"""
    if exc.status_code >= 500:
        logger.error(f"AppException: {exc.detail} (type: {type(exc).__name__})")
    else:
        logger.info(f"AppException {exc.status_code}: {exc.detail}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "type": type(exc).__name__,
            "timestamp": _now()
        },
        headers={"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "type": "HTTPException",
            "timestamp": _now()
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc: Exception):
    """Глобальный обработчик всех исключений"""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "error": str(exc) if settings.debug else "Internal server error",
            "type": "InternalServerError",
            "timestamp": _now()
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="info" if settings.debug else "warning",
        access_log=False,
    )
