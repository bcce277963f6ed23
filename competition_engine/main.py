import os
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from competition_engine import __version__
from competition_engine.config.feature_flags import feature_flags, get_int_env, load_engine_settings
from competition_engine.core.rate_limit import limiter
from competition_engine.database import init_db, close_db, AsyncSessionLocal
from competition_engine.errors import ERROR_MAPPING, ErrorCode, engine_error_response, internal_error_payload
from competition_engine.exceptions import CompetitionEngineError
from competition_engine.routes import router
from competition_engine.services.engagement_service import build_engagement_reader
from competition_engine.tasks.sweep import start_sweep_task, stop_sweep_task

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting competition engine...")
    try:
        await init_db()
        logger.info("Database connected successfully")
    except Exception as e:
        logger.error(f"Failed to connect to database: {str(e)}")
        raise

    sweep_task = None
    sweep_reader = None
    interval = get_int_env("SWEEP_INTERVAL_SECONDS", 0)
    if interval > 0:
        settings = load_engine_settings()
        sweep_reader = build_engagement_reader(settings, AsyncSessionLocal)
        sweep_task = start_sweep_task(AsyncSessionLocal, settings, sweep_reader, interval)
        logger.info(f"In-process sweep scheduled every {interval}s")

    yield

    logger.info("Shutting down competition engine...")
    await stop_sweep_task(sweep_task)
    if sweep_reader:
        await sweep_reader.aclose()
    try:
        await close_db()
    except Exception as e:
        logger.error(f"Error closing database connection: {str(e)}")


def create_app() -> FastAPI:
    development = os.getenv("ENVIRONMENT", "development") == "development"
    app = FastAPI(
        title="Competition Engine API",
        description="Multi-round elimination competitions driven by post engagement",
        version=__version__,
        docs_url="/docs" if development else None,
        redoc_url="/redoc" if development else None,
        lifespan=lifespan
    )

    # Attach rate limiter to the app
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    allowed_origins = os.getenv("ALLOWED_ORIGINS", "").split(",")
    if allowed_origins and allowed_origins[0]:
        origins.extend(o.strip() for o in allowed_origins if o.strip())

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(CompetitionEngineError)
    async def engine_error_handler(request: Request, exc: CompetitionEngineError):
        logger.warning(f"Engine error on {request.url.path}: {exc.code} - {exc.message}")
        return engine_error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
        details = [
            {"loc": error.get("loc"), "msg": error.get("msg"), "type": error.get("type")}
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "success": False,
                "error": "Validation Error",
                "message": "Request validation failed",
                "code": ErrorCode.VALIDATION_ERROR,
                "details": {"errors": details}
            }
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(f"HTTP exception on {request.url.path}: {exc.detail}")
        if isinstance(exc.detail, dict):
            return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)
        error, code = ERROR_MAPPING.get(
            exc.status_code,
            ("Error", ErrorCode.INTERNAL_ERROR if exc.status_code >= 500 else ErrorCode.INVALID_INPUT)
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "error": error,
                "message": str(exc.detail),
                "code": code
            },
            headers=exc.headers
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=internal_error_payload(exc, request.url.path)
        )

    @app.get("/health", tags=["Health"])
    async def health_check():
        return {
            "status": "healthy",
            "environment": os.getenv("ENVIRONMENT", "development"),
            "feature_flags": feature_flags.get_all_flags(),
            "version": __version__
        }

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    reload = os.getenv("ENVIRONMENT", "development") == "development"

    logger.info(f"Starting server on {host}:{port}")
    uvicorn.run(
        "competition_engine.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )
