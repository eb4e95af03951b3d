import logging
import traceback
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.core.config import settings
from app.api.v1 import api_router
from app.connectors import ProviderRegistry
from app.db.session import check_db_connection, engine
from app.core.logging_config import setup_logging, RequestLoggingMiddleware
from app.services.ai.gemini_gateway import GeminiConfig, GeminiGateway
from app.services.tools.registry import ToolRegistry

# Configure structured logging (JSON in production, colored in development)
setup_logging()
logger = logging.getLogger("chatops")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: str
    detail: str | None = None
    timestamp: str
    path: str | None = None


class HealthResponse(BaseModel):
    """Health check response format."""
    status: str
    service: str
    version: str
    environment: str
    checks: dict[str, bool]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the tool providers, the tool registry and the Gemini gateway once,
    share them through app.state, and release connections on shutdown.

    A duplicate tool name raises here, so the application refuses to start.
    """
    logger.info("Application starting up...")

    providers = ProviderRegistry.build_enabled(settings)
    app.state.tool_providers = providers
    app.state.tool_registry = ToolRegistry.from_providers(providers)

    gemini_config = GeminiConfig.from_settings(settings)
    app.state.model_gateway = GeminiGateway(gemini_config) if gemini_config else None
    if gemini_config is None:
        logger.warning("GOOGLE_API_KEY is not set; chat is disabled")

    logger.info(
        f"Application startup complete: {len(app.state.tool_registry)} tool(s) "
        f"from {len(providers)} provider(s)"
    )

    try:
        yield
    finally:
        logger.info("Application shutting down...")
        for provider in providers:
            await provider.aclose()
        logger.info("Closing database connections...")
        await engine.dispose()
        logger.info("Database connections closed")


app = FastAPI(
    title="ChatOps Assistant API",
    description="Chat assistant that manages Jira, Notion, GitHub and Slack through Gemini function calling",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,  # Disable docs in production
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

cors_origins = settings.ALLOWED_ORIGINS


def get_cors_headers(request: Request) -> dict:
    """Get CORS headers based on request origin."""
    origin = request.headers.get("origin", "")
    if origin in cors_origins:
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Credentials": "true",
        }
    return {}


# Global exception handler - catches all unhandled exceptions
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler that returns consistent error responses.
    In production, sensitive details are hidden to prevent information leakage.
    """
    error_id = datetime.utcnow().strftime("%Y%m%d%H%M%S%f")

    logger.error(
        f"Unhandled exception [{error_id}]: {exc}\n"
        f"Path: {request.url.path}\n"
        f"Method: {request.method}\n"
        f"Traceback: {traceback.format_exc()}"
    )

    headers = get_cors_headers(request)

    if settings.ENVIRONMENT.lower() == "production":
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="Internal server error",
                detail=f"An unexpected error occurred. Reference ID: {error_id}",
                timestamp=datetime.utcnow().isoformat(),
                path=request.url.path,
            ).model_dump(),
            headers=headers,
        )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error=exc.__class__.__name__,
            detail=str(exc),
            timestamp=datetime.utcnow().isoformat(),
            path=request.url.path,
        ).model_dump(),
        headers=headers,
    )


# CORS Middleware (env-driven)
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request logging middleware with timing and request IDs
app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Health check: the database is critical, Gemini is reported but optional.
    Returns 503 when the database is unreachable.
    """
    db_healthy = await check_db_connection()
    checks = {
        "database": db_healthy,
        "gemini_configured": settings.GEMINI_CONFIGURED,
    }

    response = HealthResponse(
        status="healthy" if all(checks.values()) else ("degraded" if db_healthy else "unhealthy"),
        service="chatops-backend",
        version="1.0.0",
        environment=settings.ENVIRONMENT,
        checks=checks,
    )

    if not db_healthy:
        logger.warning(f"Health check failed (critical): {checks}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(),
        )

    return response


@app.get("/")
async def root():
    return {"message": "Welcome to the ChatOps Assistant API"}
