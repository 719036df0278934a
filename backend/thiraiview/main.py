"""FastAPI application."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, settings
from .domain_errors import DomainError
from .problem_details import domain_error_handler
from .routers import admin, auth, login


def configure_logging(app_settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, app_settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Quiet noisy loggers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)


configure_logging(settings)

# Create app
app = FastAPI(
    title="ThiraiView API",
    version="1.0.0",
    description="Authentication and session backend for ThiraiView",
)
app.add_exception_handler(DomainError, domain_error_handler)

# Production safety checks (credentials + wildcard origins is not allowed).
if settings.is_production and not settings.cors_origins:
    raise RuntimeError("ALLOWED_ORIGINS must be set in production (explicit frontend origin required).")
if settings.is_production and any(origin.strip() == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard when using credentials).")

# CORS
cors_headers = ["Authorization", "Content-Type"]
if not settings.is_production:
    cors_headers = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=cors_headers,
)

# Include routers
app.include_router(login.router)
app.include_router(auth.router)
app.include_router(admin.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "version": "1.0.0"}
