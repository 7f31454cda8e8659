"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from stackdrift.api.routes import admin, checks, history
from stackdrift.config import get_settings
from stackdrift.database import engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    yield
    engine.dispose()


settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    description="Monitor vendor legal and pricing documents for risky changes",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(checks.router, prefix="/api", tags=["checks"])
app.include_router(admin.router, prefix="/api", tags=["admin"])
app.include_router(history.router, prefix="/api", tags=["history"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
