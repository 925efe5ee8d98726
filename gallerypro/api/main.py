from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import os
import logging
import traceback

from gallerypro import __version__
from gallerypro.api.routers import health, rules, settings, mappings
from gallerypro.api.db.database import init_db, close_db
from gallerypro.api.services.config_service import ConfigService
from gallerypro.api.utils.logging_config import setup_logging

# Configure logging
setup_logging("gallerypro-api")
logger = logging.getLogger(__name__)

# Lifespan context manager
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Gallery Pro API...")

    # Initialize configuration
    logger.info("Initializing configuration...")
    config_service = ConfigService()
    await config_service.load_config()
    app.state.config = config_service
    logger.info(f"Configuration initialized (default shop: {config_service.config.default_shop})")

    # Initialize database
    logger.info("Initializing database...")
    await init_db()
    logger.info("Database initialized")

    logger.info("Gallery Pro API started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Gallery Pro API...")
    await close_db()
    logger.info("Gallery Pro API shutdown complete")

# Create FastAPI app
app = FastAPI(
    title="Gallery Pro API",
    description="Rule-driven product image galleries",
    version=__version__,
    lifespan=lifespan
)

# Configure CORS
cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler to log all unhandled errors"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {str(exc)}")
    logger.error(f"Traceback: {traceback.format_exc()}")

    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error: {str(exc)}"}
    )

# Include API routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(rules.router, prefix="/api/rules", tags=["rules"])
app.include_router(settings.router, prefix="/api", tags=["settings"])
app.include_router(mappings.router, prefix="/api/mappings", tags=["mappings"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "gallerypro.api.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8080")),
        reload=os.getenv("ENV", "production") == "development"
    )
