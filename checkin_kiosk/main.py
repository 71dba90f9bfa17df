"""
==============================================================================
Cinema Check-In Kiosk - Application Entry Point
==============================================================================

FastAPI application with:
- RESTful kiosk session endpoints
- WebSocket live event feed
- QR check-in against the cinema booking API

Usage:
------
    # Development
    uvicorn checkin_kiosk.main:app --reload
    
    # Production
    uvicorn checkin_kiosk.main:app --host 0.0.0.0 --port 8000

==============================================================================
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from checkin_kiosk.config import get_settings
from checkin_kiosk.core.exceptions import register_exception_handlers
from checkin_kiosk.api.router import api_router
from checkin_kiosk.services.kiosk_service import get_kiosk_service
from checkin_kiosk.websockets import checkin_router


# ============================================================================
# LOGGING SETUP
# ============================================================================

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)

logger = logging.getLogger(__name__)


# ============================================================================
# APPLICATION FACTORY
# ============================================================================

class Application:
    """
    FastAPI application factory and manager.
    
    Handles application lifecycle including:
    - Startup and shutdown events
    - Middleware configuration
    - Router registration
    - Exception handler setup
    """
    
    def __init__(self):
        """Initialize the application."""
        self._settings = get_settings()
        self._app = self._create_app()
    
    def _create_app(self) -> FastAPI:
        """Create and configure the FastAPI application."""
        app = FastAPI(
            title=self._settings.app_name,
            version="1.0.0",
            description="QR ticket check-in kiosk for cinema screenings",
            lifespan=self._lifespan,
            docs_url="/docs",
            redoc_url="/redoc",
        )
        
        # Configure middleware
        self._configure_middleware(app)
        
        # Register exception handlers
        register_exception_handlers(app)
        
        # Register routers
        self._register_routers(app)
        
        # Register root endpoint
        self._register_root(app)
        
        return app
    
    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        """Application lifespan manager."""
        # Startup
        self._startup()
        yield
        # Shutdown
        await self._shutdown()
    
    def _startup(self) -> None:
        """Application startup tasks."""
        logger.info("=" * 60)
        logger.info(f"🚀 Starting {self._settings.app_name}")
        logger.info("=" * 60)
        
        self._settings.ensure_directories()
        
        logger.info(f"🎬 Booking API: {self._settings.api_v1_url}")
        if self._settings.auth_token is None and not self._settings.token_path.exists():
            logger.warning("⚠️ No session token configured; check-ins need a token from the operator login")
        
        logger.info("=" * 60)
        logger.info(f"✅ {self._settings.app_name} ready")
        logger.info(f"📍 Running on http://{self._settings.host}:{self._settings.port}")
        logger.info(f"📖 API Docs: http://{self._settings.host}:{self._settings.port}/docs")
        logger.info("=" * 60)
    
    async def _shutdown(self) -> None:
        """Application shutdown tasks."""
        logger.info("🛑 Shutting down...")
        await get_kiosk_service().shutdown()
        logger.info("✅ Shutdown complete")
    
    def _configure_middleware(self, app: FastAPI) -> None:
        """Configure application middleware."""
        app.add_middleware(
            CORSMiddleware,
            allow_origins=self._settings.cors_origins_list,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    
    def _register_routers(self, app: FastAPI) -> None:
        """Register API routers."""
        # REST API routes
        app.include_router(api_router)
        
        # WebSocket routes
        app.include_router(checkin_router)
    
    def _register_root(self, app: FastAPI) -> None:
        """Register root endpoint."""
        
        @app.get("/")
        async def root():
            return {
                "name": self._settings.app_name,
                "docs": "/docs",
                "health": "/api/v1/health"
            }
    
    @property
    def app(self) -> FastAPI:
        """Get the FastAPI application instance."""
        return self._app


# ============================================================================
# APPLICATION INSTANCE
# ============================================================================

# Create application instance
application = Application()
app = application.app


# ============================================================================
# ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    
    uvicorn.run(
        "checkin_kiosk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info"
    )
