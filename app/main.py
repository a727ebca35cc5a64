"""
Main FastAPI application entry point.
Initializes the application with middleware, routes, error handlers and the
real-time components (event bus and subscription gateway).
"""
import logging
from uuid import uuid4
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from core.config import settings
from core.security import credential_service
from db.database import engine, init_db

from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_fastapi_instrumentator import Instrumentator

# Configure structured JSON logging
from core.logging_config import configure_logging
configure_logging(service_name="chatline-api", level=settings.log_level, enable_json=settings.log_json)

from core.tracing import setup_tracing
from api.errors import ERROR_RESPONSES, register_error_handlers
from api.subscription_gateway import SubscriptionGateway
from services.event_bus import EventBus

logger = logging.getLogger(__name__)

# Initialize tracing
tracer_provider = setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Creates the database schema and the real-time components on startup and
    releases every live subscription on shutdown.
    """
    # Startup
    logger.info("Starting Chatline API...")
    init_db()
    logger.info("Database initialized")

    event_bus = EventBus()
    app.state.event_bus = event_bus
    app.state.gateway = SubscriptionGateway(event_bus, credential_service)

    yield

    # Shutdown
    logger.info("Shutting down Chatline API...")
    app.state.gateway.close_all()
    event_bus.close()


# Create FastAPI application
app = FastAPI(
    title="Chatline API",
    description="Real-time messaging: accounts, direct and group chats, messages and live subscriptions",
    version="1.0.0",
    lifespan=lifespan
)

# Instrument FastAPI with OpenTelemetry
FastAPIInstrumentor.instrument_app(app)

# Instrument SQLAlchemy for database query tracing
SQLAlchemyInstrumentor().instrument(engine=engine)

# Exposes /metrics endpoint with HTTP request metrics
Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Metrics"])


# Request ID middleware
class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add unique request_id to each request.
    The request_id is included in logs for request tracing.
    """
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id

        logger.info(
            f"[{request_id}] {request.method} {request.url.path} - "
            f"Client: {request.client.host if request.client else 'unknown'}",
            extra={"request_id": request_id}
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.info(f"[{request_id}] Response: {response.status_code}", extra={"request_id": request_id})
        return response


# Add middlewares
app.add_middleware(RequestIDMiddleware)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_origin.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)


@app.get("/", tags=["Health"])
async def root():
    return {
        "message": "Chatline API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "ready": "/ready",
        "websocket": "/ws"
    }


# Register endpoint routers
from api.auth import router as auth_router
from api.endpoints import chats_router, messages_router, uploads_router, users_router, websocket_router
from api.health import router as health_router

app.include_router(auth_router, responses=ERROR_RESPONSES)
app.include_router(health_router)
app.include_router(users_router, prefix="/v1/users", tags=["Users"], responses=ERROR_RESPONSES)
app.include_router(chats_router, prefix="/v1/chats", tags=["Chats"], responses=ERROR_RESPONSES)
app.include_router(messages_router, prefix="/v1/messages", tags=["Messages"], responses=ERROR_RESPONSES)
app.include_router(uploads_router, tags=["Uploads"], responses=ERROR_RESPONSES)
app.include_router(websocket_router, tags=["WebSocket"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower()
    )
