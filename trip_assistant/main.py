"""
Tokyo Trip Assistant API
Main FastAPI application for streamed itinerary generation with product cards
"""
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from trip_assistant.routers import catalog, chat
from trip_assistant.services.catalog import CatalogService
from trip_assistant.services.config import Settings
from trip_assistant.services.llm import LLMService
from trip_assistant.services.session import ConversationSession, SessionRegistry
from trip_assistant.utils.logging import setup_logging

logger = structlog.get_logger()

# Metrics
request_counter = Counter(
    'trip_assistant_requests_total',
    'Total number of requests',
    ['method', 'endpoint', 'status']
)
request_duration = Histogram(
    'trip_assistant_request_duration_seconds',
    'Request duration',
    ['method', 'endpoint']
)
active_connections = Gauge(
    'trip_assistant_active_connections',
    'Number of active connections'
)
active_sessions = Gauge(
    'trip_assistant_active_sessions',
    'Number of open conversation sessions'
)


def setup_tracing(app: FastAPI, settings: Settings):
    """Export FastAPI spans over OTLP"""
    from opentelemetry import trace
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": settings.OTEL_SERVICE_NAME}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(
        endpoint=settings.OTEL_ENDPOINT,
        insecure=True
    )))
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app)


def create_app(settings: Settings = None) -> FastAPI:
    """Build the application; collaborators are constructed in the lifespan"""
    settings = settings or Settings()
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle"""
        logger.info("Starting Trip Assistant API",
                    version=settings.API_VERSION,
                    environment=settings.ENVIRONMENT,
                    mock_mode=settings.mock_mode)

        catalog_service = CatalogService.from_file(settings.CATALOG_PATH)
        llm_service = LLMService(settings)

        def session_factory(session_id=None) -> ConversationSession:
            return ConversationSession(llm_service, catalog_service, settings, session_id=session_id)

        app.state.settings = settings
        app.state.catalog = catalog_service
        app.state.llm_service = llm_service
        app.state.session_registry = SessionRegistry(
            session_factory,
            ttl_seconds=settings.SESSION_TTL_SECONDS,
            max_sessions=settings.MAX_SESSIONS
        )

        logger.info("API initialization complete")

        yield

        # Shutdown
        logger.info("Shutting down Trip Assistant API")
        app.state.session_registry.close_all()
        await llm_service.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="Tokyo Trip Assistant API",
        description="Streams itinerary text with product cards spliced in from the catalog",
        version=settings.API_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.ENVIRONMENT == "development" else None,
        redoc_url="/redoc" if settings.ENVIRONMENT == "development" else None,
    )

    if settings.OTEL_ENABLED:
        setup_tracing(app, settings)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Session-ID"],
    )

    @app.middleware("http")
    async def track_requests(request: Request, call_next):
        """Track request metrics and add request ID"""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        active_connections.inc()
        start_time = time.time()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        try:
            response = await call_next(request)

            duration = time.time() - start_time
            request_counter.labels(
                method=request.method,
                endpoint=request.url.path,
                status=response.status_code
            ).inc()
            request_duration.labels(
                method=request.method,
                endpoint=request.url.path
            ).observe(duration)

            response.headers["X-Request-ID"] = request_id

            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration=duration
            )

            return response

        except Exception as e:
            logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                error=str(e)
            )
            request_counter.labels(
                method=request.method,
                endpoint=request.url.path,
                status=500
            ).inc()
            raise

        finally:
            active_connections.dec()
            structlog.contextvars.unbind_contextvars("request_id")

    # Include routers
    app.include_router(chat.router, prefix="/api/v1")
    app.include_router(catalog.router, prefix="/api/v1")

    # Health check endpoints
    @app.get("/health")
    async def health_check():
        """Basic health check"""
        return {"status": "healthy", "version": settings.API_VERSION}

    @app.get("/health/ready")
    async def readiness_check(request: Request):
        """Readiness probe - checks if all services are ready"""
        checks = {
            "api": "healthy",
            "catalog": "unknown",
            "llm": "unknown"
        }

        catalog_service = getattr(request.app.state, "catalog", None)
        checks["catalog"] = "healthy" if catalog_service and catalog_service.get_all_products() else "unhealthy"

        # Mock mode still serves the fixture stream
        checks["llm"] = "mock" if settings.mock_mode else "healthy"

        if all(v in ("healthy", "mock") for v in checks.values()):
            return {"status": "ready", "checks": checks}
        return JSONResponse(
            status_code=503,
            content={"status": "not ready", "checks": checks}
        )

    @app.get("/health/live")
    async def liveness_check():
        """Liveness probe - checks if the application is running"""
        return {"status": "alive"}

    @app.get("/metrics")
    async def metrics(request: Request):
        """Prometheus metrics endpoint"""
        if not settings.ENABLE_METRICS:
            raise HTTPException(status_code=404, detail="Metrics disabled")
        registry = getattr(request.app.state, "session_registry", None)
        active_sessions.set(len(registry) if registry is not None else 0)
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/")
    async def root():
        """Root endpoint with API information"""
        return {
            "name": "Tokyo Trip Assistant API",
            "version": settings.API_VERSION,
            "environment": settings.ENVIRONMENT,
            "docs": "/docs" if settings.ENVIRONMENT == "development" else None,
            "health": "/health",
            "metrics": "/metrics"
        }

    # Error handlers
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions"""
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "status_code": exc.status_code}
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        """Handle validation errors"""
        logger.error("Validation error", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=400,
            content={"error": str(exc), "status_code": 400}
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions"""
        logger.error(
            "Unhandled exception",
            error=str(exc),
            path=request.url.path,
            exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "status_code": 500,
                "request_id": request.headers.get("X-Request-ID")
            }
        )

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    _settings = Settings()
    uvicorn.run(
        "trip_assistant.main:app",
        host="0.0.0.0",
        port=8000,
        reload=_settings.ENVIRONMENT == "development",
        log_config=None,  # Use structlog instead
        access_log=False,  # Handled by middleware
        workers=1  # Sessions live in process memory
    )
