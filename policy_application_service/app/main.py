# FastAPI Application Entry Point
from fastapi import FastAPI
import httpx

# Configuration and Observability
from policy_application_service.app.config import settings
from policy_application_service.app.observability import setup_opentelemetry, logger

# Initialize OpenTelemetry
setup_opentelemetry(service_name=settings.SERVICE_NAME_API)

# Import instrumentors after OTel SDK is initialized
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.pymongo import PymongoInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

# Database connection
from policy_application_service.infrastructure.database.connection import connect_to_mongo, close_mongo_connection
# Kafka producer and change feed lifecycle
from policy_application_service.infrastructure.kafka.producer import startup_kafka_producer, shutdown_kafka_producer
from policy_application_service.infrastructure.kafka.change_feed import KafkaChangeFeed

# API Routers
from policy_application_service.app.api.v1.endpoints import health as health_router
from policy_application_service.app.api.v1.endpoints import wizard as wizard_router
from policy_application_service.app.api.v1.endpoints import policies as policies_router
from policy_application_service.app.api.v1.endpoints import shares as shares_router
from policy_application_service.app.api.v1.endpoints import notifications as notifications_router
from policy_application_service.app.api.v1.endpoints import profile as profile_router
from policy_application_service.app.api.v1.endpoints import dashboard_ws as dashboard_ws_router

# --- FastAPI Application Instance ---
app = FastAPI(
    title="Policy Application Service",
    description="Collects, submits and shares life-insurance policy applications.",
    version="1.0.0"
)

# --- Event Handlers for DB Connection, Kafka & OTel Instrumentation ---
@app.on_event("startup")
async def startup_event():
    logger.info("FastAPI application startup...")
    try:
        app.state.http_client = httpx.AsyncClient(timeout=settings.DEFAULT_HTTP_TIMEOUT)
        HTTPXClientInstrumentor().instrument()
        logger.info(f"HTTPX AsyncClient initialized with timeout {settings.DEFAULT_HTTP_TIMEOUT} and instrumented.")

        await connect_to_mongo()
        PymongoInstrumentor().instrument()
        logger.info("MongoDB connected and PyMongo instrumentation complete.")

        await startup_kafka_producer()
        logger.info("Kafka Producer polling started.")

        change_feed = KafkaChangeFeed()
        await change_feed.start()
        app.state.change_feed = change_feed
        logger.info("Change feed consumer started.")

    except Exception as e:
        logger.error(f"Failed during startup: {e}", exc_info=True)

@app.on_event("shutdown")
async def shutdown_event():
    logger.info("FastAPI application shutdown...")

    if getattr(app.state, "change_feed", None) is not None:
        await app.state.change_feed.stop()
        app.state.change_feed = None

    if hasattr(app.state, 'http_client') and app.state.http_client:
        await app.state.http_client.aclose()
        logger.info("HTTPX AsyncClient closed.")

    await shutdown_kafka_producer()
    logger.info("Kafka Producer shutdown initiated and flushed.")

    close_mongo_connection()
    logger.info("MongoDB connection closed.")

FastAPIInstrumentor.instrument_app(app)
logger.info("FastAPI instrumentation complete.")

# Include API Routers
app.include_router(health_router.router)
app.include_router(wizard_router.router, prefix="/api/v1/wizard/sessions", tags=["Wizard"])
app.include_router(policies_router.router, prefix="/api/v1/policies", tags=["Policies"])
app.include_router(shares_router.router, prefix="/api/v1/policies", tags=["Sharing"])
app.include_router(notifications_router.router, prefix="/api/v1/notifications", tags=["Notifications"])
app.include_router(profile_router.router, prefix="/api/v1/profile", tags=["Profile"])
app.include_router(dashboard_ws_router.router, prefix="/api/v1")

logger.info("API routers included. Application setup complete.")

# To run: uvicorn policy_application_service.app.main:app --reload --port 8000
