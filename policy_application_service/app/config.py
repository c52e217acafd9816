# Application Configuration using Pydantic BaseSettings
import logging
from typing import Optional

from pydantic_settings import BaseSettings


class AppSettings(BaseSettings):
    # MongoDB
    MONGO_DETAILS: str = "mongodb://mongo:27017"
    DB_NAME: str = "policy_application_db"

    # Kafka
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:29092"
    KAFKA_CONSUMER_GROUP_ID: str = "policy_application_dashboard"
    POLICY_CHANGES_TOPIC: str = "policy_changes"
    SHARE_CHANGES_TOPIC: str = "policy_share_changes"
    NOTIFICATION_KAFKA_TOPIC: str = "policy_notifications"

    # Observability
    LOG_LEVEL: str = "INFO"
    OTEL_EXPORTER_OTLP_TRACES_ENDPOINT: Optional[str] = None
    OTEL_EXPORTER_OTLP_METRICS_ENDPOINT: Optional[str] = None
    SERVICE_NAME_API: str = "policy-application-api"

    # External auth service (current-identity lookup)
    AUTH_SERVICE_URL: Optional[str] = None # e.g., https://<project>.supabase.co/auth/v1
    AUTH_SERVICE_API_KEY: Optional[str] = None
    DEFAULT_HTTP_TIMEOUT: float = 10.0

    # Blob storage
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None
    STORAGE_BUCKET: str = "policy-documents"

    # Application rules
    UNNAMED_APPLICANT_FOLDER: str = "Unnamed_Customer"
    PLACEHOLDER_ID_MAX_LENGTH: int = 20
    MINOR_AGE_THRESHOLD: int = 18

    # Wizard sessions
    WIZARD_SESSION_IDLE_SECONDS: int = 3600
    WIZARD_SESSION_MAX: int = 1000

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

# Instantiate settings to be imported by other modules
settings = AppSettings()

logger = logging.getLogger(__name__)
# Avoid logging credentials: only the non-secret endpoints are reported.
logger.info(f"Application settings loaded. Mongo DB: {settings.DB_NAME}, Kafka: {settings.KAFKA_BOOTSTRAP_SERVERS}")
