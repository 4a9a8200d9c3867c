# core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional, List


class Settings(BaseSettings):
    """
    Centralized application configuration.
    Grouped logically for readability; every value can be overridden
    through the environment or a local .env file.
    """

    # ------------------------------------------------------------
    # Project / Runtime
    # ------------------------------------------------------------
    PROJECT_NAME: str = "ABBA Publish Broker"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENABLE_CORS: bool = True

    # HTTP / API
    FRONTEND_ENDPOINT: str = ""
    BACKEND_ENDPOINT: str = ""
    PUBLIC_BASE_PATH: str = "/api/v1/publish"

    # ------------------------------------------------------------
    # Rate limiting (fixed window, per client identity)
    # ------------------------------------------------------------
    RATE_LIMIT_REQUESTS: int = Field(
        default=60,
        description="Requests admitted per client identity in one window (generous for polling)"
    )
    RATE_LIMIT_WINDOW_SECONDS: int = Field(
        default=60,
        description="Length of the fixed rate-limit window in seconds"
    )

    # ------------------------------------------------------------
    # Security
    # ------------------------------------------------------------
    ABBA_DEVICE_TOKEN: Optional[str] = Field(
        default=None,
        description="Shared device token expected in the x-abba-device-token header"
    )
    DEVICE_TOKEN_HEADER: str = "x-abba-device-token"

    # ------------------------------------------------------------
    # Deployment provider (Vercel)
    # ------------------------------------------------------------
    BROKER_VERCEL_TOKEN: Optional[str] = Field(
        default=None,
        description="Vercel API token; when unset the broker runs in degraded (mock) mode"
    )
    VERCEL_TEAM_ID: Optional[str] = None
    VERCEL_API_URL: str = "https://api.vercel.com"
    VERCEL_REQUEST_TIMEOUT_SECS: int = 60
    VERCEL_PROJECT_PREFIX: str = "abba-app"
    MOCK_DEPLOYMENT_URL_TEMPLATE: str = Field(
        default="https://mock-{app_id}.vercel.app",
        description="URL handed out in degraded mode, formatted with the job's app_id"
    )

    # ------------------------------------------------------------
    # Bundle limits
    # ------------------------------------------------------------
    MAX_BUNDLE_SIZE: int = 50 * 1024 * 1024
    MAX_FILE_SIZE: int = 10 * 1024 * 1024
    MAX_FILES: int = 10000
    MAX_TOTAL_UNCOMPRESSED_SIZE: int = Field(
        default=200 * 1024 * 1024,
        description="Cap on the summed uncompressed size of all extracted files"
    )
    BINARY_EXTENSIONS: List[str] = [
        ".png", ".jpg", ".jpeg", ".gif", ".webp", ".ico",
        ".woff", ".woff2", ".ttf", ".otf", ".eot",
        ".pdf", ".zip", ".gz",
        ".mp3", ".mp4", ".webm", ".ogg", ".wav",
    ]
    JUNK_FILENAMES: List[str] = ["Thumbs.db", "desktop.ini"]

    # ------------------------------------------------------------
    # Deployment reconciliation
    # ------------------------------------------------------------
    POLL_INTERVAL_SECONDS: float = Field(
        default=3.0,
        description="Delay between two provider status polls"
    )
    POLL_TIMEOUT_SECONDS: float = Field(
        default=300.0,
        description="Wall-clock budget before a deployment is declared timed out"
    )

    # ------------------------------------------------------------
    # Job store
    # ------------------------------------------------------------
    JOB_STORE_BACKEND: str = Field(
        default="memory",
        description="'memory' for a process-local store, 'redis' for a durable one"
    )
    JOB_RETENTION_HOURS: int = Field(
        default=24,
        description="Age after which housekeeping may purge a job"
    )
    JOB_KEY_PREFIX: str = "publish_job"

    # ------------------------------------------------------------
    # Redis Configuration
    # ------------------------------------------------------------
    REDIS_HOST: str = Field(
        default="localhost",
        description="Redis server hostname"
    )
    REDIS_PORT: int = Field(
        default=6379,
        description="Redis server port"
    )
    REDIS_DB: int = Field(
        default=0,
        description="Redis database number (0-15)"
    )
    REDIS_PASSWORD: Optional[str] = Field(
        default=None,
        description="Redis password (optional)"
    )
    REDIS_SSL: bool = Field(
        default=False,
        description="Use TLS/SSL for the Redis connection"
    )
    REDIS_SOCKET_TIMEOUT: int = Field(
        default=5,
        description="Socket timeout in seconds"
    )
    REDIS_SOCKET_CONNECT_TIMEOUT: int = Field(
        default=5,
        description="Socket connect timeout in seconds"
    )
    REDIS_MAX_CONNECTIONS: int = Field(
        default=50,
        description="Maximum connections in the pool"
    )

    @property
    def JOB_RETENTION_SECONDS(self) -> int:
        return self.JOB_RETENTION_HOURS * 3600

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
