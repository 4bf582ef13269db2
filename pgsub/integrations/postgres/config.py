"""Postgres notifier configuration using pydantic-settings."""

from pydantic import Field
from pydantic_settings import BaseSettings

from ...transport import DEFAULT_PAYLOAD_LIMIT


class PostgresConfiguration(BaseSettings):
    """Connection and retry settings for :class:`PostgresNotifier`.

    All settings can be configured via environment variables with the
    PGSUB_POSTGRES_ prefix. For example:
    - PGSUB_POSTGRES_DSN=postgresql://app:secret@db:5432/app
    - PGSUB_POSTGRES_RETRY_INTERVAL=1.5
    - PGSUB_POSTGRES_PARANOID_CHECKING=30

    Attributes:
        dsn: libpq connection string or URI.
        connect_timeout: Seconds to wait for a single connection attempt.
        retry_interval: Seconds between reconnection attempts.
        retry_limit: Maximum reconnection attempts. None retries forever.
        retry_timeout: Seconds after which reconnection gives up. None
            retries forever.
        paranoid_checking: Seconds between ``SELECT 1`` health checks on the
            listening connection. None disables the checks.
        payload_limit: Serialized payloads of this many bytes or more are
            rejected before reaching the server.

    Example:
        >>> config = PostgresConfiguration(
        ...     dsn="postgresql://localhost:5432/app",
        ...     retry_limit=10,
        ... )
    """

    dsn: str = Field(
        default="postgresql://localhost:5432/postgres",
        description="libpq connection string or URI",
    )
    connect_timeout: float = Field(
        default=60.0,
        description="Timeout for a single connection attempt in seconds",
        gt=0,
    )
    retry_interval: float = Field(
        default=0.5,
        description="Delay between reconnection attempts in seconds",
        gt=0,
    )
    retry_limit: int | None = Field(
        default=None,
        description="Maximum number of reconnection attempts",
        ge=0,
    )
    retry_timeout: float | None = Field(
        default=3.0,
        description="Give up reconnecting after this many seconds",
        ge=0,
    )
    paranoid_checking: float | None = Field(
        default=None,
        description="Interval of SELECT 1 connection health checks in seconds",
        gt=0,
    )
    payload_limit: int = Field(
        default=DEFAULT_PAYLOAD_LIMIT,
        description="Maximum NOTIFY payload size in bytes (exclusive)",
        gt=0,
    )

    model_config = {"env_prefix": "PGSUB_POSTGRES_"}
