"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Secure defaults (no API keys in code)
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()


class DatabaseConfig(BaseModel):
    """Key-value persistence configuration."""

    backend: Literal["memory", "sql"] = Field(
        default="sql", description="In-memory store or SQLAlchemy-backed table"
    )
    url: str = Field(default="sqlite:///./medical_records.db", description="Database URL")


class APIConfig(BaseModel):
    """API server configuration."""

    host: str = Field(default="0.0.0.0", description="API server host")
    port: int = Field(default=8000, gt=0, lt=65536, description="API server port")
    reload: bool = Field(default=False, description="Enable auto-reload for development")

    # Security settings
    allowed_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"], description="Allowed origins for CORS"
    )
    api_key_header: str = Field(default="X-API-Key", description="Header name for API key")


class AuthConfig(BaseModel):
    """Static API keys, each bound to one doctor id."""

    api_keys: dict[str, str] = Field(
        default_factory=dict, description="Mapping of API key -> doctor id"
    )

    @field_validator("api_keys")
    def validate_api_keys(cls, v: dict[str, str]) -> dict[str, str]:
        for key, doctor_id in v.items():
            if len(key) < 8:
                raise ValueError("API keys must be at least 8 characters long")
            if not doctor_id:
                raise ValueError(f"API key ending in '{key[-4:]}' has no doctor id")
        return v


class GloveConfig(BaseModel):
    """Simulated glove acquisition settings."""

    sample_interval_seconds: float = Field(
        default=1.0, ge=0.0, description="Delay between simulated readings"
    )
    buffer_size: int = Field(default=20, gt=0, description="Readings kept per recording session")
    failure_rate: float = Field(
        default=0.0, ge=0.0, lt=1.0, description="Probability a simulated read is dropped"
    )
    max_samples: int = Field(default=200, gt=0, description="Upper bound for one simulated session")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Component configs
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    glove: GloveConfig = Field(default_factory=GloveConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self

    @model_validator(mode="after")
    def keys_required_outside_dev(self) -> "AppConfig":
        """Outside development the API must not start without credentials."""
        if self.environment != "development" and not self.auth.api_keys:
            raise ValueError("API_KEYS must be set outside the development environment")
        return self


def parse_api_keys(raw: str) -> dict[str, str]:
    """Parse ``key1:doctor-1,key2:doctor-2``. Blank entries are ignored."""
    keys: dict[str, str] = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        key, sep, doctor_id = entry.partition(":")
        if not sep:
            raise ValueError(f"API_KEYS entry must look like 'key:doctorId', got '{entry[:4]}...'")
        keys[key.strip()] = doctor_id.strip()
    return keys


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _parse_bool(val: str | None, default: bool) -> bool:
        if val is None:
            return default
        return val.strip().lower() in {"1", "true", "yes", "on"}

    # Detect environment
    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    database_config = DatabaseConfig(
        backend=cast(
            Literal["memory", "sql"],
            "memory" if os.getenv("STORAGE_BACKEND", "sql").strip().lower() == "memory" else "sql",
        ),
        url=os.getenv("DATABASE_URL", "sqlite:///./medical_records.db"),
    )

    api_config = APIConfig(
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
        reload=_parse_bool(os.getenv("API_RELOAD"), debug),
        allowed_origins=os.getenv("API_ALLOWED_ORIGINS", "http://localhost:3000").split(","),
        api_key_header=os.getenv("API_KEY_HEADER", "X-API-Key"),
    )

    auth_config = AuthConfig(api_keys=parse_api_keys(os.getenv("API_KEYS", "")))

    glove_config = GloveConfig(
        sample_interval_seconds=float(os.getenv("GLOVE_SAMPLE_INTERVAL_SECONDS", "1.0")),
        buffer_size=int(os.getenv("GLOVE_BUFFER_SIZE", "20")),
        failure_rate=float(os.getenv("GLOVE_FAILURE_RATE", "0.0")),
        max_samples=int(os.getenv("GLOVE_MAX_SAMPLES", "200")),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        database=database_config,
        api=api_config,
        auth=auth_config,
        glove=glove_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def validate_config() -> None:
    """Validate configuration at startup."""
    try:
        config = get_config()
        print(f"Configuration loaded for {config.environment} environment")
        if not config.auth.api_keys:
            print("Warning: no API keys configured, every authenticated request will be rejected")
    except Exception as e:
        print(f"Configuration validation failed: {e}")
        raise


def print_config_summary(config: AppConfig | None = None) -> None:
    """Print configuration summary for debugging."""
    config = config or get_config()

    print("\nCONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\nSTORAGE")
    print(f"Backend: {config.database.backend}")
    if config.database.backend == "sql":
        print(f"URL: {config.database.url}")

    print("\nGLOVE")
    print(f"Sample Interval: {config.glove.sample_interval_seconds}s")
    print(f"Buffer Size: {config.glove.buffer_size}")

    print("\nAPI CONFIGURATION")
    print(f"Host: {config.api.host}:{config.api.port}")
    print(f"Reload: {config.api.reload}")
    print(f"API keys configured: {len(config.auth.api_keys)}")


if __name__ == "__main__":
    validate_config()
    print_config_summary()
