from functools import lru_cache
from pathlib import Path
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):

    ROOT_DIR: Path = Path(__file__).parent.parent.parent.parent

    # Upstream agent runtime (OpenAI-compatible agents endpoint)
    AGENT_ENDPOINT: str
    AGENT_API_KEY: str = ""
    AGENT_API_VERSION: str = "2025-11-15-preview"
    DEFAULT_AGENT_ID: str
    AGENT_REQUEST_TIMEOUT: float = 120.0  # seconds, per upstream HTTP call

    # Session cache (0 = sessions live for the process lifetime)
    AGENT_SESSION_IDLE_TIMEOUT: float = 0.0

    # Runtime profile: "development" exposes internal error detail
    ENVIRONMENT: Literal["development", "production"] = "production"
    LOG_LEVEL: str = "INFO"

    # HTTP surface
    API_PREFIX: str = "/api"
    CORS_ALLOWED_ORIGINS: List[str] = ["http://localhost:8080"]

    # Observability
    OTLP_TRACE_ENDPOINT: str = ""
    OTLP_METRIC_ENDPOINT: str = ""

    model_config = SettingsConfigDict(
        env_file=ROOT_DIR / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
    )

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache
def get_settings() -> Settings:
    """Load settings once per process (tests build their own ``Settings``)."""
    return Settings()


if __name__ == "__main__":
    print(get_settings().model_dump_json())
