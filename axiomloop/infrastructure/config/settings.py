from typing import Dict, Optional
from functools import lru_cache
import os
from pydantic import BaseModel, Field


class Settings(BaseModel):
    """Service configuration, read from environment variables"""

    openai_model: str = Field(default="gpt-4o", description="Chat model name")
    model_provider: str = Field(default="openai", description="Provider passed to init_chat_model")
    tavily_api_key: Optional[str] = Field(None, description="Enables the web search and extract tools")

    log_level: str = "INFO"
    log_format: str = "json"
    service_name: str = "axiomloop"

    max_steps: int = Field(default=100, gt=0, description="Agent steps allowed per request")
    request_timeout_ms: int = Field(default=60000, gt=0, description="Client-side request deadline")
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=1000, ge=0, description="Base delay of the linear retry backoff")

    chat_max_duration_s: float = Field(default=30, gt=0)
    dev_max_duration_s: float = Field(default=60, gt=0)
    research_max_duration_s: float = Field(default=60, gt=0)

    def max_duration_s(self, surface: str) -> float:
        """Wall-clock limit of one streamed response on a surface"""
        durations: Dict[str, float] = {
            "chat": self.chat_max_duration_s,
            "dev": self.dev_max_duration_s,
            "research": self.research_max_duration_s,
        }
        return durations.get(surface, self.chat_max_duration_s)


def load_settings() -> Settings:
    env = os.environ
    values = {
        "openai_model": env.get("OPENAI_MODEL"),
        "model_provider": env.get("MODEL_PROVIDER"),
        "tavily_api_key": env.get("TAVILY_API_KEY"),
        "log_level": env.get("LOG_LEVEL"),
        "log_format": env.get("LOG_FORMAT"),
        "service_name": env.get("SERVICE_NAME"),
        "max_steps": env.get("MAX_STEPS"),
        "request_timeout_ms": env.get("REQUEST_TIMEOUT_MS"),
        "max_retries": env.get("MAX_RETRIES"),
        "retry_delay_ms": env.get("RETRY_DELAY_MS"),
        "chat_max_duration_s": env.get("CHAT_MAX_DURATION_S"),
        "dev_max_duration_s": env.get("DEV_MAX_DURATION_S"),
        "research_max_duration_s": env.get("RESEARCH_MAX_DURATION_S"),
    }
    return Settings(**{key: value for key, value in values.items() if value not in (None, "")})


@lru_cache()
def get_settings() -> Settings:
    return load_settings()
