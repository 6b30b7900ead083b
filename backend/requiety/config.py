from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./requiety.db"
    database_echo: bool = False

    # Response bodies are written under <data_dir>/responses
    data_dir: str = "./data"

    # HTTP settings
    request_timeout_ms: int = 30000
    follow_redirects: bool = True
    validate_ssl: bool = True
    max_redirects: int = 10
    max_body_size: int = 10 * 1024 * 1024  # 10MB
    user_agent: str = "Requiety/1.0.0"

    # Script sandbox
    script_timeout_ms: int = 1000

    log_level: str = "INFO"

    @field_validator("request_timeout_ms", "script_timeout_ms")
    @classmethod
    def positive_timeout(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("timeouts must be positive")
        return value

    class Config:
        env_file = ".env"
        env_prefix = "REQUIETY_"


@lru_cache
def get_settings() -> Settings:
    return Settings()
