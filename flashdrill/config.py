"""
Runtime settings, read from FLASHDRILL_* environment variables
"""
from typing import Annotated, List, Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
]


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(env_prefix="FLASHDRILL_", env_file=".env", extra="ignore")

    # Storage
    data_dir: str = "data"

    # Logging
    log_level: str = "INFO"

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # CORS, comma separated in the environment
    cors_origins: Annotated[List[str], NoDecode] = DEFAULT_ORIGINS

    # Fixed seed for the requeue randomization, mostly for demos and tests
    seed: Optional[int] = None

    # Create the starter decks when the store is empty
    seed_samples: bool = False

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value):
        return str(value).upper()

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [o.strip() for o in value.split(",") if o.strip()]
        return value


settings = Settings()
