from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .transport import BASE_URL, DEFAULT_POOL_MAX, DEFAULT_TIMEOUT


class StitchSettings(BaseSettings):
    """Client settings from ``STITCH_*`` environment variables or ``.env``."""

    model_config = SettingsConfigDict(env_prefix="STITCH_", env_file=".env", extra="ignore")

    client_id: int = Field(ge=0, le=2**32 - 1)
    auth_token: str
    base_url: str = BASE_URL
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    pool_max: int = Field(default=DEFAULT_POOL_MAX, ge=1)
    ca_bundle: Optional[str] = None
    batch_size: int = Field(default=100, ge=1)
    queue_capacity: int = Field(default=1000, ge=1)


@lru_cache()
def get_settings() -> StitchSettings:
    return StitchSettings()
