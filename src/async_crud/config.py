"""
Library settings loaded from environment variables.
Uses pydantic-settings; every variable is prefixed with ``ASYNC_CRUD_``.
"""

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CrudSettings(BaseSettings):
    """Defaults shared by repositories and command handlers."""

    model_config = SettingsConfigDict(env_prefix="ASYNC_CRUD_", extra="ignore")

    # Paging
    max_page_size: int = Field(default=500, ge=1)
    default_page: int = Field(default=1, ge=1)
    default_per_page: int = Field(default=30, ge=1)

    # Filtering and ordering
    case_sensitive_filters: bool = False
    default_sort_field: str = "created_at"

    @model_validator(mode="after")
    def check_page_sizes(self):
        if self.default_per_page > self.max_page_size:
            raise ValueError("default_per_page cannot exceed max_page_size")
        return self


@lru_cache
def get_settings() -> CrudSettings:
    """Get cached settings instance."""
    return CrudSettings()
