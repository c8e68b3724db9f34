import os
from typing import Optional

from pydantic import BaseModel, Field


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    service_name: str = "snowquery"
    environment: str = "dev"

    # Tenant used when a request carries no tenant id (public/demo mode)
    default_tenant_id: str = "default"

    # Schema cache TTLs: store-backed tenants vs. in-process fallback
    schema_cache_ttl_seconds: int = Field(3600, gt=0)
    memory_schema_cache_ttl_seconds: int = Field(1800, gt=0)
    introspection_workers: int = Field(8, ge=1)

    # Upper bound on one language-model call and on a whole request
    translation_timeout_seconds: float = Field(60.0, gt=0)
    request_timeout_seconds: float = Field(180.0, gt=0)
    llm_max_tokens: int = Field(4096, gt=0)

    # Conversation window sent to the model, in question/answer pairs
    history_pairs: int = Field(3, ge=0)
    max_translation_attempts: int = Field(2, ge=1)

    strict_sql_validation: bool = False
    metadata_database_url: Optional[str] = None

    @property
    def history_turns(self) -> int:
        """Number of individual turns kept from the conversation history."""
        return self.history_pairs * 2

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, keeping defaults for unset ones."""
        values = {}
        mapping = {
            "service_name": "SERVICE_NAME",
            "environment": "ENVIRONMENT",
            "default_tenant_id": "DEFAULT_TENANT_ID",
            "schema_cache_ttl_seconds": "SCHEMA_CACHE_TTL_SECONDS",
            "memory_schema_cache_ttl_seconds": "MEMORY_SCHEMA_CACHE_TTL_SECONDS",
            "introspection_workers": "INTROSPECTION_WORKERS",
            "translation_timeout_seconds": "TRANSLATION_TIMEOUT_SECONDS",
            "request_timeout_seconds": "REQUEST_TIMEOUT_SECONDS",
            "llm_max_tokens": "LLM_MAX_TOKENS",
            "history_pairs": "HISTORY_PAIRS",
            "metadata_database_url": "METADATA_DATABASE_URL",
        }
        for field, env_name in mapping.items():
            raw = os.getenv(env_name)
            if raw is not None and raw != "":
                values[field] = raw
        values["strict_sql_validation"] = _env_bool("STRICT_SQL_VALIDATION")
        return cls(**values)


settings = Settings.from_env()
