"""Pydantic schemas for tenant warehouse credentials."""
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


class TenantConnectionConfig(BaseModel):
    """Credentials and limits for one tenant's warehouse.

    Resolved once per request and never cached beyond the pool's connection
    object. Exactly one credential mode is allowed: a password, or a PEM
    encoded private key for key-pair (JWT) authentication.
    """
    account: str = Field(..., min_length=1)
    user: str = Field(..., min_length=1)
    password: Optional[str] = Field(default=None, repr=False)
    private_key: Optional[str] = Field(default=None, repr=False)
    private_key_passphrase: Optional[str] = Field(default=None, repr=False)
    warehouse: str = Field(..., min_length=1)
    database: str = Field(..., min_length=1)
    schemas: list[str] = Field(..., min_length=1, description="First entry is the default schema")
    role: str = "PUBLIC"
    max_rows_per_query: int = Field(1000, ge=10, le=10_000)
    query_timeout_secs: int = Field(60, ge=5, le=120)

    model_config = ConfigDict(frozen=True)

    @field_validator("schemas", mode="before")
    @classmethod
    def split_schema_list(cls, v):
        """Accept "A, B" as well as ["A", "B"]; drop blanks."""
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, (list, tuple)):
            return [s.strip() for s in v if isinstance(s, str) and s.strip()]
        return v

    @model_validator(mode="after")
    def exactly_one_credential(self) -> "TenantConnectionConfig":
        has_password = bool(self.password)
        has_key = bool(self.private_key)
        if has_password and has_key:
            raise ValueError("password and private_key are mutually exclusive")
        if not has_password and not has_key:
            raise ValueError("one of password or private_key is required")
        return self

    @property
    def default_schema(self) -> str:
        return self.schemas[0]

    @property
    def uses_key_pair(self) -> bool:
        return bool(self.private_key)


@dataclass(frozen=True)
class ResolvedTenant:
    """A tenant config plus where it came from.

    persistent is True when the config came from the metadata store; such
    tenants keep their schema snapshot in the store rather than in memory.
    """
    tenant_id: str
    config: TenantConnectionConfig
    persistent: bool
