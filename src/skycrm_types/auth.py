from typing import Any
from pydantic import BaseModel, ConfigDict, Field, field_validator


class Claims(BaseModel):
    """Identity claims carried by a verified bearer token."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    user_id: str = Field(..., alias="userId", min_length=1, description="ID of the authenticated user")
    tenant_id: str = Field(..., alias="tenantId", min_length=1, description="Tenant the user belongs to")
    role: str = Field(default="user", description="Role of the user inside the tenant")

    @field_validator("user_id", "tenant_id", "role", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        # Token issuers may encode ids as numbers
        if isinstance(value, bool):
            return value
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return value

    @field_validator("tenant_id")
    @classmethod
    def _check_tenant_id(cls, value: str) -> str:
        # ":" separates the tenant from the name in explicit room ids
        if ":" in value:
            raise ValueError("tenantId must not contain ':'")
        return value
