import os
from typing import Optional

from pydantic import BaseModel, Field

from src.specs.common.errors import ConfigurationError


class Settings(BaseModel):
    """Runtime configuration, read from the Functions app settings."""

    cosmos_connection_string: Optional[str] = None
    cosmos_database: Optional[str] = None
    cosmos_container: str = "campaigns"
    default_page_size: int = Field(default=20, ge=1, le=100)
    max_page_size: int = Field(default=100, ge=1, le=100)
    approval_event_name: str = "ApprovalDecision"
    tenant_header: str = "x-tenant-id"

    @classmethod
    def from_env(cls) -> "Settings":
        try:
            return cls(
                cosmos_connection_string=os.getenv("COSMOS_DB_CONNECTION_STRING"),
                cosmos_database=os.getenv("COSMOS_DB_NAME"),
                cosmos_container=os.getenv("COSMOS_DB_CONTAINER_CAMPAIGNS", "campaigns"),
                default_page_size=int(os.getenv("DEFAULT_PAGE_SIZE", "20")),
                max_page_size=int(os.getenv("MAX_PAGE_SIZE", "100")),
                approval_event_name=os.getenv("APPROVAL_EVENT_NAME", "ApprovalDecision"),
                tenant_header=os.getenv("TENANT_HEADER", "x-tenant-id"),
            )
        except ValueError as exc:
            raise ConfigurationError("Invalid campaign store settings", details={"error": str(exc)}) from exc
