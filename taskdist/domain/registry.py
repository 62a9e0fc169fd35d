"""References returned by the organization and collection-point registries."""

from enum import StrEnum

from pydantic import BaseModel, Field


class CollectionPointType(StrEnum):
    """Kind of collection point."""

    ENTERPRISE = "ENTERPRISE"
    PORT = "PORT"
    STATION = "STATION"
    REGION = "REGION"
    MARKET = "MARKET"


class UserRef(BaseModel):
    """A user who can receive tasks."""

    id: str = Field(..., description="User ID")
    name: str = Field(..., description="Display name")
    organization_id: str | None = Field(default=None, description="Organization the user belongs to")
    department_id: str | None = Field(default=None, description="Department the user belongs to")


class PointRef(BaseModel):
    """A collection point."""

    id: str = Field(..., description="Collection point ID")
    name: str = Field(..., description="Display name")
    type: CollectionPointType = Field(..., description="Point type")
