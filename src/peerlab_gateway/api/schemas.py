"""API request/response schemas."""

from typing import Optional

from pydantic import BaseModel, Field


# ============================================================================
# Shared schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Error body for every non-2xx response."""

    error: int = Field(..., description="HTTP status code")
    message: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


# ============================================================================
# End-user schemas
# ============================================================================


class LeaseSchema(BaseModel):
    """Active lease as shown to its holder."""

    prefix: str
    start_time: str = Field(..., description="RFC 3339 timestamp")
    end_time: str = Field(..., description="RFC 3339 timestamp")


class UserInfoResponse(BaseModel):
    """Caller's handle, ASN and active leases."""

    user_hash: str
    asn: Optional[int] = None
    active_leases: list[LeaseSchema]


class RequestAsnResponse(BaseModel):
    """ASN request response."""

    asn: int
    message: str


class RequestPrefixRequest(BaseModel):
    """Prefix lease request."""

    duration_hours: int = Field(..., strict=True, description="Lease length in hours")


class RequestPrefixResponse(BaseModel):
    """Prefix lease response."""

    prefix: str
    start_time: str = Field(..., description="RFC 3339 timestamp")
    end_time: str = Field(..., description="RFC 3339 timestamp")
    message: str


# ============================================================================
# Service schemas
# ============================================================================


class UserMappingResponse(BaseModel):
    """One handle's ASN and active prefixes."""

    user_hash: str
    user_id: Optional[str] = None
    asn: int
    prefixes: list[str]
    email: Optional[str] = None


class AllMappingsResponse(BaseModel):
    """Every mapping, newest assignment first."""

    mappings: list[UserMappingResponse]
