"""REST API routers."""

from fastapi import APIRouter, Depends

from peerlab_gateway.api.deps import get_aggregator, get_engine, require_agent, require_user
from peerlab_gateway.api.schemas import (
    AllMappingsResponse,
    LeaseSchema,
    RequestAsnResponse,
    RequestPrefixRequest,
    RequestPrefixResponse,
    UserInfoResponse,
    UserMappingResponse,
)
from peerlab_gateway.engine import GatewayEngine, MappingAggregator
from peerlab_gateway.models import Principal, UserMapping
from peerlab_gateway.pseudonym import user_handle
from peerlab_gateway.utils.time import to_rfc3339

# Authentication is declared before the engine so a rejected caller never
# opens a database session.
user_router = APIRouter(prefix="/api/user", tags=["user"])
service_router = APIRouter(prefix="/service", tags=["service"])


# ============================================================================
# End-user endpoints
# ============================================================================


@user_router.get("/info", response_model=UserInfoResponse)
async def get_user_info(
    principal: Principal = Depends(require_user),
    engine: GatewayEngine = Depends(get_engine),
):
    """Caller's handle, ASN (if any) and active leases."""
    user_hash = user_handle(principal.subject)
    assignment, leases = await engine.get_user_info(user_hash)

    return UserInfoResponse(
        user_hash=user_hash,
        asn=assignment.asn if assignment else None,
        active_leases=[
            LeaseSchema(
                prefix=lease.prefix,
                start_time=to_rfc3339(lease.start_time),
                end_time=to_rfc3339(lease.end_time),
            )
            for lease in leases
        ],
    )


@user_router.post("/asn", response_model=RequestAsnResponse)
async def request_asn(
    principal: Principal = Depends(require_user),
    engine: GatewayEngine = Depends(get_engine),
):
    """Assign an ASN to the caller, or return the one already assigned."""
    assignment, created = await engine.request_asn(principal)
    message = "ASN assigned successfully" if created else "ASN already assigned"
    return RequestAsnResponse(asn=assignment.asn, message=message)


@user_router.post("/prefix", response_model=RequestPrefixResponse)
async def request_prefix(
    request: RequestPrefixRequest,
    principal: Principal = Depends(require_user),
    engine: GatewayEngine = Depends(get_engine),
):
    """Lease a /48 to the caller for duration_hours."""
    lease = await engine.request_prefix(principal, request.duration_hours)
    return RequestPrefixResponse(
        prefix=lease.prefix,
        start_time=to_rfc3339(lease.start_time),
        end_time=to_rfc3339(lease.end_time),
        message="Prefix leased successfully",
    )


# ============================================================================
# Service endpoints
# ============================================================================


@service_router.get("/mappings", response_model=AllMappingsResponse)
async def get_all_mappings(
    principal: Principal = Depends(require_agent),
    aggregator: MappingAggregator = Depends(get_aggregator),
):
    """Every handle with an ASN, with its active prefixes."""
    mappings = await aggregator.list_mappings()
    return AllMappingsResponse(mappings=[_mapping_response(m) for m in mappings])


@service_router.get("/mappings/{user_hash}", response_model=UserMappingResponse)
async def get_user_mapping(
    user_hash: str,
    principal: Principal = Depends(require_agent),
    aggregator: MappingAggregator = Depends(get_aggregator),
):
    """Mapping for a single handle."""
    return _mapping_response(await aggregator.get_mapping(user_hash))


def _mapping_response(mapping: UserMapping) -> UserMappingResponse:
    return UserMappingResponse(**mapping.model_dump())
