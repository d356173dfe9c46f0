"""
API routes for natresolve.
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from ..network.models import to_ip
from ..network.resolver import AddressResolver

logger = logging.getLogger(__name__)

router = APIRouter()


# ============ Response Models ============

class LocalHostResponse(BaseModel):
    """Local address chosen for a destination."""
    destination: str
    address: str


class EndpointResponse(BaseModel):
    """Address/port to advertise."""
    ip: str
    port: int
    family: str


class ResolverStatus(BaseModel):
    running: bool
    stun_enabled: bool
    stun_server: Optional[str] = None
    probe_port: Optional[int] = None


def _resolver(request: Request) -> AddressResolver:
    return request.app.state.resolver


def _parse_destination(value: str):
    try:
        return to_ip(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid destination address: {value}")


def _status(resolver: AddressResolver) -> ResolverStatus:
    return ResolverStatus(
        running=resolver.running,
        stun_enabled=resolver.stun_enabled,
        stun_server=str(resolver.stun_server) if resolver.stun_server else None,
        probe_port=resolver.probe.port if resolver.probe else None,
    )


# ============ Endpoints ============

@router.get("/status", response_model=ResolverStatus)
async def get_status(request: Request):
    """Current resolver state."""
    return _status(_resolver(request))


@router.get("/local-host", response_model=LocalHostResponse)
async def get_local_host(request: Request, destination: str = Query(..., description="Peer IP address")):
    """Local address the routing table picks for a destination."""
    dst = _parse_destination(destination)
    address = await _resolver(request).aget_local_host(dst)
    return LocalHostResponse(destination=str(dst), address=str(address))


@router.get("/public-address", response_model=EndpointResponse)
async def get_public_address(
    request: Request,
    port: int = Query(..., ge=1, le=65535, description="Local port to map"),
    destination: Optional[str] = Query(None, description="Peer IP address (defaults to the STUN server)"),
):
    """
    Address/port to advertise for a local port.

    May block for the STUN retransmission window, so it runs off the event loop.
    """
    resolver = _resolver(request)
    if destination is None:
        endpoint = await resolver.aget_public_address_for_port(port)
    else:
        endpoint = await resolver.aget_public_address_for(_parse_destination(destination), port)

    return EndpointResponse(**endpoint.to_dict())


@router.post("/reinitialize", response_model=ResolverStatus)
async def reinitialize(request: Request):
    """Re-read the STUN settings and rebuild the detector and probe socket."""
    resolver = _resolver(request)
    await resolver.astart()
    logger.info("Address resolver reinitialized")
    return _status(resolver)
