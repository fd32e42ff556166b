from __future__ import annotations

import asyncio

from fastapi import APIRouter, HTTPException, Query

from nitrod.dependencies import get_audit_service, get_route_reconciler
from nitrod.schemas.audit import Operation, Outcome, TargetKind
from nitrod.schemas.sites import ApplyRequest, ApplyResponse
from nitrod.validators import ValidationError, validate_hostname, validate_port


router = APIRouter(prefix="/api", tags=["apply"])


@router.post("/apply", response_model=ApplyResponse)
async def apply_sites(
    request: ApplyRequest,
    strict: bool = Query(False, description="Fail with 502 when Caddy rejects the update"),
):
    """Replace the proxy's routes with the given sites."""
    sites = [site.to_site() for site in request.sites]
    try:
        for site in sites:
            for host in site.hosts:
                validate_hostname(host)
            validate_hostname(site.upstream)
            validate_port(site.port)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    reconciler = get_route_reconciler()
    audit = get_audit_service()

    async with audit.track(
        Operation.SITES_APPLY,
        TargetKind.PROXY,
        reconciler.settings.caddy_admin_url,
        details={"sites": [site.hostname for site in sites]},
    ) as state:
        result = await asyncio.to_thread(reconciler.apply, sites, strict)
        state["message"] = result.message
        if result.error:
            state["outcome"] = Outcome.FAILURE

    return ApplyResponse(message=result.message, error=result.error)
